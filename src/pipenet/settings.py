"""Engine settings: tolerances, thresholds, retry and pool sizing.

Settings are plain pydantic models so they load from and save to JSON the
same way the network document does.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from pipenet.errors import ConfigError


class AxisTolerance(BaseModel):
    """Per-axis tolerance for reference-point comparisons (length units)."""

    x: float = Field(default=0.01, ge=0)
    y: float = Field(default=0.01, ge=0)
    z: float = Field(default=0.01, ge=0)

    def as_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}


class Settings(BaseModel):
    spatial_tolerance: float = Field(
        default=0.01, gt=0, description="Endpoint matching distance (epsilon)"
    )
    slope_threshold: float = Field(
        default=0.05, ge=0, description="Max |slopeA - slopeB| at a junction"
    )
    axis_tolerance: AxisTolerance = Field(default_factory=AxisTolerance)
    degenerate_length: float = Field(
        default=1e-9, ge=0, description="Pipes at or below this length are degenerate"
    )

    call_timeout: float = Field(default=10.0, gt=0, description="Seconds per collaborator call")
    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=0.5, ge=0)
    max_delay: float = Field(default=8.0, ge=0)
    backoff_factor: float = Field(default=2.0, ge=1)

    workers: int = Field(default=4, ge=1, description="Thread pool size for validation")

    @classmethod
    def load(cls, path: str | Path) -> Settings:
        """Load settings from a JSON file."""
        path = Path(path)
        try:
            return cls.model_validate_json(path.read_text())
        except OSError as e:
            raise ConfigError(f"Cannot read settings {path}: {e}") from e
        except ValidationError as e:
            raise ConfigError(f"Invalid settings in {path}: {e}") from e

    def save(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.model_dump_json(indent=2))
        return path
