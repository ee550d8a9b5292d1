"""Network rule checks.

Graph-level validators, all pure over a read-only snapshot:
- connectivity: pipe ends that match no structure or pipe end
- slope: slope jumps between pipes meeting at a junction
- coordinates: entity positions against labelled reference points
- geometry: zero-length pipes

`validate_network` in engine.py runs them together.
"""

from pipenet.validators.engine import validate_network

__all__ = ["validate_network"]
