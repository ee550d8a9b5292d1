"""Small storm line: validate, push to a store, write back a correction.

Four structures, three pipes, falling west to east:

   MH-1 ----P1---- MH-2 ----P2---- MH-3 ----P3---- OUT
  (0,0,0)       (40,0,-0.4)     (80,0,-0.8)     (110,0,-3.5)

P2's downstream end was drawn 0.3 m short of MH-3. Once a survey
correction reconnects it, the jump from P2 (-0.01) to the steep P3
(-0.09) shows up as a slope discontinuity at MH-3.
"""

from pathlib import Path

from pipenet import service
from pipenet.collaborators import JsonModelFile
from pipenet.models import Entity, EntityType, SyncMode
from pipenet.models.document import NetworkDocument
from pipenet.store import SQLiteReconciliationStore

output = Path(__file__).parent / "output"
output.mkdir(exist_ok=True)

# --- Network ---
doc = NetworkDocument(name="Storm Line A")
doc.add_structure("MH-1", (0, 0, 0), category="manhole", rim=101.2)
doc.add_structure("MH-2", (40, 0, -0.4), category="manhole", rim=100.9)
doc.add_structure("MH-3", (80, 0, -0.8), category="manhole", rim=100.5)
doc.add_structure("OUT", (110, 0, -3.5), category="outfall")
doc.add_pipe("P1", "MH-1", "MH-2", slope=-0.01, size=0.45, material="RCP")
doc.add_pipe("P2", "MH-2", "MH-3", slope=-0.01, size=0.45, material="RCP", end=(79.7, 0, -0.8))
doc.add_pipe("P3", "MH-3", "OUT", slope=-0.09, size=0.6, material="RCP")
model_file = doc.save(output / "storm_line.json")
model = JsonModelFile(model_file)

# --- Validate ---
findings = service.validate(model)
if findings:
    print("⚠️  Findings:")
    for f in findings:
        print(f"  [{f.severity.value}] {f.key}: {f.message}")
else:
    print("✅ Validation passed")

# --- First sync: push everything ---
with SQLiteReconciliationStore(output / "storm_line.db") as store:
    report = service.sync(model, store, SyncMode.APPLY)
    print(f"📦 Pushed: {', '.join(report.applied) or 'nothing'}")

    # --- Store-side correction, reviewed before write-back ---
    store.record_correction(
        Entity(
            entity_id="P2",
            entity_type=EntityType.PIPE,
            revision="survey-2",
            fields={"end": {"x": 80.0, "y": 0.0, "z": -0.8}},
        )
    )
    preview = service.sync(model, store, SyncMode.DRY_RUN)
    print(f"🔍 Planned: {[e.entity_id for e in preview.entries if e.outcome.value == 'planned']}")

    report = service.sync(model, store, SyncMode.APPLY, approve={"P2"})
    print(f"✍️  Written back: {report.applied}")
    print(f"   Findings now: {report.findings}")
