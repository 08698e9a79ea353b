# In-memory stores; persistence belongs to the external profile/storage provider.

# draft_id -> {"document": PrescriptionDocument, "profile": DoctorProfile}
DRAFT_STORE = {}

# artifact_id -> {"draft_id": str, "artifact": ComposedPrescription}
ARTIFACT_STORE = {}


def drop_artifacts(draft_id: str) -> int:
    """Remove every stored PDF composed from a draft. Returns how many were removed."""
    stale = [artifact_id for artifact_id, entry in ARTIFACT_STORE.items() if entry["draft_id"] == draft_id]
    for artifact_id in stale:
        del ARTIFACT_STORE[artifact_id]
    return len(stale)
