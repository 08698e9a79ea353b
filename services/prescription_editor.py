"""
Editing operations over a PrescriptionDocument.

Every function returns a new document and leaves its input untouched, so a
failed edit never corrupts the draft being authored.
"""
from typing import List, Tuple

from config import logger
from models.schemas import MedicationEntry, PatientInfo, PrescriptionDocument
from services.errors import MedicationNotFound, MissingRequiredField

MEDICATION_FIELDS = ("name", "dosage", "frequency", "duration", "instructions")
PATIENT_FIELDS = tuple(PatientInfo.model_fields)

# Patient fields that must be filled before a PDF is composed
REQUIRED_PATIENT_FIELDS = {
    "name": "patient name",
    "contact_number": "contact number",
}


def _index_of(document: PrescriptionDocument, medication_id: str) -> int:
    for index, medication in enumerate(document.medications):
        if medication.id == medication_id:
            return index
    raise MedicationNotFound(medication_id)


def add_medication(document: PrescriptionDocument) -> Tuple[PrescriptionDocument, MedicationEntry]:
    """Append a blank medication with a fresh id."""
    taken = {medication.id for medication in document.medications}
    entry = MedicationEntry()
    while entry.id in taken:
        entry = MedicationEntry()

    updated = document.model_copy(deep=True)
    updated.medications.append(entry)
    return updated, entry


def update_medication(
    document: PrescriptionDocument,
    medication_id: str,
    field: str,
    value: str,
) -> PrescriptionDocument:
    """Replace a single field of the medication matched by id."""
    if field not in MEDICATION_FIELDS:
        raise ValueError(f"Unknown medication field: {field}")

    index = _index_of(document, medication_id)
    updated = document.model_copy(deep=True)
    updated.medications[index] = updated.medications[index].model_copy(update={field: value})
    return updated


def remove_medication(document: PrescriptionDocument, medication_id: str) -> PrescriptionDocument:
    index = _index_of(document, medication_id)
    updated = document.model_copy(deep=True)
    del updated.medications[index]
    return updated


def update_patient_info(document: PrescriptionDocument, field: str, value: str) -> PrescriptionDocument:
    """Replace one patient field; no cross-field validation happens here."""
    if field not in PATIENT_FIELDS:
        raise ValueError(f"Unknown patient field: {field}")

    updated = document.model_copy(deep=True)
    updated.patient = updated.patient.model_copy(update={field: value})
    return updated


def update_notes(document: PrescriptionDocument, text: str) -> PrescriptionDocument:
    updated = document.model_copy(deep=True)
    updated.notes = text
    return updated


def missing_required_fields(document: PrescriptionDocument) -> List[str]:
    return [
        label for field, label in REQUIRED_PATIENT_FIELDS.items()
        if not getattr(document.patient, field).strip()
    ]


def validate_for_finalize(document: PrescriptionDocument) -> None:
    """Raise MissingRequiredField unless patient name and contact number are set.

    Medications are optional: a notes-only prescription can be finalized.
    """
    missing = missing_required_fields(document)
    if missing:
        logger.info(f"Finalize blocked, missing fields: {missing}")
        raise MissingRequiredField(missing)
