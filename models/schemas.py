from datetime import date
from enum import Enum
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def generate_medication_id() -> str:
    return str(uuid4())


class Frequency(str, Enum):
    """Frequencies offered by the medication form; free text is also accepted."""
    ONCE_DAILY = "once-daily"
    TWICE_DAILY = "twice-daily"
    THRICE_DAILY = "thrice-daily"
    FOUR_TIMES_DAILY = "four-times-daily"
    AS_NEEDED = "as-needed"


class PatientInfo(BaseModel):
    """Patient details; age is free text on purpose."""
    name: str = ""
    age: str = ""
    gender: str = ""
    contact_number: str = ""


class MedicationEntry(BaseModel):
    """One prescribed medication line."""
    id: str = Field(default_factory=generate_medication_id)
    name: str = ""
    dosage: str = ""
    frequency: str = ""
    duration: str = ""
    instructions: str = ""


class PrescriptionDocument(BaseModel):
    """The in-memory prescription being authored."""
    patient: PatientInfo = Field(default_factory=PatientInfo)
    notes: str = ""
    medications: List[MedicationEntry] = []
    created_at: date = Field(default_factory=date.today)


class PrescriptionStyle(BaseModel):
    header_color: str = "#1E88E5"
    font_family: str = "Inter"
    show_logo: bool = True
    logo: Optional[str] = None
    footer_text: Optional[str] = None


class DoctorProfile(BaseModel):
    """Doctor and clinic metadata supplied by the profile provider."""
    name: str = ""
    email: str = ""
    clinic_name: str = ""
    address: str = ""
    phone: str = ""
    clinic_whatsapp: str = ""
    qualification: str = ""
    registration_number: str = ""
    clinic_logo: Optional[str] = None
    style: PrescriptionStyle = Field(default_factory=PrescriptionStyle)


class TranscriptState(BaseModel):
    """Dictation state exposed to the authoring view."""
    is_listening: bool = False
    text: str = ""
    interim: str = ""
    error: Optional[str] = None


class ShareRecipient(str, Enum):
    PATIENT = "patient"
    CLINIC = "clinic"
    ANYONE = "anyone"


# API request/response models

class DraftCreateRequest(BaseModel):
    """Optional doctor profile row from the identity provider."""
    profile: Optional[dict] = None


class DraftResponse(BaseModel):
    draft_id: str
    document: PrescriptionDocument
    profile: DoctorProfile


class FieldUpdateRequest(BaseModel):
    field: str
    value: str


class NotesUpdateRequest(BaseModel):
    text: str


class MedicationResponse(BaseModel):
    draft_id: str
    medication: MedicationEntry
    document: PrescriptionDocument


class FinalizeResponse(BaseModel):
    """Result of composing a prescription PDF."""
    success: bool
    artifact_id: str
    url: str
    print_url: str
    filename: str
    processing_time_ms: Optional[float] = None


class ShareRequest(BaseModel):
    recipient: ShareRecipient = ShareRecipient.PATIENT


class ShareResponse(BaseModel):
    success: bool
    method: str
    url: Optional[str] = None
    message: str


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
    fields: Optional[List[str]] = None
