import os
from datetime import date

# Keep test runs from writing prescription_api.log
os.environ.setdefault("LOG_FILE", "")

import pytest

from models.schemas import DoctorProfile, MedicationEntry, PatientInfo, PrescriptionDocument, PrescriptionStyle
from services.transcript_accumulator import (
    RecognitionEngine,
    RecognitionEvent,
    RecognitionResult,
    RecognitionSession,
)


class FakeSession(RecognitionSession):
    """Scripted engine session; tests drive the handlers through emit_* helpers."""

    def __init__(self, language, continuous, interim_results):
        super().__init__()
        self.language = language
        self.continuous = continuous
        self.interim_results = interim_results
        self.calls = []

    def start(self):
        self.calls.append("start")

    def stop(self):
        self.calls.append("stop")

    def abort(self):
        self.calls.append("abort")

    def emit_result(self, result_index, *segments):
        """segments are (transcript, is_final) pairs for the whole result list."""
        if self.on_result is not None:
            results = [RecognitionResult(text, final) for text, final in segments]
            self.on_result(RecognitionEvent(result_index, results))

    def emit_error(self, error):
        if self.on_error is not None:
            self.on_error(error)

    def emit_end(self):
        if self.on_end is not None:
            self.on_end()


class FakeEngine(RecognitionEngine):
    def __init__(self, available=True):
        self.available = available
        self.sessions = []

    def is_available(self):
        return self.available

    def create_session(self, language, continuous=True, interim_results=True):
        session = FakeSession(language, continuous, interim_results)
        self.sessions.append(session)
        return session

    @property
    def session(self):
        return self.sessions[-1]


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def john_doe():
    return PrescriptionDocument(
        patient=PatientInfo(name="John Doe", age="45", gender="Male", contact_number="+15559876543"),
        notes="",
        medications=[
            MedicationEntry(
                name="Loratadine",
                dosage="10mg",
                frequency="Once daily",
                duration="30 days",
                instructions="Take in the morning",
            )
        ],
        created_at=date(2025, 4, 1),
    )


@pytest.fixture
def profile():
    return DoctorProfile(
        name="Dr. Sarah Johnson",
        email="dr.johnson@cityhealthclinic.com",
        clinic_name="City Health Clinic",
        address="123 Medical Street, Healthcare City, HC 12345",
        phone="+1 (555) 123-4567",
        clinic_whatsapp="+1 555 000 1111",
        style=PrescriptionStyle(header_color="#4F46E5", show_logo=False),
    )
