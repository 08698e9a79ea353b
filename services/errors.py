from typing import List


class PrescriptionError(Exception):
    """Base class for failures surfaced to the practitioner as a notification."""
    code = "prescription_error"
    title = "Something went wrong"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UnsupportedPlatform(PrescriptionError):
    """Speech recognition is not available; manual typing still works."""
    code = "unsupported_platform"
    title = "Speech Recognition Error"


class RecognitionError(PrescriptionError):
    """The recognition engine reported a runtime error and the session was stopped."""
    code = "recognition_error"
    title = "Speech Recognition Error"


class MissingRequiredField(PrescriptionError):
    code = "missing_required_field"
    title = "Missing information"

    def __init__(self, fields: List[str]):
        labels = ", ".join(fields)
        super().__init__(f"Please fill in the required patient details: {labels}")
        self.fields = fields


class MedicationNotFound(PrescriptionError):
    code = "medication_not_found"
    title = "Medication not found"

    def __init__(self, medication_id: str):
        super().__init__(f"No medication with id {medication_id} in this prescription")
        self.medication_id = medication_id


class PopupBlocked(PrescriptionError):
    code = "popup_blocked"
    title = "Window blocked"

    def __init__(self, target: str):
        super().__init__(
            f"Could not open {target}. Please allow pop-ups for this site and try again."
        )
        self.target = target


class MissingContact(PrescriptionError):
    code = "missing_contact"
    title = "No phone number"

    def __init__(self, recipient: str, hint: str):
        super().__init__(f"No phone number available for the {recipient}. {hint}")
        self.recipient = recipient


class CompositionFailure(PrescriptionError):
    """The PDF artifact could not be produced."""
    code = "composition_failure"
    title = "Download Failed"
