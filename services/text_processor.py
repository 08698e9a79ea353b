import re
from datetime import date
from typing import List

from models.schemas import DoctorProfile, Frequency, PrescriptionDocument

# Labels shown for the frequencies offered by the medication form
FREQUENCY_LABELS = {
    Frequency.ONCE_DAILY.value: "Once Daily",
    Frequency.TWICE_DAILY.value: "Twice Daily",
    Frequency.THRICE_DAILY.value: "Three Times Daily",
    Frequency.FOUR_TIMES_DAILY.value: "Four Times Daily",
    Frequency.AS_NEEDED.value: "As Needed",
}

# Common prescription abbreviations for the same frequencies
FREQUENCY_ABBREVIATIONS = {
    "QD": Frequency.ONCE_DAILY.value,
    "BID": Frequency.TWICE_DAILY.value,
    "TID": Frequency.THRICE_DAILY.value,
    "QID": Frequency.FOUR_TIMES_DAILY.value,
    "PRN": Frequency.AS_NEEDED.value,
}


def normalize_frequency(value: str) -> str:
    """Map abbreviations and enum values onto the form vocabulary; free text passes through."""
    cleaned = value.strip()
    abbreviation = re.sub(r'[\s.]', '', cleaned).upper()
    if abbreviation in FREQUENCY_ABBREVIATIONS:
        return FREQUENCY_ABBREVIATIONS[abbreviation]
    if cleaned.lower() in FREQUENCY_LABELS:
        return cleaned.lower()
    return cleaned


def frequency_label(value: str) -> str:
    """Human readable frequency for printed output."""
    return FREQUENCY_LABELS.get(normalize_frequency(value), value)


def format_date(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def download_filename(patient_name: str) -> str:
    """prescription_<name with whitespace runs replaced by underscores>.pdf"""
    name = re.sub(r'\s+', '_', patient_name)
    return f"prescription_{name}.pdf"


def build_prescription_text(document: PrescriptionDocument) -> str:
    """Plain-text prescription suitable for pasting into another system."""
    patient = document.patient
    lines: List[str] = [
        f"Prescription for {patient.name}",
        f"Age: {patient.age} | Gender: {patient.gender}",
        f"Contact: {patient.contact_number}",
        "",
    ]

    if document.notes:
        lines += ["Doctor's Notes:", document.notes, ""]

    if document.medications:
        lines.append("Medications:")
        for index, med in enumerate(document.medications, 1):
            lines.append(f"{index}. {med.name} - {med.dosage}")
            lines.append(f"   Frequency: {frequency_label(med.frequency)}")
            lines.append(f"   Duration: {med.duration}")
            if med.instructions:
                lines.append(f"   Instructions: {med.instructions}")
            lines.append("")

    return "\n".join(lines)


def build_share_message(document: PrescriptionDocument, profile: DoctorProfile) -> str:
    """Structured summary sent as the text of a messaging deep link."""
    patient = document.patient
    message = f"*Prescription from {profile.clinic_name or 'Clinic'}*\n\n"
    message += f"*Dr:* {profile.name or 'Doctor'}\n"
    message += f"*Date:* {format_date(document.created_at)}\n\n"
    message += f"*Patient:* {patient.name}\n"
    message += f"*Age/Gender:* {patient.age}/{patient.gender}\n\n"

    message += "*MEDICATIONS:*\n"
    for index, med in enumerate(document.medications, 1):
        message += f"{index}. {med.name} - {med.dosage}\n"
        message += f"   Frequency: {frequency_label(med.frequency)}\n"
        message += f"   Duration: {med.duration}\n"
        if med.instructions:
            message += f"   Instructions: {med.instructions}\n"
        message += "\n"

    if document.notes:
        message += f"\n*Doctor's Notes:*\n{document.notes}\n\n"
    if profile.phone:
        message += f"For any queries, please contact: {profile.phone}"
    return message.rstrip() + "\n"
