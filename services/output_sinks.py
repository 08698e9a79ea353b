import html
import re
import webbrowser
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Protocol, Union
from urllib.parse import quote

from config import settings, logger
from models.schemas import DoctorProfile, PrescriptionDocument, ShareRecipient
from services.errors import MissingContact, PopupBlocked
from services.pdf_composer import ComposedPrescription
from services.text_processor import build_share_message

# Opens a URL in a new viewing context; returns False when that was not possible
Opener = Callable[[str], bool]

MISSING_CONTACT_HINTS = {
    ShareRecipient.PATIENT: "Add the patient's contact number and try again.",
    ShareRecipient.CLINIC: "Set the clinic WhatsApp number in your profile settings.",
}


class ShareSheet(Protocol):
    """A native share target that can attach the PDF itself."""

    def can_share_files(self) -> bool:
        ...

    def share(self, filename: str, pdf_bytes: bytes, title: str, text: str) -> None:
        ...


@dataclass
class ShareResult:
    method: str  # "native" or "link"
    message: str
    url: Optional[str] = None


def save_pdf(artifact: ComposedPrescription, directory: Union[str, Path] = ".") -> Path:
    """Write the composed PDF under its download filename."""
    path = Path(directory) / artifact.filename
    path.write_bytes(artifact.pdf_bytes)
    logger.info(f"Prescription saved to {path}")
    return path


def build_print_view(pdf_url: str, title: str = "Prescription") -> str:
    """HTML page that loads the PDF and opens the print dialog once it has loaded."""
    src = html.escape(pdf_url, quote=True)
    return f"""<!DOCTYPE html>
<html>
<head>
<meta charset="utf-8">
<title>{html.escape(title)}</title>
<style>html, body, iframe {{ margin: 0; width: 100%; height: 100%; border: 0; }}</style>
</head>
<body>
<iframe id="prescription" src="{src}" onload="this.contentWindow.focus(); this.contentWindow.print();"></iframe>
</body>
</html>
"""


def open_for_print(url: str, opener: Optional[Opener] = None) -> None:
    opener = opener or webbrowser.open
    if not opener(url):
        raise PopupBlocked("the print window")
    logger.info("Print view opened")


def sanitize_phone(phone: str) -> str:
    return re.sub(r'\D+', '', phone or '')


def build_share_link(phone: str, message: str, host: Optional[str] = None) -> str:
    """https://<host>/<digits-only phone>?text=<url-encoded message>"""
    host = host or settings.messaging_host
    return f"https://{host}/{sanitize_phone(phone)}?text={quote(message, safe='')}"


def recipient_phone(recipient: ShareRecipient, document: PrescriptionDocument, profile: DoctorProfile) -> str:
    if recipient == ShareRecipient.CLINIC:
        return profile.clinic_whatsapp
    return document.patient.contact_number


def share_prescription(
    document: PrescriptionDocument,
    profile: DoctorProfile,
    recipient: ShareRecipient = ShareRecipient.PATIENT,
    artifact: Optional[ComposedPrescription] = None,
    share_sheet: Optional[ShareSheet] = None,
    opener: Optional[Opener] = None,
) -> ShareResult:
    """
    Share a prescription.

    A native share sheet that accepts files is used when the recipient is not
    fixed to a phone number. Otherwise a prefilled message link is built for the
    recipient's phone; a blank phone raises MissingContact before any link exists.
    When an opener is given the link is opened, and a refused window raises PopupBlocked.
    """
    message = build_share_message(document, profile)

    if (
        recipient == ShareRecipient.ANYONE
        and artifact is not None
        and share_sheet is not None
        and share_sheet.can_share_files()
    ):
        share_sheet.share(artifact.filename, artifact.pdf_bytes, artifact.layout.title, message)
        logger.info("Prescription handed to native share sheet")
        return ShareResult(method="native", message=message)

    target = recipient if recipient != ShareRecipient.ANYONE else ShareRecipient.PATIENT
    phone = sanitize_phone(recipient_phone(target, document, profile))
    if not phone:
        raise MissingContact(target.value, MISSING_CONTACT_HINTS[target])

    url = build_share_link(phone, message)
    if opener is not None and not opener(url):
        raise PopupBlocked("the messaging app")

    logger.info(f"Share link built for {target.value}")
    return ShareResult(method="link", message=message, url=url)
