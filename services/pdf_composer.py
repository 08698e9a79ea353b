"""
Vector PDF rendering of a prescription.

Composition happens in two passes: ``layout_prescription`` walks a top-down
cursor over an A4 page and records every string, rule, panel and image at an
explicit position; ``render_layout`` replays those items on a reportlab canvas.
All y coordinates in the layout are measured from the top edge of the page.
"""
import base64
import re
from dataclasses import dataclass, field
from io import BytesIO
from typing import Dict, List, Optional, Tuple, Union

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFError, TTFont
from reportlab.pdfgen import canvas

from config import settings, logger
from models.schemas import DoctorProfile, PrescriptionDocument
from services.errors import CompositionFailure
from services.image_processor import load_logo
from services.text_processor import download_filename, format_date, frequency_label

PAGE_WIDTH, PAGE_HEIGHT = A4
MARGIN = 20 * mm
PRINTABLE_WIDTH = PAGE_WIDTH - 2 * MARGIN

LINE_HEIGHT = 5 * mm
SECTION_GAP = 6 * mm
ROW_HEIGHT = 8 * mm
PANEL_HEIGHT = 24 * mm
LOGO_SIZE = 18 * mm

# Fixed column positions, relative to the left margin
COLUMN_OFFSETS = (2 * mm, 62 * mm, 97 * mm, 137 * mm)
COLUMN_TITLES = ("Medication", "Dosage", "Frequency", "Duration")

SIGNATURE_FROM_BOTTOM = 45 * mm
SIGNATURE_WIDTH = 50 * mm
SIGNATURE_BLOCK_HEIGHT = 12 * mm
FOOTER_FROM_BOTTOM = 15 * mm

TEXT_COLOR = "#222222"
MUTED_COLOR = "#666666"
PANEL_FILL = "#F5F5F5"
HEADER_ROW_FILL = "#EAEAEA"
ZEBRA_FILL = "#F8F8F8"
RULE_COLOR = "#BBBBBB"

# (regular, bold) base-14 faces by family keyword
FONT_FAMILIES = {
    "helvetica": ("Helvetica", "Helvetica-Bold"),
    "times": ("Times-Roman", "Times-Bold"),
    "courier": ("Courier", "Courier-Bold"),
}
FONT_ALIASES = {
    "serif": "times",
    "georgia": "times",
    "garamond": "times",
    "mono": "courier",
}

HEX_COLOR = re.compile(r'^#[0-9a-fA-F]{6}$')

# font file path -> registered reportlab font name
_TTF_NAMES: Dict[str, str] = {}


@dataclass(frozen=True)
class TextItem:
    page: int
    x: float
    y: float  # baseline
    text: str
    font: str
    size: float
    color: str = TEXT_COLOR
    align: str = "left"  # left, center, right


@dataclass(frozen=True)
class LineItem:
    page: int
    x1: float
    y1: float
    x2: float
    y2: float
    color: str = RULE_COLOR
    width: float = 0.75
    dash: Tuple[float, ...] = ()


@dataclass(frozen=True)
class RectItem:
    page: int
    x: float
    y: float  # top edge
    width: float
    height: float
    fill: str = PANEL_FILL


@dataclass(frozen=True)
class ImageItem:
    page: int
    x: float
    y: float  # top edge
    width: float
    height: float
    key: str = "logo"


LayoutItem = Union[TextItem, LineItem, RectItem, ImageItem]


@dataclass(frozen=True)
class PrescriptionLayout:
    items: Tuple[LayoutItem, ...]
    page_count: int
    title: str

    def texts(self) -> List[str]:
        return [item.text for item in self.items if isinstance(item, TextItem)]


@dataclass
class ComposedPrescription:
    pdf_bytes: bytes
    filename: str
    layout: PrescriptionLayout

    @property
    def data_url(self) -> str:
        encoded = base64.b64encode(self.pdf_bytes).decode("ascii")
        return f"data:application/pdf;base64,{encoded}"


def register_ttf(path: str) -> Optional[str]:
    """Register a TrueType face once per path and return its font name."""
    if path in _TTF_NAMES:
        return _TTF_NAMES[path]
    name = f"PrescriptionTTF-{len(_TTF_NAMES) + 1}"
    try:
        pdfmetrics.registerFont(TTFont(name, path))
    except (TTFError, OSError) as e:
        logger.warning(f"Could not register font {path}: {e}")
        return None
    _TTF_NAMES[path] = name
    return name


def resolve_fonts(font_family: str) -> Tuple[str, str]:
    """Map the profile font family onto a (regular, bold) face pair.

    A configured TTF (settings.pdf_font_path) takes precedence over the family.
    Otherwise base-14 faces are used and unknown families fall back to Helvetica.
    """
    if settings.pdf_font_path:
        regular = register_ttf(settings.pdf_font_path)
        if regular is not None:
            bold = register_ttf(settings.pdf_bold_font_path) if settings.pdf_bold_font_path else None
            return regular, bold or regular

    key = (font_family or "").strip().lower()
    for keyword, family in FONT_ALIASES.items():
        if keyword in key:
            key = family
            break
    return FONT_FAMILIES.get(key, FONT_FAMILIES["helvetica"])


def resolve_header_color(value: Optional[str]) -> str:
    if value and HEX_COLOR.match(value):
        return value.upper()
    return settings.default_header_color


def wrap_text(text: str, font: str, size: float, width: float = PRINTABLE_WIDTH) -> List[str]:
    """Word-wrap text to a width, measured with the given font and size.

    Explicit line breaks are kept; blank lines are kept as empty strings.
    """
    lines: List[str] = []
    for paragraph in text.split("\n"):
        lines.extend(simpleSplit(paragraph, font, size, width) or [""])
    return lines


@dataclass
class _Cursor:
    bottom: float
    y: float = MARGIN
    page: int = 0
    items: List[LayoutItem] = field(default_factory=list)

    def ensure_space(self, height: float) -> bool:
        """Start a new page if the next block would cross the bottom limit."""
        if self.y + height <= self.bottom:
            return False
        self.new_page()
        return True

    def new_page(self) -> None:
        self.page += 1
        self.y = MARGIN

    def text(self, x: float, y: float, text: str, font: str, size: float, color: str = TEXT_COLOR, align: str = "left"):
        self.items.append(TextItem(self.page, x, y, text, font, size, color, align))

    def line(self, x1: float, y1: float, x2: float, y2: float, color: str = RULE_COLOR, width: float = 0.75, dash=()):
        self.items.append(LineItem(self.page, x1, y1, x2, y2, color, width, tuple(dash)))

    def rect(self, x: float, y: float, width: float, height: float, fill: str = PANEL_FILL):
        self.items.append(RectItem(self.page, x, y, width, height, fill))


def layout_prescription(
    document: PrescriptionDocument,
    profile: DoctorProfile,
    has_logo: bool = False,
) -> PrescriptionLayout:
    """Place every element of the prescription at explicit page coordinates."""
    style = profile.style
    regular, bold = resolve_fonts(style.font_family)
    header_color = resolve_header_color(style.header_color)
    footer_text = (style.footer_text or "").strip()
    right_edge = PAGE_WIDTH - MARGIN
    center_x = PAGE_WIDTH / 2

    bottom = PAGE_HEIGHT - MARGIN
    if footer_text:
        bottom = PAGE_HEIGHT - FOOTER_FROM_BOTTOM - LINE_HEIGHT
    cur = _Cursor(bottom=bottom)

    # 1. Clinic header
    header_top = cur.y
    if has_logo:
        cur.items.append(ImageItem(cur.page, MARGIN, header_top, LOGO_SIZE, LOGO_SIZE))

    cur.y += 6 * mm
    cur.text(center_x, cur.y, profile.clinic_name or "Clinic", bold, 18, header_color, "center")

    doctor_line = profile.name or "Doctor"
    if profile.qualification:
        doctor_line = f"{doctor_line}, {profile.qualification}"
    cur.y += 7 * mm
    cur.text(center_x, cur.y, doctor_line, regular, 12, TEXT_COLOR, "center")

    if profile.address:
        # Narrower than the page so centered lines clear the logo
        for address_line in wrap_text(profile.address, regular, 9, PRINTABLE_WIDTH - 2 * LOGO_SIZE):
            cur.y += LINE_HEIGHT
            cur.text(center_x, cur.y, address_line, regular, 9, MUTED_COLOR, "center")

    contact_parts = []
    if profile.phone:
        contact_parts.append(f"Phone: {profile.phone}")
    if profile.email:
        contact_parts.append(f"Email: {profile.email}")
    if profile.registration_number:
        contact_parts.append(f"Reg. No: {profile.registration_number}")
    if contact_parts:
        cur.y += LINE_HEIGHT
        cur.text(center_x, cur.y, " | ".join(contact_parts), regular, 9, MUTED_COLOR, "center")

    if has_logo:
        cur.y = max(cur.y, header_top + LOGO_SIZE)

    # 2. Separator
    cur.y += 4 * mm
    cur.line(MARGIN, cur.y, right_edge, cur.y, header_color, 1.2)

    # 3. Title and date row
    cur.y += 8 * mm
    cur.text(MARGIN, cur.y, "PRESCRIPTION", bold, 13, header_color)
    cur.text(right_edge, cur.y, f"Date: {format_date(document.created_at)}", regular, 10, TEXT_COLOR, "right")

    # 4. Patient panel
    patient = document.patient
    cur.y += 5 * mm
    panel_top = cur.y
    inner_x = MARGIN + 4 * mm
    cur.rect(MARGIN, panel_top, PRINTABLE_WIDTH, PANEL_HEIGHT, PANEL_FILL)
    cur.text(inner_x, panel_top + 6 * mm, "Patient Details", bold, 10)
    cur.text(inner_x, panel_top + 12 * mm, f"Name: {patient.name}", regular, 10)
    cur.text(MARGIN + PRINTABLE_WIDTH / 2, panel_top + 12 * mm, f"Age/Gender: {patient.age}/{patient.gender}", regular, 10)
    cur.text(inner_x, panel_top + 18 * mm, f"Contact: {patient.contact_number}", regular, 10)
    cur.y = panel_top + PANEL_HEIGHT + SECTION_GAP

    # 5. Notes
    if document.notes.strip():
        cur.ensure_space(2 * LINE_HEIGHT)
        cur.y += LINE_HEIGHT
        cur.text(MARGIN, cur.y, "Doctor's Notes", bold, 11)
        for note_line in wrap_text(document.notes, regular, 10):
            cur.ensure_space(LINE_HEIGHT)
            cur.y += LINE_HEIGHT
            cur.text(MARGIN, cur.y, note_line, regular, 10)
        cur.y += SECTION_GAP

    # 6. Medication table and instructions
    if document.medications:
        cur.ensure_space(LINE_HEIGHT + 2 * mm + 2 * ROW_HEIGHT)
        cur.y += LINE_HEIGHT
        cur.text(MARGIN, cur.y, "Medications", bold, 11)
        cur.y += 2 * mm
        _table_header(cur, bold)

        for index, med in enumerate(document.medications):
            if cur.ensure_space(ROW_HEIGHT):
                _table_header(cur, bold)
            if index % 2 == 1:
                cur.rect(MARGIN, cur.y, PRINTABLE_WIDTH, ROW_HEIGHT, ZEBRA_FILL)
            baseline = cur.y + ROW_HEIGHT - 2.7 * mm
            values = (med.name, med.dosage, frequency_label(med.frequency), med.duration)
            for offset, value in zip(COLUMN_OFFSETS, values):
                cur.text(MARGIN + offset, baseline, value, regular, 10)
            cur.y += ROW_HEIGHT

        instructed = [med for med in document.medications if med.instructions.strip()]
        if instructed:
            cur.y += 2 * mm
            for med in instructed:
                for instruction_line in wrap_text(f"{med.name}: {med.instructions}", regular, 10):
                    cur.ensure_space(LINE_HEIGHT)
                    cur.y += LINE_HEIGHT
                    cur.text(MARGIN, cur.y, instruction_line, regular, 10)
        cur.y += SECTION_GAP

    # 7. Signature, at least a fixed distance from the bottom
    signature_y = max(cur.y + SECTION_GAP, PAGE_HEIGHT - SIGNATURE_FROM_BOTTOM)
    if signature_y + SIGNATURE_BLOCK_HEIGHT > cur.bottom:
        cur.new_page()
        signature_y = PAGE_HEIGHT - SIGNATURE_FROM_BOTTOM
    cur.y = signature_y
    signature_center = right_edge - SIGNATURE_WIDTH / 2
    cur.line(right_edge - SIGNATURE_WIDTH, cur.y, right_edge, cur.y, MUTED_COLOR, 0.75, (2, 2))
    cur.text(signature_center, cur.y + 5 * mm, profile.name or "Doctor", regular, 10, TEXT_COLOR, "center")
    cur.text(signature_center, cur.y + 9 * mm, "Signature", regular, 8, MUTED_COLOR, "center")

    # 8. Footer on every page
    page_count = cur.page + 1
    if footer_text:
        footer_y = PAGE_HEIGHT - FOOTER_FROM_BOTTOM
        for page in range(page_count):
            cur.items.append(LineItem(page, MARGIN, footer_y, right_edge, footer_y, RULE_COLOR, 0.5))
            cur.items.append(TextItem(page, center_x, footer_y + 5 * mm, footer_text, regular, 8, MUTED_COLOR, "center"))

    title = f"Prescription - {patient.name}" if patient.name else "Prescription"
    return PrescriptionLayout(items=tuple(cur.items), page_count=page_count, title=title)


def _table_header(cur: _Cursor, bold: str) -> None:
    cur.rect(MARGIN, cur.y, PRINTABLE_WIDTH, ROW_HEIGHT, HEADER_ROW_FILL)
    baseline = cur.y + ROW_HEIGHT - 2.7 * mm
    for offset, title in zip(COLUMN_OFFSETS, COLUMN_TITLES):
        cur.text(MARGIN + offset, baseline, title, bold, 10, MUTED_COLOR)
    cur.y += ROW_HEIGHT


def render_layout(
    layout: PrescriptionLayout,
    images: Optional[Dict[str, ImageReader]] = None,
    invariant: Optional[bool] = None,
) -> bytes:
    """Draw a computed layout onto an A4 reportlab canvas and return the PDF bytes."""
    images = images or {}
    if invariant is None:
        invariant = settings.pdf_invariant

    buffer = BytesIO()
    pdf = canvas.Canvas(buffer, pagesize=A4, invariant=int(invariant))
    pdf.setTitle(layout.title)
    pdf.setCreator("Prescription Service")

    page = 0
    for item in sorted(layout.items, key=lambda i: i.page):
        while item.page > page:
            pdf.showPage()
            page += 1

        if isinstance(item, RectItem):
            pdf.setFillColor(colors.HexColor(item.fill))
            pdf.rect(item.x, PAGE_HEIGHT - item.y - item.height, item.width, item.height, stroke=0, fill=1)
        elif isinstance(item, LineItem):
            pdf.setStrokeColor(colors.HexColor(item.color))
            pdf.setLineWidth(item.width)
            pdf.setDash(list(item.dash) if item.dash else [])
            pdf.line(item.x1, PAGE_HEIGHT - item.y1, item.x2, PAGE_HEIGHT - item.y2)
        elif isinstance(item, TextItem):
            pdf.setFont(item.font, item.size)
            pdf.setFillColor(colors.HexColor(item.color))
            y = PAGE_HEIGHT - item.y
            if item.align == "center":
                pdf.drawCentredString(item.x, y, item.text)
            elif item.align == "right":
                pdf.drawRightString(item.x, y, item.text)
            else:
                pdf.drawString(item.x, y, item.text)
        elif isinstance(item, ImageItem):
            image = images.get(item.key)
            if image is not None:
                pdf.drawImage(
                    image, item.x, PAGE_HEIGHT - item.y - item.height,
                    width=item.width, height=item.height,
                    preserveAspectRatio=True, mask="auto",
                )

    while page < layout.page_count - 1:
        pdf.showPage()
        page += 1
    pdf.showPage()
    pdf.save()
    return buffer.getvalue()


def compose_prescription(document: PrescriptionDocument, profile: DoctorProfile) -> ComposedPrescription:
    """Render a document snapshot and profile snapshot into a PDF artifact."""
    document = document.model_copy(deep=True)
    profile = profile.model_copy(deep=True)

    images = {}
    if profile.style.show_logo:
        logo = load_logo(profile.style.logo or profile.clinic_logo)
        if logo is not None:
            images["logo"] = logo

    try:
        layout = layout_prescription(document, profile, has_logo="logo" in images)
        pdf_bytes = render_layout(layout, images)
    except Exception as e:
        logger.error(f"PDF composition failed: {e}")
        raise CompositionFailure(
            "There was an error generating the prescription. Please try again."
        ) from e

    logger.info(f"Composed prescription PDF ({len(pdf_bytes)} bytes, {layout.page_count} page(s))")
    return ComposedPrescription(
        pdf_bytes=pdf_bytes,
        filename=download_filename(document.patient.name),
        layout=layout,
    )


def compose_with_retry(
    document: PrescriptionDocument,
    profile: DoctorProfile,
    attempts: Optional[int] = None,
) -> ComposedPrescription:
    """Compose, retrying on CompositionFailure before giving up."""
    max_attempts = max(1, attempts or settings.composition_attempts)

    for attempt in range(max_attempts):
        try:
            return compose_prescription(document, profile)
        except CompositionFailure as e:
            logger.warning(f"Composition attempt {attempt+1}/{max_attempts} failed: {e.__cause__}")
            if attempt == max_attempts - 1:
                logger.error(f"Failed all {max_attempts} attempts to compose the prescription")
                raise
