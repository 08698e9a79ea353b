import base64
import os
from io import BytesIO

import pytest
import reportlab
from PIL import Image
from reportlab.lib.units import mm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.pdfmetrics import stringWidth

from config import settings
from models.schemas import MedicationEntry
from services import pdf_composer
from services.errors import CompositionFailure
from services.prescription_editor import update_patient_info
from services.pdf_composer import (
    ImageItem,
    PAGE_HEIGHT,
    PRINTABLE_WIDTH,
    SIGNATURE_FROM_BOTTOM,
    TextItem,
    compose_prescription,
    compose_with_retry,
    layout_prescription,
    resolve_fonts,
    resolve_header_color,
    wrap_text,
)

# TrueType face shipped inside the reportlab distribution
VERA_TTF = os.path.join(os.path.dirname(reportlab.__file__), "fonts", "Vera.ttf")


def test_john_doe_layout_contents(john_doe, profile):
    texts = layout_prescription(john_doe, profile).texts()

    assert "City Health Clinic" in texts
    assert "PRESCRIPTION" in texts
    assert "Date: 01/04/2025" in texts
    assert "Name: John Doe" in texts
    assert "Age/Gender: 45/Male" in texts
    assert "Contact: +15559876543" in texts
    for value in ("Loratadine", "10mg", "Once daily", "30 days"):
        assert value in texts
    assert "Loratadine: Take in the morning" in texts
    assert "Doctor's Notes" not in texts
    assert "Signature" in texts


def test_clinic_name_uses_header_color(john_doe, profile):
    layout = layout_prescription(john_doe, profile)
    clinic = next(item for item in layout.items if isinstance(item, TextItem) and item.text == "City Health Clinic")
    assert clinic.color == "#4F46E5"
    assert clinic.align == "center"
    assert clinic.font == "Helvetica-Bold"


def test_notes_section_present_when_notes_set(john_doe, profile):
    document = john_doe.model_copy(update={"notes": "Seasonal allergies.\nReview in one month."})
    texts = layout_prescription(document, profile).texts()
    assert "Doctor's Notes" in texts
    assert "Seasonal allergies." in texts
    assert "Review in one month." in texts


def test_instruction_lines_only_for_instructed_entries(john_doe, profile):
    document = john_doe.model_copy(deep=True)
    document.medications.append(MedicationEntry(name="Paracetamol", dosage="500mg", frequency="as-needed"))
    texts = layout_prescription(document, profile).texts()

    assert "As Needed" in texts
    assert not any(text.startswith("Paracetamol:") for text in texts)


def test_layout_is_deterministic(john_doe, profile):
    assert layout_prescription(john_doe, profile) == layout_prescription(john_doe, profile)


def test_signature_sits_near_page_bottom(john_doe, profile):
    layout = layout_prescription(john_doe, profile)
    signature = next(item for item in layout.items if isinstance(item, TextItem) and item.text == "Signature")
    assert signature.y >= PAGE_HEIGHT - SIGNATURE_FROM_BOTTOM


def test_long_medication_list_spills_onto_new_pages(john_doe, profile):
    document = john_doe.model_copy(deep=True)
    document.medications = [
        MedicationEntry(name=f"Medicine {n}", dosage="5mg", frequency="bid", duration="7 days")
        for n in range(40)
    ]
    layout = layout_prescription(document, profile)

    assert layout.page_count > 1
    # Table header is repeated on the continuation page
    assert layout.texts().count("Medication") >= 2
    assert "Medicine 39" in layout.texts()
    for item in layout.items:
        assert 0 <= item.page < layout.page_count


def test_footer_repeated_on_every_page(john_doe, profile):
    profile = profile.model_copy(deep=True)
    profile.style.footer_text = "Not valid without signature"
    document = john_doe.model_copy(deep=True)
    document.medications = [MedicationEntry(name=f"Medicine {n}") for n in range(40)]

    layout = layout_prescription(document, profile)
    footer_pages = {
        item.page for item in layout.items
        if isinstance(item, TextItem) and item.text == "Not valid without signature"
    }
    assert footer_pages == set(range(layout.page_count))


def test_missing_profile_fields_use_placeholders(john_doe, profile):
    texts = layout_prescription(john_doe, profile.model_copy(update={"clinic_name": "", "name": ""})).texts()
    assert "Clinic" in texts
    assert "Doctor" in texts


def test_wrap_text_preserves_words():
    text = "Take the tablet after breakfast with a full glass of water and avoid driving if drowsy"
    lines = wrap_text(text, "Helvetica", 10, 50 * mm)

    assert len(lines) >= 2
    assert " ".join(lines).split() == text.split()


LONG_NOTES = (
    "Patient reports intermittent sneezing, nasal congestion and itchy eyes for the past three weeks, "
    "worse in the mornings and after outdoor activity. No fever, wheeze or shortness of breath. "
    "Advised to limit exposure to pollen, keep windows closed during high pollen days and return "
    "for review if symptoms persist beyond one month of treatment."
)


def test_wrap_text_fits_printable_width():
    lines = wrap_text(LONG_NOTES, "Helvetica", 10)

    assert len(lines) >= 2
    assert " ".join(lines).split() == LONG_NOTES.split()
    for line in lines:
        assert stringWidth(line, "Helvetica", 10) <= PRINTABLE_WIDTH


def test_wrap_text_depends_on_font_and_size():
    regular = wrap_text(LONG_NOTES, "Helvetica", 10)
    larger = wrap_text(LONG_NOTES, "Helvetica", 14)
    monospace = wrap_text(LONG_NOTES, "Courier", 10)

    assert len(larger) > len(regular)
    assert monospace != regular


def test_wrap_text_keeps_blank_lines():
    assert wrap_text("first\n\nsecond", "Helvetica", 10) == ["first", "", "second"]


@pytest.mark.parametrize("family,expected", [
    ("Inter", ("Helvetica", "Helvetica-Bold")),
    ("Times New Roman", ("Times-Roman", "Times-Bold")),
    ("Georgia", ("Times-Roman", "Times-Bold")),
    ("Courier", ("Courier", "Courier-Bold")),
])
def test_resolve_fonts(family, expected):
    assert resolve_fonts(family) == expected


def test_configured_ttf_font_is_used(monkeypatch, john_doe, profile):
    monkeypatch.setattr(settings, "pdf_font_path", VERA_TTF)
    monkeypatch.setattr(settings, "pdf_bold_font_path", None)

    regular, bold = resolve_fonts("Inter")
    assert regular == bold
    assert regular in pdfmetrics.getRegisteredFontNames()

    document = update_patient_info(john_doe, "name", "Ramón Sánchez")
    artifact = compose_prescription(document, profile)
    name_item = next(
        item for item in artifact.layout.items
        if isinstance(item, TextItem) and item.text == "Name: Ramón Sánchez"
    )
    assert name_item.font == regular
    assert artifact.pdf_bytes.startswith(b"%PDF")


def test_unreadable_ttf_falls_back_to_base_fonts(monkeypatch):
    monkeypatch.setattr(settings, "pdf_font_path", "/nonexistent/NotoSans.ttf")
    assert resolve_fonts("Inter") == ("Helvetica", "Helvetica-Bold")


def test_invalid_header_color_falls_back():
    assert resolve_header_color("#4f46e5") == "#4F46E5"
    assert resolve_header_color("indigo") == "#1E88E5"


def test_compose_produces_pdf(john_doe, profile):
    artifact = compose_prescription(john_doe, profile)

    assert artifact.pdf_bytes.startswith(b"%PDF")
    assert artifact.filename == "prescription_John_Doe.pdf"
    assert artifact.layout.title == "Prescription - John Doe"
    assert artifact.data_url.startswith("data:application/pdf;base64,")


def test_compose_is_repeatable(john_doe, profile):
    assert compose_prescription(john_doe, profile).pdf_bytes == compose_prescription(john_doe, profile).pdf_bytes


def test_compose_draws_logo_from_logo_directory(monkeypatch, tmp_path, john_doe, profile):
    Image.new("RGBA", (40, 40), (30, 136, 229, 128)).save(tmp_path / "logo.png")
    monkeypatch.setattr(settings, "logo_directory", str(tmp_path))
    profile = profile.model_copy(deep=True)
    profile.style.show_logo = True
    profile.clinic_logo = "logo.png"

    artifact = compose_prescription(john_doe, profile)
    assert any(isinstance(item, ImageItem) for item in artifact.layout.items)


def test_compose_draws_data_uri_logo(john_doe, profile):
    buffer = BytesIO()
    Image.new("RGB", (20, 20), (30, 136, 229)).save(buffer, format="PNG")
    profile = profile.model_copy(deep=True)
    profile.style.show_logo = True
    profile.style.logo = "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")

    artifact = compose_prescription(john_doe, profile)
    assert any(isinstance(item, ImageItem) for item in artifact.layout.items)


def test_local_logo_path_refused_without_logo_directory(monkeypatch, tmp_path, john_doe, profile):
    logo_path = tmp_path / "logo.png"
    Image.new("RGB", (40, 40)).save(logo_path)
    monkeypatch.setattr(settings, "logo_directory", None)
    profile = profile.model_copy(deep=True)
    profile.style.show_logo = True
    profile.clinic_logo = str(logo_path)

    artifact = compose_prescription(john_doe, profile)
    assert not any(isinstance(item, ImageItem) for item in artifact.layout.items)


def test_logo_path_cannot_escape_logo_directory(monkeypatch, tmp_path, john_doe, profile):
    logos = tmp_path / "logos"
    logos.mkdir()
    Image.new("RGB", (40, 40)).save(tmp_path / "private.png")
    monkeypatch.setattr(settings, "logo_directory", str(logos))
    profile = profile.model_copy(deep=True)
    profile.style.show_logo = True

    for reference in ("../private.png", str(tmp_path / "private.png")):
        profile.clinic_logo = reference
        artifact = compose_prescription(john_doe, profile)
        assert not any(isinstance(item, ImageItem) for item in artifact.layout.items)


def test_unreadable_logo_is_skipped(john_doe, profile):
    profile = profile.model_copy(deep=True)
    profile.style.show_logo = True
    profile.style.logo = "/nonexistent/logo.png"

    artifact = compose_prescription(john_doe, profile)
    assert not any(isinstance(item, ImageItem) for item in artifact.layout.items)
    assert artifact.pdf_bytes.startswith(b"%PDF")


def test_compose_with_retry_gives_up(monkeypatch, john_doe, profile):
    calls = []

    def broken_render(layout, images=None, invariant=None):
        calls.append(layout)
        raise RuntimeError("canvas exploded")

    monkeypatch.setattr(pdf_composer, "render_layout", broken_render)

    with pytest.raises(CompositionFailure) as exc_info:
        compose_with_retry(john_doe, profile, attempts=3)
    assert len(calls) == 3
    assert exc_info.value.title == "Download Failed"


def test_compose_with_retry_recovers(monkeypatch, john_doe, profile):
    real_render = pdf_composer.render_layout
    calls = []

    def flaky_render(layout, images=None, invariant=None):
        calls.append(layout)
        if len(calls) == 1:
            raise RuntimeError("transient")
        return real_render(layout, images, invariant)

    monkeypatch.setattr(pdf_composer, "render_layout", flaky_render)

    artifact = compose_with_retry(john_doe, profile, attempts=2)
    assert artifact.pdf_bytes.startswith(b"%PDF")
    assert len(calls) == 2
