"""
Mapping between the identity provider's profile rows and DoctorProfile.

Rows come in two spellings: squashed lowercase columns (``clinicname``,
``prescriptionstyle``) and snake case (``clinic_name``,
``prescription_settings``). Both are read through fixed field tables.
"""
from typing import Any, Dict, Optional

from models.schemas import DoctorProfile, PrescriptionStyle

# storage column -> DoctorProfile field
PROFILE_FIELDS = {
    "name": "name",
    "email": "email",
    "clinicname": "clinic_name",
    "clinic_name": "clinic_name",
    "address": "address",
    "phone": "phone",
    "clinicwhatsapp": "clinic_whatsapp",
    "clinic_whatsapp": "clinic_whatsapp",
    "qualification": "qualification",
    "registrationnumber": "registration_number",
    "registration_number": "registration_number",
    "cliniclogo": "clinic_logo",
    "clinic_logo": "clinic_logo",
}

STYLE_COLUMNS = ("prescriptionstyle", "prescription_style", "prescription_settings")

# style key -> PrescriptionStyle field
STYLE_FIELDS = {
    "headerColor": "header_color",
    "header_color": "header_color",
    "fontFamily": "font_family",
    "font_family": "font_family",
    "showLogo": "show_logo",
    "show_logo": "show_logo",
    "logo": "logo",
    "footerText": "footer_text",
    "footer_text": "footer_text",
}


def style_from_storage(raw: Optional[Dict[str, Any]]) -> PrescriptionStyle:
    values = {}
    for key, value in (raw or {}).items():
        field = STYLE_FIELDS.get(key)
        if field is not None and value is not None:
            values[field] = value
    return PrescriptionStyle(**values)


def profile_from_storage(row: Optional[Dict[str, Any]]) -> DoctorProfile:
    """Build the canonical profile; missing or null columns keep their defaults."""
    row = row or {}
    values: Dict[str, Any] = {}
    for column, field in PROFILE_FIELDS.items():
        value = row.get(column)
        if value is not None:
            values[field] = value

    style_raw = next((row[column] for column in STYLE_COLUMNS if row.get(column)), None)
    values["style"] = style_from_storage(style_raw)
    return DoctorProfile(**values)


def profile_to_storage(profile: DoctorProfile) -> Dict[str, Any]:
    """Row in the provider's squashed lowercase convention."""
    style = profile.style
    return {
        "name": profile.name,
        "email": profile.email,
        "clinicname": profile.clinic_name,
        "address": profile.address,
        "phone": profile.phone or None,
        "clinicwhatsapp": profile.clinic_whatsapp or None,
        "qualification": profile.qualification or None,
        "registrationnumber": profile.registration_number or None,
        "cliniclogo": profile.clinic_logo,
        "prescriptionstyle": {
            "headerColor": style.header_color,
            "fontFamily": style.font_family,
            "showLogo": style.show_logo,
            "logo": style.logo,
            "footerText": style.footer_text,
        },
    }
