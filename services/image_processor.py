import base64
import os
from io import BytesIO
from pathlib import Path
from typing import Optional

import requests
from PIL import Image
from reportlab.lib.utils import ImageReader

from config import settings, logger


def validate_image(image_file: BytesIO) -> bool:
    """Validate a logo image file."""
    # Check file size
    image_file.seek(0, os.SEEK_END)
    file_size = image_file.tell() / (1024 * 1024)  # Convert to MB
    image_file.seek(0)  # Reset file pointer

    if file_size > settings.max_image_size_mb:
        raise ValueError(f"Image size exceeds the {settings.max_image_size_mb}MB limit")

    # Validate image format
    try:
        with Image.open(image_file) as img:
            img.verify()
            image_file.seek(0)  # Reset file pointer after verification
            return True
    except Exception as e:
        raise ValueError(f"Invalid image file: {e}")


def resolve_logo_path(reference: str) -> Path:
    """Resolve a local logo reference inside settings.logo_directory; anything else is refused."""
    if not settings.logo_directory:
        raise ValueError("Local logo files are not enabled")

    base = Path(settings.logo_directory).resolve()
    path = (base / reference).resolve()
    if path != base and base not in path.parents:
        raise ValueError("Logo path is outside the logo directory")
    return path


def read_image_reference(reference: str) -> BytesIO:
    """Fetch image bytes from an http(s) URL, a data: URI or a file in the logo directory."""
    if reference.startswith(("http://", "https://")):
        response = requests.get(reference, timeout=settings.logo_fetch_timeout)
        response.raise_for_status()
        return BytesIO(response.content)

    if reference.startswith("data:"):
        _, _, payload = reference.partition(",")
        return BytesIO(base64.b64decode(payload))

    with open(resolve_logo_path(reference), "rb") as f:
        return BytesIO(f.read())


def load_logo(reference: Optional[str]) -> Optional[ImageReader]:
    """Load the clinic logo for drawing; any failure just means no logo."""
    if not reference:
        return None

    try:
        image_file = read_image_reference(reference)
        validate_image(image_file)
        # Flatten transparency so the logo prints on white paper
        with Image.open(image_file) as img:
            rgba = img.convert("RGBA")
        flattened = Image.new("RGB", rgba.size, "white")
        flattened.paste(rgba, mask=rgba.split()[-1])
        return ImageReader(flattened)
    except (OSError, ValueError, requests.RequestException) as e:
        logger.warning(f"Clinic logo could not be loaded from {reference[:60]}: {e}")
        return None
