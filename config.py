from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration settings loaded from environment variables or .env file."""
    api_key: str = "dev_key"  # API key for securing endpoints
    debug_mode: bool = False
    log_level: str = "INFO"
    log_file: Optional[str] = "prescription_api.log"
    speech_language: str = "en-US"
    messaging_host: str = "wa.me"
    max_image_size_mb: int = 5  # Clinic logo limit
    logo_fetch_timeout: float = 10.0
    logo_directory: Optional[str] = None  # Local logo files are only read from here
    pdf_font_path: Optional[str] = None  # TTF for non-Latin scripts
    pdf_bold_font_path: Optional[str] = None
    composition_attempts: int = 2
    pdf_invariant: bool = True  # Stable PDF bytes for identical input
    default_header_color: str = "#1E88E5"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"

# Create global settings instance
settings = Settings()

# Setup logging
import logging

logging_level = getattr(logging, settings.log_level.upper(), logging.INFO)
handlers = [logging.StreamHandler()]
if settings.log_file:
    handlers.append(logging.FileHandler(settings.log_file))
logging.basicConfig(
    level=logging_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=handlers
)
logger = logging.getLogger("prescription_service")
