from pydantic_settings import BaseSettings
from typing import Dict, Optional

class Settings(BaseSettings):
    # Supabase Configuration
    SUPABASE_URL: str = "http://localhost:54321"
    SUPABASE_ANON_KEY: str = ""
    # Used for storage and privileged table access; falls back to the anon key
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    HTTP_TIMEOUT: int = 30

    # Storage
    STORAGE_BUCKET: str = "kyc-documents"
    SIGNED_URL_EXPIRES_IN: int = 3600
    JPEG_QUALITY: int = 90

    # OCR Configuration
    OCR_ENGINE: str = "tesseract"
    TESSERACT_LANG: str = "eng"
    OPENAI_API_KEY: Optional[str] = None
    OPENAI_MODEL: str = "gpt-4.1-mini"

    # Image Quality Thresholds
    BLUR_THRESHOLD: float = 100
    MIN_BRIGHTNESS: float = 50

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"

settings = Settings()

# PAN-style identifier: 5 letters, 4 digits, 1 letter (e.g. ABCDE1234F)
PAN_REGEX = r"^[A-Z]{5}[0-9]{4}[A-Z]$"

# Loose forms used when scanning OCR text
AADHAAR_SCAN_REGEX = r"\d{12}"
PAN_SCAN_REGEX = r"[A-Z]{5}\d{4}[A-Z]"

# Free-text limits
ADDRESS_MIN_LENGTH = 10
ADDRESS_MAX_LENGTH = 500
ADMIN_NOTES_MAX_LENGTH = 2000
FAILURE_REASON_MAX_LENGTH = 1000
EMAIL_MAX_LENGTH = 255
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 128

# Label stored alongside each captured document
DOCUMENT_TYPE_LABELS: Dict[str, str] = {
    "identity": "AADHAAR",
    "address": "Address Proof",
}

# Record column holding the storage path for each capture step
ARTIFACT_COLUMNS: Dict[str, str] = {
    "identity": "identity_document_url",
    "address": "address_document_url",
    "face": "face_video_url",
}

CAPTURE_INSTRUCTIONS: Dict[str, str] = {
    "identity": (
        "Position your AADHAAR card or PAN card within the camera frame. "
        "Make sure the document is flat, well-lit, and all text is clearly visible. "
        "Avoid any glare or shadows on the document, then capture it."
    ),
    "address": (
        "Position your address proof document within the camera frame. "
        "This can be your AADHAAR card, a utility bill, or a bank statement. "
        "Ensure the entire document is visible and the address is clearly readable."
    ),
    "face": (
        "Look directly at the camera and keep your face centered in the frame. "
        "Ensure your face is well-lit and clearly visible. "
        "Remove any sunglasses, hats, or face coverings."
    ),
}
