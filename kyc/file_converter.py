import base64
import binascii
import io
import os
import re
from typing import Tuple
from PIL import Image, UnidentifiedImageError
import pillow_heif
from pdf2image import convert_from_bytes

from config import settings
from .exceptions import ValidationFailed

pillow_heif.register_heif_opener()

SUPPORTED_IMAGE_EXTS = {".jpg", ".jpeg", ".png", ".heic"}
PDF_EXT = ".pdf"
DEFAULT_MIME = "image/jpeg"


def data_url_to_bytes(data_url: str) -> Tuple[bytes, str]:
    """
    Decodes a base64 data URL into raw bytes.
    Returns (content, mime_type); the MIME type defaults to image/jpeg.
    """
    header, sep, payload = (data_url or "").partition(",")
    if not sep or not payload:
        raise ValidationFailed("Captured image is not a valid data URL")

    match = re.search(r":(.*?);", header)
    mime = match.group(1) if match else DEFAULT_MIME

    try:
        content = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationFailed("Captured image is not valid base64", original_error=e)

    return content, mime


def convert_to_jpeg(content: bytes, filename: str = "capture.jpg") -> bytes:
    """
    Converts an uploaded file (image / HEIC / PDF) into JPEG bytes.
    For PDFs only the first page is kept.
    """
    ext = os.path.splitext(filename)[1].lower()

    # -------- Case 1: Normal image or HEIC --------
    if ext in SUPPORTED_IMAGE_EXTS:
        try:
            img = Image.open(io.BytesIO(content)).convert("RGB")
        except (UnidentifiedImageError, OSError) as e:
            raise ValidationFailed(f"Unreadable image file: {filename}", original_error=e)
        return _encode_jpeg(img)

    # -------- Case 2: PDF --------
    if ext == PDF_EXT:
        pages = convert_from_bytes(content, dpi=300, first_page=1, last_page=1)
        if not pages:
            raise ValidationFailed(f"No pages found in {filename}")
        return _encode_jpeg(pages[0].convert("RGB"))

    raise ValidationFailed(f"Unsupported file type: {ext}")


def _encode_jpeg(img: Image.Image) -> bytes:
    out = io.BytesIO()
    img.save(out, "JPEG", quality=settings.JPEG_QUALITY)
    return out.getvalue()
