import base64
import io
from typing import Optional

import pytesseract
from openai import OpenAI
from PIL import Image, UnidentifiedImageError

from config import settings
from .exceptions import ExtractionError

TRANSCRIBE_PROMPT = """
You are an OCR system.

Transcribe ALL text visible in this document image exactly as printed.
Keep the original line breaks.
Do not translate, summarize, correct or explain anything.
Return the plain text only.
"""


class OCREngine:
    """Turns an image into recognized text. Engines hold no state between calls."""

    name = "base"

    def recognize(self, image_bytes: bytes) -> str:
        raise NotImplementedError


class TesseractOCREngine(OCREngine):
    name = "tesseract"

    def __init__(self, lang: Optional[str] = None):
        self.lang = lang or settings.TESSERACT_LANG

    def recognize(self, image_bytes: bytes) -> str:
        try:
            with Image.open(io.BytesIO(image_bytes)) as img:
                return pytesseract.image_to_string(img.convert("RGB"), lang=self.lang)
        except (UnidentifiedImageError, OSError) as e:
            raise ExtractionError(f"Image could not be loaded: {e}", original_error=e)
        except pytesseract.TesseractError as e:
            raise ExtractionError(f"Tesseract failed: {e}", original_error=e)


class OpenAIVisionOCREngine(OCREngine):
    """Transcribes text with a vision model; a fresh client is opened per call"""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None):
        self.api_key = api_key or settings.OPENAI_API_KEY
        self.model = model or settings.OPENAI_MODEL

    def encode_image(self, image_bytes: bytes) -> str:
        """Encode image as base64 data URL"""
        b64 = base64.b64encode(image_bytes).decode("utf-8")
        return f"data:image/jpeg;base64,{b64}"

    def recognize(self, image_bytes: bytes) -> str:
        if not self.api_key:
            raise ExtractionError("OPENAI_API_KEY is not configured")

        client = OpenAI(api_key=self.api_key)
        try:
            response = client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": TRANSCRIBE_PROMPT},
                            {
                                "type": "image_url",
                                "image_url": {
                                    "url": self.encode_image(image_bytes)
                                }
                            }
                        ]
                    }
                ],
                max_tokens=1000,
                temperature=0
            )
        except Exception as e:
            raise ExtractionError(f"Vision transcription failed: {e}", original_error=e)
        finally:
            client.close()

        return response.choices[0].message.content or ""


OCR_ENGINES = {
    TesseractOCREngine.name: TesseractOCREngine,
    OpenAIVisionOCREngine.name: OpenAIVisionOCREngine,
}


def get_ocr_engine(name: Optional[str] = None) -> OCREngine:
    name = (name or settings.OCR_ENGINE).lower()
    if name not in OCR_ENGINES:
        raise ValueError(f"Unknown OCR engine: {name}")
    return OCR_ENGINES[name]()
