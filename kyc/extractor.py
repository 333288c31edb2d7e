import asyncio
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from config import AADHAAR_SCAN_REGEX, PAN_SCAN_REGEX
from .ocr import OCREngine, get_ocr_engine
from .utils import download_image

logger = logging.getLogger(__name__)

NAME_PLACEHOLDER = "Unable to extract name"
ADDRESS_PLACEHOLDER = "Unable to extract address"
DOCUMENT_NUMBER_PLACEHOLDER = "Unable to extract document number"
PLACEHOLDERS = {NAME_PLACEHOLDER, ADDRESS_PLACEHOLDER, DOCUMENT_NUMBER_PLACEHOLDER}

EXTRACTION_NOTICE = "Unable to extract some details from documents. Please verify and enter manually."

ADDRESS_KEYWORDS = ["street", "road", "city", "pin", "house", "flat", "building"]

# Words that end a labelled name
_NAME_STOP = r"(?!(?i:dob|date|father|gender|male|female|address|year|birth)\b)"

NAME_PATTERNS = [
    # "Name: John Smith" / "NAME JOHN SMITH"
    re.compile(r"\b(?:Name|NAME|name)\b\s*:?\s*([A-Z][A-Za-z]+(?:\s+" + _NAME_STOP + r"[A-Z][A-Za-z]+)*)"),
    # all-caps run right before the date of birth
    re.compile(r"\b([A-Z]{2,}(?:\s+[A-Z]{2,})*)\s*(?:DOB|D\.O\.B|Date)\b"),
]
TITLE_WORD = re.compile(r"^[A-Z][a-z]+$")
ADDRESS_PATTERN = re.compile(r"\bAddress\b\s*:?\s*(.+?)\s*(?:\bPin(?:code)?\b|$)", re.IGNORECASE)

aadhaar_regex = re.compile(r"(?<!\d)" + AADHAAR_SCAN_REGEX + r"(?!\d)")
pan_regex = re.compile(PAN_SCAN_REGEX)


def is_placeholder(value: Optional[str]) -> bool:
    """Placeholders mean "needs manual entry", never a real value"""
    return not value or value in PLACEHOLDERS


def normalize_whitespace(text: str) -> str:
    return re.sub(r"\s+", " ", text or "").strip()


def parse_name(ocr_text: str) -> str:
    """Guess the holder's name from identity document text"""
    clean_text = normalize_whitespace(ocr_text)

    for pattern in NAME_PATTERNS:
        match = pattern.search(clean_text)
        if match and match.group(1).strip():
            return match.group(1).strip()

    # Fallback: first run of consecutive capitalized words, at most three
    run: List[str] = []
    for word in clean_text.split(" "):
        if len(word) > 2 and TITLE_WORD.match(word):
            run.append(word)
            if len(run) == 3:
                break
        elif len(run) >= 2:
            break
        else:
            run = []

    if len(run) >= 2:
        return " ".join(run)

    return ""


def parse_address(ocr_text: str) -> str:
    """Guess a postal address from address proof text"""
    clean_text = normalize_whitespace(ocr_text)

    match = ADDRESS_PATTERN.search(clean_text)
    if match and match.group(1).strip(" ,"):
        return match.group(1).strip(" ,")

    # Keyword scan over sentence-split text
    for sentence in re.split(r"[.;]", clean_text):
        lower_sentence = sentence.lower()
        if any(keyword in lower_sentence for keyword in ADDRESS_KEYWORDS):
            return sentence.strip()

    # Last fallback: the first few lines that look like text
    lines = [line.strip() for line in (ocr_text or "").split("\n") if len(line.strip()) > 5]
    if lines:
        return ", ".join(lines[:3])

    return ""


def parse_document_number(ocr_text: str) -> str:
    """Find a 12-digit national ID or a PAN-shaped identifier"""
    clean_text = re.sub(r"\s", "", ocr_text or "")

    aadhaar_match = aadhaar_regex.search(clean_text)
    if aadhaar_match:
        return aadhaar_match.group(0)

    pan_match = pan_regex.search(clean_text)
    if pan_match:
        return pan_match.group(0)

    return ""


class DocumentExtractor:
    """
    Reads name, address and document number from the identity and address
    document images. Each image is read independently: a failure on one
    only blanks the fields that come from it.
    """

    def __init__(self,
                 engine: Optional[OCREngine] = None,
                 downloader: Callable[[str], bytes] = download_image):
        self.engine = engine or get_ocr_engine()
        self.downloader = downloader

    def read_text(self, image_url: str) -> str:
        return self.engine.recognize(self.downloader(image_url))

    def _read_identity(self, image_url: str, known_number: str) -> Dict[str, Any]:
        try:
            text = self.read_text(image_url)
        except Exception as e:
            logger.warning("Identity document extraction failed: %s", e)
            return {"name": "", "document_number": known_number, "failed": True}

        return {
            "name": parse_name(text),
            "document_number": known_number or parse_document_number(text),
            "failed": False,
        }

    def _read_address(self, image_url: str) -> Dict[str, Any]:
        try:
            text = self.read_text(image_url)
        except Exception as e:
            logger.warning("Address document extraction failed: %s", e)
            return {"address": "", "failed": True}

        return {"address": parse_address(text), "failed": False}

    async def extract(self,
                      identity_url: str,
                      address_url: str,
                      existing_document_number: Optional[str] = None) -> Dict[str, Any]:
        """
        Run both OCR passes concurrently and fill missing fields with
        placeholders. `notice` is set when anything needs manual entry.
        """
        identity, address = await asyncio.gather(
            asyncio.to_thread(self._read_identity, identity_url, existing_document_number or ""),
            asyncio.to_thread(self._read_address, address_url),
        )

        extracted = {
            "name": identity["name"] or NAME_PLACEHOLDER,
            "address": address["address"] or ADDRESS_PLACEHOLDER,
            "document_number": identity["document_number"] or DOCUMENT_NUMBER_PLACEHOLDER,
        }
        needs_manual_entry = [field for field, value in extracted.items() if is_placeholder(value)]

        failed = identity["failed"] or address["failed"]
        extracted["needs_manual_entry"] = needs_manual_entry
        extracted["notice"] = EXTRACTION_NOTICE if (failed or needs_manual_entry) else None
        return extracted
