"""Tests for OCR text parsing and the concurrent document extractor."""

import pytest
from unittest.mock import Mock

from kyc.exceptions import ExtractionError
from kyc.extractor import (
    ADDRESS_PLACEHOLDER,
    DOCUMENT_NUMBER_PLACEHOLDER,
    EXTRACTION_NOTICE,
    NAME_PLACEHOLDER,
    DocumentExtractor,
    is_placeholder,
    parse_address,
    parse_document_number,
    parse_name,
)
from kyc.ocr import OCREngine

IDENTITY_URL = "https://signed.example/identity.jpg"
ADDRESS_URL = "https://signed.example/address.jpg"


class TestParseName:
    def test_labelled_name(self) -> None:
        assert parse_name("Name: JOHN SMITH") == "JOHN SMITH"

    def test_labelled_name_stops_at_date_of_birth(self) -> None:
        assert parse_name("Name: Rahul Kumar DOB 01/01/1990") == "Rahul Kumar"

    def test_capitals_before_dob(self) -> None:
        assert parse_name("RAHUL KUMAR\nDOB: 01/01/1990") == "RAHUL KUMAR"

    def test_falls_back_to_capitalized_run(self) -> None:
        assert parse_name("issued to Rahul Kumar on 12/01/2020") == "Rahul Kumar"

    def test_capitalized_run_is_capped_at_three_words(self) -> None:
        assert parse_name("holder Anil Kumar Singh Yadav here") == "Anil Kumar Singh"

    def test_nothing_found(self) -> None:
        assert parse_name("1234 5678 9012") == ""


class TestParseAddress:
    def test_labelled_address_up_to_pincode(self) -> None:
        text = "Address: 12 MG Road, Bangalore, Pincode 560001"

        assert parse_address(text) == "12 MG Road, Bangalore"

    def test_keyword_sentence(self) -> None:
        text = "Issued by utility co. Flat 4B, Green Building, Pune. Thank you"

        assert parse_address(text) == "Flat 4B, Green Building, Pune"

    def test_first_three_lines_fallback(self) -> None:
        text = "Lorem ipsum dolor\nSit amet consectetur\nok\nAdipiscing elit sed\nDo eiusmod tempor"

        assert parse_address(text) == "Lorem ipsum dolor, Sit amet consectetur, Adipiscing elit sed"

    def test_nothing_found(self) -> None:
        assert parse_address("") == ""


class TestParseDocumentNumber:
    def test_twelve_digits_with_spaces(self) -> None:
        assert parse_document_number("Aadhaar 1234 5678 9012") == "123456789012"

    def test_pan_shaped_identifier(self) -> None:
        assert parse_document_number("Permanent Account Number ABCDE1234F") == "ABCDE1234F"

    def test_no_number(self) -> None:
        assert parse_document_number("No numbers here") == ""


class TestPlaceholders:
    @pytest.mark.parametrize("value", [None, "", NAME_PLACEHOLDER, ADDRESS_PLACEHOLDER, DOCUMENT_NUMBER_PLACEHOLDER])
    def test_placeholders(self, value) -> None:
        assert is_placeholder(value)

    def test_real_value(self) -> None:
        assert not is_placeholder("12 MG Road, Bangalore")


class TestDocumentExtractor:
    """Test suite for DocumentExtractor.extract."""

    @pytest.fixture
    def engine(self) -> Mock:
        engine = Mock(spec=OCREngine)
        texts = {
            b"identity": "Name: JOHN SMITH\nDOB 01/01/1990\nAadhaar 1234 5678 9012",
            b"address": "Address: 12 MG Road, Bangalore, Pincode 560001",
        }
        engine.recognize.side_effect = lambda image: texts[image]
        return engine

    @staticmethod
    def downloader(url: str) -> bytes:
        return b"identity" if "identity" in url else b"address"

    @pytest.mark.asyncio
    async def test_extracts_all_fields(self, engine: Mock) -> None:
        extractor = DocumentExtractor(engine=engine, downloader=self.downloader)

        result = await extractor.extract(IDENTITY_URL, ADDRESS_URL)

        assert result["name"] == "JOHN SMITH"
        assert result["address"] == "12 MG Road, Bangalore"
        assert result["document_number"] == "123456789012"
        assert result["needs_manual_entry"] == []
        assert result["notice"] is None

    @pytest.mark.asyncio
    async def test_existing_document_number_wins(self, engine: Mock) -> None:
        extractor = DocumentExtractor(engine=engine, downloader=self.downloader)

        result = await extractor.extract(IDENTITY_URL, ADDRESS_URL, "ABCDE1234F")

        assert result["document_number"] == "ABCDE1234F"

    @pytest.mark.asyncio
    async def test_identity_failure_does_not_affect_address(self, engine: Mock) -> None:
        def downloader(url: str) -> bytes:
            if "identity" in url:
                raise ExtractionError("download failed")
            return b"address"

        extractor = DocumentExtractor(engine=engine, downloader=downloader)

        result = await extractor.extract(IDENTITY_URL, ADDRESS_URL)

        assert result["name"] == NAME_PLACEHOLDER
        assert result["document_number"] == DOCUMENT_NUMBER_PLACEHOLDER
        assert result["address"] == "12 MG Road, Bangalore"
        assert result["needs_manual_entry"] == ["name", "document_number"]
        assert result["notice"] == EXTRACTION_NOTICE

    @pytest.mark.asyncio
    async def test_address_failure_keeps_identity_fields(self, engine: Mock) -> None:
        def recognize(image: bytes) -> str:
            if image == b"address":
                raise ExtractionError("ocr failed")
            return "Name: JOHN SMITH"

        engine.recognize.side_effect = recognize
        extractor = DocumentExtractor(engine=engine, downloader=self.downloader)

        result = await extractor.extract(IDENTITY_URL, ADDRESS_URL, "ABCDE1234F")

        assert result["name"] == "JOHN SMITH"
        assert result["document_number"] == "ABCDE1234F"
        assert result["address"] == ADDRESS_PLACEHOLDER
        assert result["needs_manual_entry"] == ["address"]
        assert result["notice"] == EXTRACTION_NOTICE

    @pytest.mark.asyncio
    async def test_unparseable_text_yields_placeholders(self, engine: Mock) -> None:
        engine.recognize.side_effect = None
        engine.recognize.return_value = ""
        extractor = DocumentExtractor(engine=engine, downloader=self.downloader)

        result = await extractor.extract(IDENTITY_URL, ADDRESS_URL)

        assert result["needs_manual_entry"] == ["name", "address", "document_number"]
        assert result["notice"] == EXTRACTION_NOTICE
