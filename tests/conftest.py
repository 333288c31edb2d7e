"""Pytest configuration and shared fixtures."""

import itertools
from typing import Any, Dict, List, Optional

import cv2
import numpy as np
import pytest
from unittest.mock import Mock
from fastapi.testclient import TestClient

from app import app
from kyc.records import normalize_record
from kyc.storage import DocumentStorage
from kyc.supabase import SupabaseClient

USER_ID = "user-1"
PAN = "ABCDE1234F"


class InMemoryCustomerRepository:
    """
    Stand-in for CustomerRepository with the same conditional-update
    semantics: `expected` columns must hold one of the allowed values.
    """

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self._ids = itertools.count(1)

    def add(self, **row) -> Dict[str, Any]:
        row.setdefault("id", f"rec-{next(self._ids)}")
        row.setdefault("user_id", USER_ID)
        row.setdefault("document_number", PAN)
        row.setdefault("kyc_status", "pending")
        row.setdefault("current_step", "identity")
        row.setdefault("created_at", f"2026-01-{len(self.rows) + 1:02d}T00:00:00+00:00")
        self.rows[row["id"]] = row
        return dict(row)

    def find_by_document(self, user_id, document_number, access_token=None) -> Optional[Dict[str, Any]]:
        for row in self.rows.values():
            if row["user_id"] == user_id and row["document_number"] == document_number:
                return normalize_record(row)
        return None

    def get(self, record_id, access_token=None) -> Optional[Dict[str, Any]]:
        row = self.rows.get(record_id)
        return normalize_record(row) if row else None

    def create(self, user_id, document_number, values, access_token=None) -> Dict[str, Any]:
        row = self.add(user_id=user_id, document_number=document_number, kyc_status="pending", **values)
        return normalize_record(row)

    def update(self, record_id, values, access_token=None, user_id=None,
               expected: Optional[Dict[str, List[str]]] = None) -> Optional[Dict[str, Any]]:
        row = self.rows.get(record_id)
        if not row or (user_id and row["user_id"] != user_id):
            return None
        for column, allowed in (expected or {}).items():
            if row.get(column) not in allowed:
                return None
        row.update(values)
        return normalize_record(row)

    def list(self, access_token=None) -> List[Dict[str, Any]]:
        rows = sorted(self.rows.values(), key=lambda r: r["created_at"], reverse=True)
        return [normalize_record(row) for row in rows]


def encode_png(pixels: np.ndarray) -> bytes:
    ok, buffer = cv2.imencode(".png", pixels)
    assert ok
    return buffer.tobytes()


def checkerboard(low: int, high: int, size: int = 64, block: int = 8) -> np.ndarray:
    """
    Alternating blocks: mean (low+high)/2, population variance ((high-low)/2)^2.
    Blocks line up with the JPEG grid so re-encoding keeps both stats.
    """
    pattern = ((np.indices((size, size)) // block).sum(axis=0) % 2).astype(bool)
    pixels = np.where(pattern, high, low).astype(np.uint8)
    return np.dstack([pixels, pixels, pixels])


@pytest.fixture
def test_client() -> TestClient:
    """Create FastAPI test client."""
    return TestClient(app)


@pytest.fixture(autouse=True)
def clear_dependency_overrides():
    """Ensure FastAPI dependency overrides are reset between tests."""
    app.dependency_overrides = {}
    yield
    app.dependency_overrides = {}


@pytest.fixture
def repository() -> InMemoryCustomerRepository:
    return InMemoryCustomerRepository()


@pytest.fixture
def mock_client() -> Mock:
    """Mocked backend client."""
    return Mock(spec=SupabaseClient)


@pytest.fixture
def mock_storage() -> Mock:
    """
    Mocked document storage. Uploads return a predictable path and
    signed URLs mirror whatever paths they are asked for.
    """
    storage = Mock(spec=DocumentStorage)
    storage.upload_document.side_effect = (
        lambda image, user_id, document_type, access_token=None: f"{user_id}/{document_type}_1700000000000.jpg"
    )
    storage.get_signed_urls.side_effect = lambda paths, access_token=None: {
        doc_type: (f"https://signed.example/{paths[doc_type]}" if paths.get(doc_type) else None)
        for doc_type in ("identity", "address", "face")
    }
    return storage


@pytest.fixture
def good_image() -> bytes:
    """Mean 120, variance 400"""
    return encode_png(checkerboard(100, 140))


@pytest.fixture
def dark_image() -> bytes:
    """Mean 20, variance 400"""
    return encode_png(checkerboard(0, 40))


@pytest.fixture
def blurry_image() -> bytes:
    """Uniform gray, variance 0"""
    return encode_png(np.full((64, 64, 3), 128, dtype=np.uint8))
