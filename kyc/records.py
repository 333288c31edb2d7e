import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from config import ARTIFACT_COLUMNS
from .supabase import SupabaseClient
from .validation import sanitize_text

logger = logging.getLogger(__name__)


class KycStatus(str, Enum):
    PENDING = "pending"
    IN_REVIEW = "in_review"
    ON_HOLD = "on_hold"
    APPROVED = "approved"
    REJECTED = "rejected"


# Older records use these interchangeably with the canonical values
LEGACY_STATUSES = {
    "completed": KycStatus.APPROVED,
    "failed": KycStatus.REJECTED,
}


class Step(str, Enum):
    IDENTITY = "identity"
    ADDRESS = "address"
    FACE = "face"
    COMPLETED = "completed"


STEP_ORDER = [Step.IDENTITY, Step.ADDRESS, Step.FACE, Step.COMPLETED]

RENDERED_TEXT_FIELDS = ("address", "admin_notes", "failure_reason")


def normalize_status(value: Optional[str]) -> KycStatus:
    if not value:
        return KycStatus.PENDING
    value = value.strip().lower()
    if value in LEGACY_STATUSES:
        return LEGACY_STATUSES[value]
    try:
        return KycStatus(value)
    except ValueError:
        logger.warning("Unknown kyc_status %r, treating as pending", value)
        return KycStatus.PENDING


def status_synonyms(status: KycStatus) -> List[str]:
    """Stored values that read as `status`"""
    return [status.value] + [legacy for legacy, canonical in LEGACY_STATUSES.items() if canonical == status]


def next_step(step: Step) -> Step:
    index = STEP_ORDER.index(step)
    return STEP_ORDER[min(index + 1, len(STEP_ORDER) - 1)]


def reconcile_step(record: Dict[str, Any]) -> Step:
    """
    The stored current_step is the resume pointer. Artifacts are only a
    consistency check: if a step before the pointer has no artifact the
    pointer is moved back to it, never forward.
    """
    try:
        step = Step(record.get("current_step") or Step.IDENTITY)
    except ValueError:
        logger.warning("Record %s has unknown current_step %r", record.get("id"), record.get("current_step"))
        step = Step.IDENTITY

    for earlier in STEP_ORDER[:STEP_ORDER.index(step)]:
        if not record.get(ARTIFACT_COLUMNS[earlier.value]):
            logger.warning(
                "Record %s is at step %s but has no %s artifact; resuming at %s",
                record.get("id"), step.value, earlier.value, earlier.value
            )
            return earlier

    return step


def normalize_record(row: Dict[str, Any]) -> Dict[str, Any]:
    record = dict(row)
    record["kyc_status"] = normalize_status(row.get("kyc_status")).value
    return record


def render_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a record for display; free text is stored raw and escaped here"""
    rendered = dict(record)
    for field in RENDERED_TEXT_FIELDS:
        if rendered.get(field) is not None:
            rendered[field] = sanitize_text(rendered[field])
    return rendered


def status_counts(records: List[Dict[str, Any]]) -> Dict[str, int]:
    counts = {"total": len(records)}
    for status in KycStatus:
        counts[status.value] = sum(1 for r in records if r.get("kyc_status") == status.value)
    return counts


class CustomerRepository:
    """
    Customer/KYC records in the remote store. Statuses are mapped to the
    canonical set on the way out; current_step is returned as stored.
    """

    table = "customers"

    def __init__(self, client: SupabaseClient):
        self.client = client

    def find_by_document(self,
                         user_id: str,
                         document_number: str,
                         access_token: Optional[str] = None) -> Optional[Dict[str, Any]]:
        rows = self.client.select(
            self.table,
            filters=[("document_number", f"eq.{document_number}"), ("user_id", f"eq.{user_id}")],
            access_token=access_token,
        )
        return normalize_record(rows[0]) if rows else None

    def get(self, record_id: str, access_token: Optional[str] = None) -> Optional[Dict[str, Any]]:
        rows = self.client.select(
            self.table,
            filters=[("id", f"eq.{record_id}")],
            access_token=access_token,
        )
        return normalize_record(rows[0]) if rows else None

    def create(self,
               user_id: str,
               document_number: str,
               values: Dict[str, Any],
               access_token: Optional[str] = None) -> Dict[str, Any]:
        row = {
            "document_number": document_number,
            "user_id": user_id,
            "kyc_status": KycStatus.PENDING.value,
        }
        row.update(values)
        return normalize_record(self.client.insert(self.table, row, access_token=access_token))

    def update(self,
               record_id: str,
               values: Dict[str, Any],
               access_token: Optional[str] = None,
               user_id: Optional[str] = None,
               expected: Optional[Dict[str, List[str]]] = None) -> Optional[Dict[str, Any]]:
        """
        Conditional update. `expected` maps a column to the values it may
        currently hold; None is returned when no row matched, which means
        the record moved on underneath the caller.
        """
        filters = [("id", f"eq.{record_id}")]
        if user_id:
            filters.append(("user_id", f"eq.{user_id}"))
        for column, allowed in (expected or {}).items():
            filters.append((column, f"in.({','.join(allowed)})"))

        rows = self.client.update(self.table, values, filters, access_token=access_token)
        return normalize_record(rows[0]) if rows else None

    def list(self, access_token: Optional[str] = None) -> List[Dict[str, Any]]:
        """All records visible to the caller, newest first"""
        rows = self.client.select(
            self.table,
            order="created_at.desc",
            access_token=access_token,
        )
        return [normalize_record(row) for row in rows]
