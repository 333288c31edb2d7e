from datetime import datetime, timezone
from typing import Any, Dict, Optional

from config import ARTIFACT_COLUMNS
from .exceptions import InvalidTransition, RecordNotFound, ValidationFailed
from .records import (
    CustomerRepository, KycStatus, Step, STEP_ORDER, normalize_status,
    reconcile_step, render_record, status_counts, status_synonyms
)
from .storage import DocumentStorage
from .validation import validate_admin_notes, validate_failure_reason

# Staying in the same status is always allowed (notes-only save)
TRANSITIONS = {
    KycStatus.PENDING: {KycStatus.IN_REVIEW, KycStatus.ON_HOLD, KycStatus.APPROVED, KycStatus.REJECTED},
    KycStatus.IN_REVIEW: {KycStatus.ON_HOLD, KycStatus.APPROVED, KycStatus.REJECTED},
    KycStatus.ON_HOLD: {KycStatus.IN_REVIEW, KycStatus.APPROVED, KycStatus.REJECTED},
    KycStatus.APPROVED: {KycStatus.ON_HOLD},
    KycStatus.REJECTED: {KycStatus.IN_REVIEW},
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReviewStateMachine:
    """
    Admin review of a KYC record.

    Rules:
    - only transitions listed in TRANSITIONS are accepted
    - rejected → needs a non-empty failure reason
    - approved → stamps kyc_completed_at and clears the failure reason
    - every save stamps reviewer and review time
    """

    def can_transition(self, current: KycStatus, target: KycStatus) -> bool:
        return current == target or target in TRANSITIONS[current]

    def build_update(self,
                     current: KycStatus,
                     target: KycStatus,
                     reviewer_id: str,
                     admin_notes: Optional[str] = None,
                     failure_reason: Optional[str] = None,
                     now: Optional[str] = None) -> Dict[str, Any]:
        if not self.can_transition(current, target):
            raise InvalidTransition(
                f"Cannot change status from {current.value} to {target.value}"
            )

        notes = validate_admin_notes(admin_notes)
        if not notes.is_valid:
            raise ValidationFailed(notes.error)
        reason = validate_failure_reason(failure_reason)
        if not reason.is_valid:
            raise ValidationFailed(reason.error)

        now = now or utc_now()
        updates = {
            "kyc_status": target.value,
            "reviewed_by": reviewer_id,
            "reviewed_at": now,
            "updated_at": now,
        }
        # Omitted notes leave the stored ones alone
        if admin_notes is not None:
            updates["admin_notes"] = notes.value

        if target == KycStatus.REJECTED:
            if not reason.value.strip():
                raise ValidationFailed("Please provide a reason for rejection.")
            updates["failure_reason"] = reason.value.strip()

        if target == KycStatus.APPROVED:
            updates["kyc_completed_at"] = now
            updates["failure_reason"] = None

        return updates


class ReviewService:
    """Admin dashboard operations over customer records"""

    def __init__(self,
                 repository: CustomerRepository,
                 storage: DocumentStorage,
                 machine: Optional[ReviewStateMachine] = None):
        self.repository = repository
        self.storage = storage
        self.machine = machine or ReviewStateMachine()

    def review(self,
               record_id: str,
               target_status: KycStatus,
               reviewer_id: str,
               admin_notes: Optional[str] = None,
               failure_reason: Optional[str] = None,
               access_token: Optional[str] = None) -> Dict[str, Any]:
        record = self.repository.get(record_id, access_token=access_token)
        if not record:
            raise RecordNotFound("KYC record not found")

        current = normalize_status(record.get("kyc_status"))
        target = KycStatus(target_status)
        updates = self.machine.build_update(
            current, target, reviewer_id,
            admin_notes=admin_notes,
            failure_reason=failure_reason,
        )

        # Only applies if nobody changed the status since it was read
        updated = self.repository.update(
            record_id, updates,
            access_token=access_token,
            expected={"kyc_status": status_synonyms(current)},
        )
        if not updated:
            raise InvalidTransition("KYC record was changed by someone else. Reload and try again.")
        return updated

    def list_records(self,
                     status: Optional[KycStatus] = None,
                     search: Optional[str] = None,
                     access_token: Optional[str] = None) -> Dict[str, Any]:
        """Dashboard listing, newest first; counts are over all records"""
        records = self.repository.list(access_token=access_token)
        counts = status_counts(records)

        if status:
            records = [r for r in records if r["kyc_status"] == status.value]
        if search and search.strip():
            term = search.strip().lower()
            records = [r for r in records if term in (r.get("document_number") or "").lower()]

        return {
            "records": [render_record(r) for r in records],
            "counts": counts,
        }

    def record_detail(self, record_id: str, access_token: Optional[str] = None) -> Dict[str, Any]:
        record = self.repository.get(record_id, access_token=access_token)
        if not record:
            raise RecordNotFound("KYC record not found")

        documents = self.storage.get_signed_urls(
            {step: record.get(column) for step, column in ARTIFACT_COLUMNS.items()},
            access_token,
        )
        return {
            "record": render_record(record),
            "documents": documents,
            "allowed_statuses": sorted(s.value for s in TRANSITIONS[KycStatus(record["kyc_status"])]),
        }

    def delete_document(self,
                        record_id: str,
                        document_type: str,
                        access_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Remove one stored document and clear it from the record. The resume
        pointer moves back to that step if it was already past it.
        """
        if document_type not in ARTIFACT_COLUMNS:
            raise ValidationFailed(f"Unknown document type: {document_type}")

        record = self.repository.get(record_id, access_token=access_token)
        if not record:
            raise RecordNotFound("KYC record not found")

        column = ARTIFACT_COLUMNS[document_type]
        self.storage.delete_document(record.get(column), access_token)

        values = {column: None, "updated_at": utc_now()}
        step = Step(document_type)
        if STEP_ORDER.index(reconcile_step(record)) > STEP_ORDER.index(step):
            values["current_step"] = step.value

        updated = self.repository.update(record_id, values, access_token=access_token)
        if not updated:
            raise RecordNotFound("KYC record not found")
        return render_record(updated)
