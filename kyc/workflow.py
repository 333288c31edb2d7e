import asyncio
import logging
from typing import Any, Dict, Optional

from config import ARTIFACT_COLUMNS, CAPTURE_INSTRUCTIONS, DOCUMENT_TYPE_LABELS
from .exceptions import (
    ConfirmationRequired, ImageQualityError, InvalidTransition,
    RecordNotFound, RemoteServiceError, StepOrderError, StorageError, ValidationFailed
)
from .extractor import (
    ADDRESS_PLACEHOLDER, DocumentExtractor, EXTRACTION_NOTICE, NAME_PLACEHOLDER, is_placeholder
)
from .quality import ImageQualityGate
from .records import (
    CustomerRepository, KycStatus, Step, next_step, reconcile_step,
    render_record, status_synonyms
)
from .review import utc_now
from .storage import DocumentStorage
from .validation import validate_address, validate_pan_number

logger = logging.getLogger(__name__)

CAPTURE_MESSAGES = {
    Step.IDENTITY: f"{DOCUMENT_TYPE_LABELS['identity']} detected and captured successfully",
    Step.ADDRESS: f"{DOCUMENT_TYPE_LABELS['address']} captured successfully",
    Step.FACE: "Live facial verification captured successfully",
}

# Statuses from which the user may still submit
SUBMITTABLE = (KycStatus.PENDING, KycStatus.ON_HOLD)


def require_document_number(value: Optional[str]) -> str:
    result = validate_pan_number(value)
    if not result.is_valid:
        raise ValidationFailed(result.error)
    return result.value


def artifacts_of(record: Optional[Dict[str, Any]]) -> Dict[str, bool]:
    return {
        step: bool(record and record.get(column))
        for step, column in ARTIFACT_COLUMNS.items()
    }


class KycWorkflow:
    """
    The user side of the verification flow:

    verify → instructions → capture (identity, address, face) → preview → submit → result

    current_step on the record is the resume pointer. A capture is only
    accepted for that step, and the store update is conditional on it, so
    steps cannot be skipped or applied out of order.
    """

    def __init__(self,
                 repository: CustomerRepository,
                 storage: DocumentStorage,
                 quality_gate: Optional[ImageQualityGate] = None,
                 extractor_factory=DocumentExtractor):
        self.repository = repository
        self.storage = storage
        self.quality_gate = quality_gate or ImageQualityGate()
        self.extractor_factory = extractor_factory

    # ------------------------
    # Verify / resume
    # ------------------------
    def verify(self, user_id: str, document_number: str, access_token: Optional[str] = None) -> Dict[str, Any]:
        """Decide where a user entering this document number continues"""
        document_number = require_document_number(document_number)
        record = self.repository.find_by_document(user_id, document_number, access_token)

        if not record:
            return {"document_number": document_number, "next": "instructions", "message": None}

        status = KycStatus(record["kyc_status"])

        if status == KycStatus.APPROVED:
            return {
                "document_number": document_number,
                "next": "result",
                "message": "Your KYC verification is already complete.",
            }

        if status == KycStatus.IN_REVIEW:
            return {
                "document_number": document_number,
                "next": "result",
                "message": "Your KYC verification has been submitted and is under review.",
            }

        if status == KycStatus.REJECTED:
            self.restart(record, user_id, access_token)
            return {
                "document_number": document_number,
                "next": "instructions",
                "message": "Your previous KYC attempt was unsuccessful. Starting new verification.",
            }

        step = reconcile_step(record)
        return {
            "document_number": document_number,
            "next": "preview" if step == Step.COMPLETED else "capture",
            "message": "Continuing from where you left off.",
        }

    def restart(self, record: Dict[str, Any], user_id: str, access_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Clear a rejected attempt so capture starts again from identity.
        Old documents are removed only once the record no longer points
        at them.
        """
        old_paths = [record.get(column) for column in ARTIFACT_COLUMNS.values()]

        values = {column: None for column in ARTIFACT_COLUMNS.values()}
        values.update({
            "identity_document_type": None,
            "address_document_type": None,
            "current_step": Step.IDENTITY.value,
            "kyc_status": KycStatus.PENDING.value,
            "kyc_completed_at": None,
        })
        updated = self.repository.update(
            record["id"], values,
            access_token=access_token,
            user_id=user_id,
            expected={"kyc_status": status_synonyms(KycStatus.REJECTED)},
        )
        if not updated:
            raise InvalidTransition("KYC record was changed by someone else. Please try again.")
        logger.info("Restarted rejected KYC record %s", record["id"])

        for path in old_paths:
            try:
                self.storage.delete_document(path, access_token)
            except StorageError as e:
                # The record is already reset; a leftover object is only wasted space
                logger.warning("Could not remove old document %s of record %s: %s", path, record["id"], e)
        return updated

    def instructions(self, step: Optional[str] = None) -> Dict[str, str]:
        if step is None:
            return dict(CAPTURE_INSTRUCTIONS)
        if step not in CAPTURE_INSTRUCTIONS:
            raise ValidationFailed(f"Unknown capture step: {step}")
        return {step: CAPTURE_INSTRUCTIONS[step]}

    def progress(self, user_id: str, document_number: str, access_token: Optional[str] = None) -> Dict[str, Any]:
        document_number = require_document_number(document_number)
        record = self.repository.find_by_document(user_id, document_number, access_token)
        step = reconcile_step(record) if record else Step.IDENTITY
        return {
            "record_id": record["id"] if record else None,
            "document_number": document_number,
            "kyc_status": record["kyc_status"] if record else None,
            "current_step": step.value,
            "artifacts": artifacts_of(record),
        }

    # ------------------------
    # Capture
    # ------------------------
    def capture(self,
                user_id: str,
                document_number: str,
                step: str,
                image: bytes,
                access_token: Optional[str] = None) -> Dict[str, Any]:
        """
        One capture: quality gate → upload → persist path and advance step.
        Any failure leaves the record untouched so the user can retry.
        """
        document_number = require_document_number(document_number)
        try:
            step = Step(step)
        except ValueError:
            raise ValidationFailed(f"Unknown capture step: {step}")

        record = self.repository.find_by_document(user_id, document_number, access_token)
        expected_step = reconcile_step(record) if record else Step.IDENTITY

        if expected_step == Step.COMPLETED:
            raise StepOrderError("All verification steps have already been captured")
        if record and KycStatus(record["kyc_status"]) not in SUBMITTABLE:
            raise StepOrderError("This KYC application can no longer be changed")
        if step != expected_step:
            raise StepOrderError(f"Expected a {expected_step.value} capture, got {step.value}")

        quality = self.quality_gate.evaluate_bytes(image)
        if not quality["is_valid"]:
            raise ImageQualityError(quality["message"])

        storage_path = self.storage.upload_document(image, user_id, step.value, access_token)

        values = {
            ARTIFACT_COLUMNS[step.value]: storage_path,
            "current_step": next_step(step).value,
        }
        if step.value in DOCUMENT_TYPE_LABELS:
            values[f"{step.value}_document_type"] = DOCUMENT_TYPE_LABELS[step.value]

        try:
            if record is None:
                saved = self.repository.create(user_id, document_number, values, access_token)
            else:
                expected = {"current_step": [record["current_step"]]} if record.get("current_step") else None
                saved = self.repository.update(
                    record["id"], values,
                    access_token=access_token,
                    user_id=user_id,
                    expected=expected,
                )
        except RemoteServiceError:
            self._discard_upload(storage_path, access_token)
            raise

        if not saved:
            # Another capture advanced the record first
            self._discard_upload(storage_path, access_token)
            raise StepOrderError("Capture progress changed in another session. Please reload.")

        return {
            "record_id": saved.get("id"),
            "document_type": step.value,
            "storage_path": storage_path,
            "current_step": saved.get("current_step", values["current_step"]),
            "message": CAPTURE_MESSAGES[step],
        }

    def _discard_upload(self, storage_path: str, access_token: Optional[str]) -> None:
        """Remove an upload the record never came to reference"""
        try:
            self.storage.delete_document(storage_path, access_token)
        except StorageError as e:
            logger.warning("Could not remove unreferenced upload %s: %s", storage_path, e)

    # ------------------------
    # Preview / submit / result
    # ------------------------
    def _completed_record(self, user_id: str, document_number: str, access_token: Optional[str]) -> Dict[str, Any]:
        record = self.repository.find_by_document(user_id, document_number, access_token)
        if not record:
            raise RecordNotFound("KYC record not found. Please start verification again.")
        if reconcile_step(record) != Step.COMPLETED:
            raise StepOrderError("Please complete all verification steps")
        return record

    async def preview(self, user_id: str, document_number: str, access_token: Optional[str] = None) -> Dict[str, Any]:
        """
        Signed URLs plus OCR extraction for the confirmation page. Nothing
        extracted here is stored; submission needs explicit confirmation.
        """
        document_number = require_document_number(document_number)
        record = await asyncio.to_thread(self._completed_record, user_id, document_number, access_token)

        urls = await asyncio.to_thread(
            self.storage.get_signed_urls,
            {step: record.get(column) for step, column in ARTIFACT_COLUMNS.items()},
            access_token,
        )

        if urls["identity"] and urls["address"]:
            extractor = self.extractor_factory()
            extracted = await extractor.extract(urls["identity"], urls["address"], record["document_number"])
        else:
            logger.warning("Could not sign documents of record %s for extraction", record["id"])
            extracted = {
                "name": NAME_PLACEHOLDER,
                "address": ADDRESS_PLACEHOLDER,
                "needs_manual_entry": ["name", "address"],
                "notice": EXTRACTION_NOTICE,
            }

        return {
            "record_id": record["id"],
            "document_number": record["document_number"],
            "name": extracted["name"],
            "address": extracted["address"],
            "needs_manual_entry": extracted["needs_manual_entry"],
            "notice": extracted["notice"],
            "documents": urls,
        }

    def submit(self,
               user_id: str,
               document_number: str,
               address: str,
               confirmed: bool,
               access_token: Optional[str] = None) -> Dict[str, Any]:
        if not confirmed:
            raise ConfirmationRequired("Please confirm that all details are correct")

        if is_placeholder(address):
            raise ValidationFailed("Address is required")
        address_result = validate_address(address)
        if not address_result.is_valid:
            raise ValidationFailed(address_result.error)

        document_number = require_document_number(document_number)
        record = self._completed_record(user_id, document_number, access_token)

        now = utc_now()
        updated = self.repository.update(
            record["id"],
            {
                "kyc_status": KycStatus.IN_REVIEW.value,
                "kyc_completed_at": now,
                "current_step": Step.COMPLETED.value,
                "address": address_result.value,
                "updated_at": now,
            },
            access_token=access_token,
            user_id=user_id,
            expected={"kyc_status": [s for status in SUBMITTABLE for s in status_synonyms(status)]},
        )
        if not updated:
            raise InvalidTransition("This KYC application has already been submitted")

        logger.info("KYC record %s submitted for review", record["id"])
        return {
            "record_id": updated["id"],
            "document_number": document_number,
            "kyc_status": updated["kyc_status"],
            "next": "result",
        }

    def result(self, user_id: str, document_number: str, access_token: Optional[str] = None) -> Dict[str, Any]:
        document_number = require_document_number(document_number)
        record = self.repository.find_by_document(user_id, document_number, access_token)
        if not record:
            raise RecordNotFound("KYC record not found")

        rendered = render_record(record)
        return {
            "document_number": document_number,
            "kyc_status": rendered["kyc_status"],
            "current_step": reconcile_step(record).value,
            "kyc_completed_at": rendered.get("kyc_completed_at"),
            "address": rendered.get("address"),
            "failure_reason": rendered.get("failure_reason"),
        }
