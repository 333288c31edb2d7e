from typing import Optional


class KycError(Exception):
    """Base exception for workflow errors."""
    status_code = 500

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        super().__init__(message)
        self.message = message
        self.original_error = original_error


class ValidationFailed(KycError):
    """Raised when user input fails inline validation."""
    status_code = 422


class ImageQualityError(KycError):
    """Raised when a captured frame fails the quality gate."""
    status_code = 422


class AuthenticationRequired(KycError):
    status_code = 401


class PermissionDenied(KycError):
    status_code = 403


class RecordNotFound(KycError):
    status_code = 404


class StepOrderError(KycError):
    """Raised when a capture does not match the record's current step."""
    status_code = 409


class InvalidTransition(KycError):
    """Raised when a review moves a record along a transition that is not allowed."""
    status_code = 409


class ConfirmationRequired(KycError):
    status_code = 400


class RemoteServiceError(KycError):
    """Raised when the managed backend rejects or fails a call."""
    status_code = 502

    def __init__(self, message: str, original_error: Optional[Exception] = None,
                 remote_status: Optional[int] = None):
        super().__init__(message, original_error)
        self.remote_status = remote_status


class StorageError(RemoteServiceError):
    pass


class ExtractionError(KycError):
    """Raised by OCR engines; handled inside the extractor."""
    pass
