# models/errors.py
from typing import Optional


class UploadError(Exception):
    """Base class for every error raised by the upload subsystem."""

    code = "UPLOAD_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class UploadValidationError(UploadError):
    """File missing or size/type policy violated. Raised before any network call."""

    code = "VALIDATION_ERROR"


class AuthenticationError(UploadError):
    code = "UNAUTHORIZED"


class ControlPlaneError(UploadError):
    """The control plane answered with an ``{error, code}`` payload."""

    code = "SERVER_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, code)
        self.status_code = status_code


class TransientTransportError(UploadError):
    """A single PUT attempt failed: non-2xx response or network failure."""

    code = "TRANSPORT_ERROR"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PartUploadFailed(UploadError):
    code = "PART_UPLOAD_FAILED"

    def __init__(self, part_number: int, attempts: int, last_error: Optional[Exception] = None):
        super().__init__(
            f"Part {part_number} failed after {attempts} attempts: {last_error}"
        )
        self.part_number = part_number
        self.attempts = attempts
        self.last_error = last_error


class UploadCancelledError(UploadError):
    """The caller cancelled the upload. Not a failure and never retried."""

    code = "CANCELLED"

    def __init__(self, message: str = "Upload was cancelled"):
        super().__init__(message)


class ResumeMismatchError(UploadError):
    code = "RESUME_MISMATCH"


class FinalizationError(UploadError):
    """``complete`` failed after every part was uploaded; the session stays resumable."""

    code = "FINALIZATION_FAILED"
