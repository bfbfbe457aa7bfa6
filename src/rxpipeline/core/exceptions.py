"""
Exception handling for the prescription pipeline.

Infrastructure and job-level errors live here; business rule violations are
in ``rxpipeline.domain.errors``. Workers rely on the permanent/transient split
below to decide between failing a job immediately and letting the queue retry.
"""

from typing import Any, Dict, Optional


class RxPipelineException(Exception):
    """Base exception class for the pipeline."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ConfigurationError(RxPipelineException):
    """Raised when there's a configuration error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "CONFIG_ERROR", details)


class DatabaseError(RxPipelineException):
    """Raised when there's a database operation error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "DATABASE_ERROR", details)


class ValidationError(RxPipelineException):
    """Raised when input data is rejected before it enters the pipeline."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "VALIDATION_ERROR", details)


class InvalidImageError(ValidationError):
    """Raised when an upload is not an acceptable prescription image."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details)
        self.error_code = "INVALID_IMAGE"


class StorageError(RxPipelineException):
    """Raised when the image store cannot read or write a file."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "STORAGE_ERROR", details)


class QueueError(RxPipelineException):
    """Raised when a job cannot be enqueued or acknowledged."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "QUEUE_ERROR", details)


# ---------------------------------------------------------------------------
# Job outcome classification
# ---------------------------------------------------------------------------


class JobError(RxPipelineException):
    """Base class for errors raised from inside a job handler."""

    permanent: bool = False


class PermanentJobError(JobError):
    """Data error: retrying cannot help, the job fails immediately."""

    permanent = True

    def __init__(
        self,
        message: str,
        error_code: str = "PERMANENT_JOB_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, details)


class TransientJobError(JobError):
    """Infrastructure error: the queue retries the job with backoff."""

    def __init__(
        self,
        message: str,
        error_code: str = "TRANSIENT_JOB_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, error_code, details)


class ImageNotFoundError(PermanentJobError):
    """Raised when a job references an image that does not exist or cannot be read."""

    def __init__(self, image_path: str, reason: str = "not found") -> None:
        super().__init__(
            f"Prescription image {reason}: {image_path}",
            "IMAGE_NOT_FOUND",
            {"image_path": image_path},
        )


class InvalidJobPayloadError(PermanentJobError):
    """Raised when a queue message does not match its stage schema."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "INVALID_JOB_PAYLOAD", details)


class ExternalServiceError(TransientJobError):
    """Raised when there's an external service error."""

    def __init__(
        self,
        service: str,
        message: str,
        error_code: str = "EXTERNAL_SERVICE_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.service = service
        full_message = f"{service} service error: {message}"
        super().__init__(full_message, error_code, details)


class OCRError(ExternalServiceError):
    """Raised when the OCR engine fails or times out."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("OCR", message, "OCR_ERROR", details)


class AnalysisServiceError(ExternalServiceError):
    """Raised when the language model call fails or times out."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("OpenAI", message, "ANALYSIS_SERVICE_ERROR", details)


class AnalysisResponseError(TransientJobError):
    """Raised when the language model returns something that is not a JSON object."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, "ANALYSIS_RESPONSE_INVALID", details)


class NotificationError(ExternalServiceError):
    """Raised when the downstream notification endpoint rejects a call."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__("Notification", message, "NOTIFICATION_ERROR", details)
