"""
Domain-specific error types for business rule violations.
"""

from typing import Any, Dict, Iterable, Optional


class DomainError(Exception):
    """Base domain error."""

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


class InvalidStatusTransitionError(DomainError):
    """A status change the state machine does not allow."""

    def __init__(self, prescription_id: str, current: str, target: str) -> None:
        message = (
            f"Invalid status transition for prescription '{prescription_id}': "
            f"{current} -> {target}"
        )
        super().__init__(
            message,
            "INVALID_STATUS_TRANSITION",
            {"prescription_id": prescription_id, "current": current, "target": target},
        )


class PrescriptionNotFoundError(DomainError):
    """Prescription not found."""

    def __init__(self, prescription_id: str) -> None:
        message = f"Prescription with ID '{prescription_id}' not found"
        super().__init__(message, "PRESCRIPTION_NOT_FOUND", {"prescription_id": prescription_id})


class PrescriptionAccessDeniedError(DomainError):
    """Requester is neither the owner nor an operator."""

    def __init__(self, prescription_id: str, requester_id: str) -> None:
        message = f"User '{requester_id}' may not modify prescription '{prescription_id}'"
        super().__init__(
            message,
            "PRESCRIPTION_ACCESS_DENIED",
            {"prescription_id": prescription_id, "requester_id": requester_id},
        )


class NotesLockedError(DomainError):
    """Notes can only be edited while the record is awaiting work or has failed."""

    def __init__(self, prescription_id: str, status: str, editable: Iterable[str]) -> None:
        editable = sorted(editable)
        message = (
            f"Notes of prescription '{prescription_id}' cannot be edited in status "
            f"'{status}' (editable in: {', '.join(editable)})"
        )
        super().__init__(
            message,
            "NOTES_LOCKED",
            {"prescription_id": prescription_id, "status": status, "editable_statuses": editable},
        )


class PrescriptionDeletionNotAllowedError(DomainError):
    """A pipeline job is still outstanding for the record."""

    def __init__(self, prescription_id: str, status: str) -> None:
        message = (
            f"Prescription '{prescription_id}' cannot be deleted while a pipeline job "
            f"is outstanding (status '{status}')"
        )
        super().__init__(
            message,
            "PRESCRIPTION_DELETION_NOT_ALLOWED",
            {"prescription_id": prescription_id, "status": status},
        )
