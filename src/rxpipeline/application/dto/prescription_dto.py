"""Prescription DTOs exchanged with the upload, operator and notification boundaries."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ...domain.entities.prescription import Prescription


@dataclass
class CreatePrescriptionRequest:
    """Request DTO for a new prescription upload."""

    owner_id: str
    image_bytes: bytes
    filename: str
    notes: Optional[str] = None
    languages: Optional[List[str]] = None
    priority: int = 0


@dataclass
class CreatePrescriptionResponse:
    """Response DTO for a new prescription upload."""

    id: str
    status: str
    created_at: datetime


@dataclass
class UpdateNotesRequest:
    """Request DTO for editing prescription notes."""

    prescription_id: str
    requester_id: str
    notes: Optional[str]
    is_operator: bool = False


@dataclass
class PrescriptionDTO:
    """Client-facing view of a prescription. Raw engine errors never appear here."""

    id: str
    owner_id: str
    status: str
    original_filename: str
    notes: Optional[str]
    failure_reason: Optional[str]
    extraction_confidence: Optional[float]
    low_confidence: bool
    structured_extraction: Optional[Dict[str, Any]]
    analysis_result: Optional[Dict[str, Any]]
    created_at: datetime
    updated_at: datetime
    reset_count: int = 0

    @classmethod
    def from_entity(cls, prescription: Prescription) -> "PrescriptionDTO":
        return cls(
            id=prescription.prescription_id.value,
            owner_id=prescription.owner_id,
            status=prescription.status.value,
            original_filename=prescription.original_filename,
            notes=prescription.notes,
            failure_reason=prescription.failure_reason,
            extraction_confidence=prescription.extraction_confidence,
            low_confidence=prescription.low_confidence,
            structured_extraction=(
                prescription.structured_extraction.to_dict()
                if prescription.structured_extraction
                else None
            ),
            analysis_result=(
                prescription.analysis_result.to_dict() if prescription.analysis_result else None
            ),
            created_at=prescription.created_at,
            updated_at=prescription.updated_at,
            reset_count=prescription.reset_count,
        )
