"""
MongoDB model for prescription records.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from beanie import Document
from pydantic import Field


class PrescriptionMongo(Document):
    """MongoDB model for a prescription and its pipeline outputs."""

    prescription_id: str = Field(..., description="Public prescription ID (RX-...)", unique=True)
    owner_id: str = Field(..., description="Uploading user ID")
    image_ref: str = Field(..., description="Path of the stored image")
    original_filename: str = Field(default="", description="Filename given at upload")
    status: str = Field(default="pending", description="Pipeline status")
    notes: Optional[str] = None

    # Extraction output
    extracted_text: Optional[str] = None
    extraction_confidence: Optional[float] = None
    structured_extraction: Optional[Dict[str, Any]] = None
    low_confidence: bool = False
    ocr_languages: List[str] = Field(default_factory=list)

    # Analysis output
    analysis_result: Optional[Dict[str, Any]] = None

    failure_reason: Optional[str] = None
    reset_count: int = 0

    # Enqueue tracking
    active_stage: Optional[str] = None
    enqueue_state: Optional[str] = None
    queue_message_id: Optional[str] = None
    enqueued_at: Optional[datetime] = None
    enqueue_last_error: Optional[str] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Settings:
        name = "prescriptions"
        indexes = [
            "prescription_id",
            "owner_id",
            "status",
            "enqueue_state",
            [("owner_id", 1), ("created_at", -1)],
            [("status", 1), ("updated_at", 1)],
        ]
