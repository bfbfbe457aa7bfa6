"""Prescription domain entity and its status state machine.

Status only moves along ``ALLOWED_TRANSITIONS``:

    pending -> extraction_done | extraction_failed
    extraction_done -> analysis_done | analysis_failed
    extraction_failed | analysis_failed -> pending   (operator reset)

Every mutator validates before touching any field, so a rejected transition
leaves the entity exactly as it was.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ..enums.prescription import (
    ALLOWED_TRANSITIONS,
    FAILED_STATUSES,
    IN_FLIGHT_STATUSES,
    NOTES_EDITABLE_STATUSES,
    EnqueueState,
    PipelineStage,
    PrescriptionStatus,
)
from ..errors import (
    InvalidStatusTransitionError,
    NotesLockedError,
    PrescriptionDeletionNotAllowedError,
)
from ..value_objects.prescription_id import PrescriptionId
from .analysis import AnalysisResult
from .extraction import ExtractionResult, StructuredExtraction


@dataclass
class Prescription:
    """Prescription domain entity."""

    prescription_id: PrescriptionId
    owner_id: str
    image_ref: str
    original_filename: str = ""
    status: PrescriptionStatus = PrescriptionStatus.PENDING
    notes: Optional[str] = None

    # Extraction stage output (written once)
    extracted_text: Optional[str] = None
    extraction_confidence: Optional[float] = None
    structured_extraction: Optional[StructuredExtraction] = None
    low_confidence: bool = False
    ocr_languages: list = field(default_factory=list)

    # Analysis stage output (written once)
    analysis_result: Optional[AnalysisResult] = None

    failure_reason: Optional[str] = None
    reset_count: int = 0

    # Enqueue tracking for the job that drives the next status change
    active_stage: Optional[PipelineStage] = None
    enqueue_state: Optional[EnqueueState] = None
    queue_message_id: Optional[str] = None
    enqueued_at: Optional[datetime] = None
    enqueue_last_error: Optional[str] = None

    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def __post_init__(self) -> None:
        if not self.owner_id:
            raise ValueError("Prescription owner_id cannot be empty")
        if not self.image_ref:
            raise ValueError("Prescription image_ref cannot be empty")
        self.status = PrescriptionStatus(self.status)

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def can_transition_to(self, target: PrescriptionStatus) -> bool:
        return PrescriptionStatus(target) in ALLOWED_TRANSITIONS[self.status]

    def _ensure_transition(self, target: PrescriptionStatus) -> None:
        if not self.can_transition_to(target):
            raise InvalidStatusTransitionError(
                self.prescription_id.value, self.status.value, PrescriptionStatus(target).value
            )

    def _set_status(self, target: PrescriptionStatus) -> None:
        self.status = target
        self.updated_at = datetime.utcnow()

    def complete_extraction(self, result: ExtractionResult) -> None:
        """Persist OCR output and move to ``extraction_done``."""
        self._ensure_transition(PrescriptionStatus.EXTRACTION_DONE)
        self.extracted_text = result.text
        self.extraction_confidence = result.confidence
        self.structured_extraction = result.structured
        self.low_confidence = result.low_confidence
        self.ocr_languages = list(result.languages)
        self.failure_reason = None
        self._set_status(PrescriptionStatus.EXTRACTION_DONE)

    def fail_extraction(self, reason: str) -> None:
        """Mark extraction as failed after retries are exhausted or on a data error."""
        self._ensure_transition(PrescriptionStatus.EXTRACTION_FAILED)
        self.failure_reason = reason
        self._set_status(PrescriptionStatus.EXTRACTION_FAILED)

    def complete_analysis(self, result: AnalysisResult) -> None:
        """Persist the normalized review and move to ``analysis_done``."""
        self._ensure_transition(PrescriptionStatus.ANALYSIS_DONE)
        self.analysis_result = result
        self.failure_reason = None
        self._set_status(PrescriptionStatus.ANALYSIS_DONE)

    def fail_analysis(self, reason: str) -> None:
        """Mark analysis as failed after retries are exhausted."""
        self._ensure_transition(PrescriptionStatus.ANALYSIS_FAILED)
        self.failure_reason = reason
        self._set_status(PrescriptionStatus.ANALYSIS_FAILED)

    def reset(self) -> None:
        """Operator reset of a failed record back to ``pending`` for a fresh attempt."""
        if self.status not in FAILED_STATUSES:
            raise InvalidStatusTransitionError(
                self.prescription_id.value, self.status.value, PrescriptionStatus.PENDING.value
            )
        self.extracted_text = None
        self.extraction_confidence = None
        self.structured_extraction = None
        self.low_confidence = False
        self.ocr_languages = []
        self.analysis_result = None
        self.failure_reason = None
        self.reset_count += 1
        self.active_stage = None
        self.enqueue_state = None
        self.queue_message_id = None
        self.enqueued_at = None
        self.enqueue_last_error = None
        self._set_status(PrescriptionStatus.PENDING)

    # ------------------------------------------------------------------
    # Notes and deletion rules
    # ------------------------------------------------------------------

    @property
    def notes_editable(self) -> bool:
        return self.status in NOTES_EDITABLE_STATUSES

    def update_notes(self, notes: Optional[str]) -> None:
        if not self.notes_editable:
            raise NotesLockedError(
                self.prescription_id.value,
                self.status.value,
                [s.value for s in NOTES_EDITABLE_STATUSES],
            )
        self.notes = notes.strip() if notes else None
        self.updated_at = datetime.utcnow()

    @property
    def has_outstanding_job(self) -> bool:
        return self.status in IN_FLIGHT_STATUSES

    def ensure_deletable(self) -> None:
        if self.has_outstanding_job:
            raise PrescriptionDeletionNotAllowedError(self.prescription_id.value, self.status.value)

    # ------------------------------------------------------------------
    # Two-phase enqueue tracking
    # ------------------------------------------------------------------

    def mark_enqueue_pending(self, stage: PipelineStage) -> None:
        """Phase 1: record that a job for ``stage`` is about to be enqueued."""
        self.active_stage = stage
        self.enqueue_state = EnqueueState.PENDING
        self.queue_message_id = None
        self.enqueue_last_error = None
        self.updated_at = datetime.utcnow()

    def mark_enqueued(self, stage: PipelineStage, message_id: str, enqueued_at: Optional[datetime] = None) -> None:
        """Phase 2 success: the queue accepted the job."""
        self.active_stage = stage
        self.enqueue_state = EnqueueState.QUEUED
        self.queue_message_id = message_id
        self.enqueued_at = enqueued_at or datetime.utcnow()
        self.enqueue_last_error = None
        self.updated_at = datetime.utcnow()

    def mark_enqueue_failed(self, stage: PipelineStage, error: str) -> None:
        """Phase 2 failure: status is unchanged, the sweeper picks the record up."""
        self.active_stage = stage
        self.enqueue_state = EnqueueState.FAILED
        self.enqueue_last_error = error
        self.updated_at = datetime.utcnow()

    def extraction_result(self) -> Optional[ExtractionResult]:
        """Rebuild the extraction stage output, e.g. to re-enqueue analysis."""
        if self.extracted_text is None or self.structured_extraction is None:
            return None
        return ExtractionResult(
            text=self.extracted_text,
            confidence=self.extraction_confidence or 0.0,
            structured=self.structured_extraction,
            low_confidence=self.low_confidence,
            languages=list(self.ocr_languages),
        )
