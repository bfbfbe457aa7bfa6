"""
Status and stage enums for the prescription pipeline.
"""

from enum import Enum


class PrescriptionStatus(str, Enum):
    """Authoritative status of a prescription record."""

    PENDING = "pending"                      # Initial state, extraction job outstanding
    EXTRACTION_DONE = "extraction_done"      # OCR persisted, analysis job outstanding
    EXTRACTION_FAILED = "extraction_failed"  # Terminal until an operator reset
    ANALYSIS_DONE = "analysis_done"          # Terminal success
    ANALYSIS_FAILED = "analysis_failed"      # Terminal until an operator reset


class PipelineStage(str, Enum):
    """A queue-backed pipeline step."""

    EXTRACTION = "extraction"
    ANALYSIS = "analysis"
    NOTIFICATION = "notification"


class EnqueueState(str, Enum):
    """Two-phase enqueue tracking for the job that drives the next status change."""

    PENDING = "pending"  # Enqueue requested, not yet confirmed by the queue
    QUEUED = "queued"
    FAILED = "failed"    # Queue rejected the job; the sweeper re-enqueues it


# Allowed automated and operator transitions
ALLOWED_TRANSITIONS = {
    PrescriptionStatus.PENDING: {
        PrescriptionStatus.EXTRACTION_DONE,
        PrescriptionStatus.EXTRACTION_FAILED,
    },
    PrescriptionStatus.EXTRACTION_DONE: {
        PrescriptionStatus.ANALYSIS_DONE,
        PrescriptionStatus.ANALYSIS_FAILED,
    },
    PrescriptionStatus.EXTRACTION_FAILED: {PrescriptionStatus.PENDING},
    PrescriptionStatus.ANALYSIS_FAILED: {PrescriptionStatus.PENDING},
    PrescriptionStatus.ANALYSIS_DONE: set(),
}

NOTES_EDITABLE_STATUSES = frozenset(
    {
        PrescriptionStatus.PENDING,
        PrescriptionStatus.EXTRACTION_FAILED,
        PrescriptionStatus.ANALYSIS_FAILED,
    }
)

FAILED_STATUSES = frozenset(
    {PrescriptionStatus.EXTRACTION_FAILED, PrescriptionStatus.ANALYSIS_FAILED}
)

TERMINAL_STATUSES = frozenset(
    {
        PrescriptionStatus.EXTRACTION_FAILED,
        PrescriptionStatus.ANALYSIS_DONE,
        PrescriptionStatus.ANALYSIS_FAILED,
    }
)

# Statuses in which a pipeline job is still outstanding for the record
IN_FLIGHT_STATUSES = frozenset(
    {PrescriptionStatus.PENDING, PrescriptionStatus.EXTRACTION_DONE}
)
