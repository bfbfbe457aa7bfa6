"""
Client-facing failure reasons.

Records only ever carry these strings; engine and service messages stay in
the logs and the dead-letter queue.
"""

from typing import Optional

from ...domain.enums.prescription import PipelineStage

EMPTY_TEXT = "EMPTY_OCR_TEXT"

_REASONS = {
    "IMAGE_NOT_FOUND": "The prescription image could not be found or read.",
    "INVALID_JOB_PAYLOAD": "The processing request for this prescription was malformed.",
    "OCR_ERROR": "Text recognition did not complete after several attempts.",
    EMPTY_TEXT: "No text could be recognized on the prescription image.",
    "ANALYSIS_SERVICE_ERROR": "The medication review service was unavailable after several attempts.",
    "ANALYSIS_RESPONSE_INVALID": "The medication review could not be interpreted after several attempts.",
}

_STAGE_DEFAULTS = {
    PipelineStage.EXTRACTION: "Text extraction failed.",
    PipelineStage.ANALYSIS: "Medication analysis failed.",
    PipelineStage.NOTIFICATION: "Notification delivery failed.",
}


def failure_reason(stage: PipelineStage, error: Optional[BaseException]) -> str:
    """Human-readable reason for a stage failure."""
    code = getattr(error, "error_code", None)
    return _REASONS.get(code, _STAGE_DEFAULTS[PipelineStage(stage)])
