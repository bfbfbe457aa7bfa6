"""
Observability module for pipeline metrics.

Provides:
- Queue job lifecycle counters and handler latency
- OCR confidence distribution
- Language model request metrics
"""

from .metrics import (
    record_ai_request,
    record_job_event,
    record_ocr_confidence,
)

__all__ = [
    "record_ai_request",
    "record_job_event",
    "record_ocr_confidence",
]
