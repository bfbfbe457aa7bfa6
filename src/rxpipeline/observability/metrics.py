"""
Custom metrics for the pipeline using OpenTelemetry.

Instruments are created lazily against the global meter provider; without an
SDK configured they are no-ops, so recording is always safe to call.
"""
import logging
from typing import Optional

from opentelemetry import metrics
from opentelemetry.metrics import Counter, Histogram

logger = logging.getLogger(__name__)

meter = metrics.get_meter("rxpipeline")

# Initialize custom metrics (lazy initialization)
_metrics_initialized = False
_job_event_counter: Optional[Counter] = None
_job_latency_histogram: Optional[Histogram] = None
_ocr_confidence_histogram: Optional[Histogram] = None
_ai_request_counter: Optional[Counter] = None
_ai_latency_histogram: Optional[Histogram] = None
_error_counter: Optional[Counter] = None


def _initialize_metrics():
    """Initialize custom metrics instruments."""
    global _metrics_initialized, _job_event_counter, _job_latency_histogram
    global _ocr_confidence_histogram, _ai_request_counter, _ai_latency_histogram, _error_counter

    if _metrics_initialized:
        return

    try:
        _job_event_counter = meter.create_counter(
            name="rxpipeline.jobs.events",
            description="Queue job lifecycle events (enqueued, dequeued, completed, retried, dead_lettered)",
            unit="1"
        )

        _job_latency_histogram = meter.create_histogram(
            name="rxpipeline.jobs.latency",
            description="Job handler latency in seconds",
            unit="s"
        )

        _ocr_confidence_histogram = meter.create_histogram(
            name="rxpipeline.ocr.confidence",
            description="OCR confidence score (0-100)",
            unit="1"
        )

        _ai_request_counter = meter.create_counter(
            name="rxpipeline.ai.requests",
            description="Total number of language model requests",
            unit="1"
        )

        _ai_latency_histogram = meter.create_histogram(
            name="rxpipeline.ai.latency",
            description="Language model request latency in milliseconds",
            unit="ms"
        )

        _error_counter = meter.create_counter(
            name="rxpipeline.errors",
            description="Total pipeline errors",
            unit="1"
        )

        _metrics_initialized = True
        logger.info("Custom metrics initialized successfully")
    except Exception as e:
        logger.warning(f"Failed to initialize custom metrics: {e}")


def record_job_event(stage: str, event: str, latency_seconds: Optional[float] = None):
    """
    Record a queue job lifecycle event.

    Args:
        stage: Pipeline stage (extraction, analysis, notification)
        event: enqueued, dequeued, completed, retried, failed, continuation_failed, dead_lettered
        latency_seconds: Handler duration, when the event ends an attempt
    """
    try:
        _initialize_metrics()
        if _job_event_counter:
            _job_event_counter.add(1, {"stage": stage, "event": event})
        if latency_seconds is not None and _job_latency_histogram:
            _job_latency_histogram.record(latency_seconds, {"stage": stage, "event": event})
        if event in ("failed", "continuation_failed", "dead_lettered") and _error_counter:
            _error_counter.add(1, {"type": "job", "stage": stage})
    except Exception as e:
        logger.warning(f"Failed to record job metric: {e}")


def record_ocr_confidence(confidence: float, low_confidence: bool):
    """Record the confidence of one recognition."""
    try:
        _initialize_metrics()
        if _ocr_confidence_histogram:
            _ocr_confidence_histogram.record(confidence, {"low_confidence": str(low_confidence).lower()})
    except Exception as e:
        logger.warning(f"Failed to record OCR metric: {e}")


def record_ai_request(model: str, latency_ms: float, success: bool = True):
    """
    Record a language model request metric.

    Args:
        model: Model or deployment name
        latency_ms: Request latency in milliseconds
        success: Whether the request succeeded
    """
    try:
        _initialize_metrics()
        if _ai_request_counter:
            _ai_request_counter.add(1, {"model": model, "status": "success" if success else "error"})
        if _ai_latency_histogram:
            _ai_latency_histogram.record(latency_ms, {"model": model})
        if not success and _error_counter:
            _error_counter.add(1, {"type": "ai_request", "model": model})
    except Exception as e:
        logger.warning(f"Failed to record AI request metric: {e}")
