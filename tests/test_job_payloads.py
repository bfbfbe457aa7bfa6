"""
Job payload validation, envelopes and the dispatcher.
"""

import pytest

from rxpipeline.application.dto.jobs import (
    AnalysisJob,
    ExtractionJob,
    JobEnvelope,
    JobOptions,
    NotificationJob,
    validate_payload,
)
from rxpipeline.application.utils.job_dispatcher import JobDispatcher
from rxpipeline.core.config import QueueSettings
from rxpipeline.core.exceptions import InvalidJobPayloadError, QueueError
from rxpipeline.domain.enums.prescription import PipelineStage

PID = "RX-" + "a" * 32


def extraction_job(**kwargs) -> ExtractionJob:
    return ExtractionJob(prescription_id=PID, owner_id="user-1", image_path="/tmp/scan.png", **kwargs)


def test_validate_payload_dispatches_on_job_type():
    payload = validate_payload(
        {"job_type": "notification", "prescription_id": PID, "owner_id": "u", "status": "analysis_done"}
    )
    assert isinstance(payload, NotificationJob)
    assert payload.reason is None


@pytest.mark.parametrize(
    "data",
    [
        {"job_type": "extraction", "prescription_id": PID, "owner_id": "u"},
        {"job_type": "extraction", "prescription_id": "", "owner_id": "u", "image_path": "/x"},
        {"job_type": "extraction", "prescription_id": PID, "owner_id": "u", "image_path": "/x", "extra": 1},
        {"job_type": "unknown", "prescription_id": PID},
        {"prescription_id": PID},
    ],
)
def test_invalid_payloads_are_rejected(data):
    with pytest.raises(InvalidJobPayloadError) as exc_info:
        validate_payload(data)
    assert exc_info.value.error_code == "INVALID_JOB_PAYLOAD"
    assert exc_info.value.permanent


def test_envelope_rejects_payload_for_another_stage():
    with pytest.raises(ValueError):
        JobEnvelope(stage=PipelineStage.ANALYSIS, payload=extraction_job())


def test_retry_bookkeeping():
    envelope = JobEnvelope(stage=PipelineStage.EXTRACTION, payload=extraction_job(), backoff_base_seconds=5.0)

    assert envelope.attempt == 1
    assert not envelope.is_last_attempt()
    assert envelope.retry_delay() == 5.0

    second = envelope.for_retry("OCR_ERROR: boom")
    assert second.job_id == envelope.job_id
    assert second.attempt == 2
    assert second.last_error == "OCR_ERROR: boom"
    assert second.retry_delay() == 10.0

    third = second.for_retry("OCR_ERROR: boom")
    assert third.is_last_attempt()
    assert third.retry_delay() == 20.0


def test_message_round_trip_keeps_payload_type():
    envelope = JobEnvelope(stage=PipelineStage.EXTRACTION, payload=extraction_job(languages=["fra"]), priority=3)

    decoded = JobEnvelope.from_message(envelope.to_message())

    assert isinstance(decoded.payload, ExtractionJob)
    assert decoded.payload.languages == ["fra"]
    assert decoded.priority == 3
    assert decoded.prescription_id == PID


@pytest.mark.parametrize("content", ["", "not json", "{}", '{"stage": "extraction", "payload": {}}'])
def test_from_message_rejects_garbage(content):
    with pytest.raises(InvalidJobPayloadError):
        JobEnvelope.from_message(content)


def test_analysis_job_carries_extraction_result():
    job = AnalysisJob(
        prescription_id=PID,
        owner_id="user-1",
        extraction_result={"text": "Aspirin 100 mg", "confidence": 80, "structured": {}},
    )
    extraction = job.extraction()

    assert extraction.text == "Aspirin 100 mg"
    assert extraction.confidence == 80.0
    assert extraction.structured.patient_name == "Not specified"


def test_job_options_bounds():
    assert JobOptions().priority == 0
    with pytest.raises(ValueError):
        JobOptions(priority=-1)
    with pytest.raises(ValueError):
        JobOptions(max_attempts=0)


@pytest.mark.asyncio
async def test_dispatcher_applies_stage_policy(queue):
    settings = QueueSettings(backend="memory", max_attempts=4, analysis_backoff_seconds=7.5)
    dispatcher = JobDispatcher(queue, settings)

    await dispatcher.enqueue(PipelineStage.EXTRACTION, extraction_job(), JobOptions(priority=2))
    await dispatcher.enqueue(
        PipelineStage.NOTIFICATION,
        {"job_type": "notification", "prescription_id": PID, "owner_id": "u", "status": "pending"},
        JobOptions(max_attempts=1),
    )

    [extraction] = queue.peek(PipelineStage.EXTRACTION)
    assert extraction.max_attempts == 4
    assert extraction.priority == 2
    assert extraction.backoff_base_seconds == 5.0

    [notification] = queue.peek(PipelineStage.NOTIFICATION)
    assert notification.max_attempts == 1
    assert notification.backoff_base_seconds == 2.0

    assert dispatcher.build_envelope(PipelineStage.ANALYSIS, {
        "job_type": "analysis", "prescription_id": PID, "owner_id": "u", "extraction_result": {},
    }).backoff_base_seconds == 7.5


@pytest.mark.asyncio
async def test_dispatcher_rejects_payload_for_wrong_stage(dispatcher, queue):
    with pytest.raises(InvalidJobPayloadError):
        await dispatcher.enqueue(PipelineStage.ANALYSIS, extraction_job())
    assert await queue.length(PipelineStage.ANALYSIS) == 0


@pytest.mark.asyncio
async def test_dispatcher_propagates_queue_errors(dispatcher, queue):
    queue.fail_enqueue = "queue unavailable"
    with pytest.raises(QueueError):
        await dispatcher.enqueue(PipelineStage.EXTRACTION, extraction_job())
