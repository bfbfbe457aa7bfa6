"""
Producer side of the job queue: wraps validated payloads in envelopes that
carry the stage's retry policy, then hands them to a queue backend.
"""

import json
import logging
from typing import List, Optional, Tuple, Union

from pydantic import ValidationError

from rxpipeline.application.dto.jobs import (
    AnalysisJob,
    ExtractionJob,
    JobEnvelope,
    JobOptions,
    NotificationJob,
    validate_payload,
)
from rxpipeline.application.ports.repositories.prescription_repo import PrescriptionRepository
from rxpipeline.application.ports.services.job_queue import JobQueue
from rxpipeline.core.config import QueueSettings
from rxpipeline.core.exceptions import InvalidJobPayloadError, QueueError
from rxpipeline.domain.entities.prescription import Prescription
from rxpipeline.domain.enums.prescription import PipelineStage, PrescriptionStatus
from rxpipeline.observability.metrics import record_job_event

logger = logging.getLogger(__name__)

Payload = Union[ExtractionJob, AnalysisJob, NotificationJob]


class JobDispatcher:
    """Builds job envelopes from stage defaults and enqueues them."""

    def __init__(self, queue: JobQueue, settings: QueueSettings) -> None:
        self.queue = queue
        self.settings = settings

    def build_envelope(
        self,
        stage: PipelineStage,
        payload: Union[Payload, dict],
        options: Optional[JobOptions] = None,
    ) -> JobEnvelope:
        options = options or JobOptions()
        stage = PipelineStage(stage)
        try:
            return JobEnvelope(
                stage=stage,
                max_attempts=options.max_attempts or self.settings.max_attempts,
                priority=options.priority,
                backoff_base_seconds=self.settings.backoff_for(stage.value),
                payload=validate_payload(payload),
            )
        except ValidationError as e:
            raise InvalidJobPayloadError(
                f"Payload cannot be enqueued on stage '{stage.value}'",
                {"errors": e.errors(include_url=False)[:5]},
            ) from e

    async def enqueue(
        self,
        stage: PipelineStage,
        payload: Union[Payload, dict],
        options: Optional[JobOptions] = None,
    ) -> str:
        """
        Enqueue a job on ``stage``.

        Args:
            stage: Target pipeline stage
            payload: Stage payload (model or dict); validated against the stage schema
            options: priority, delay and max_attempts overrides

        Returns:
            Queue message id

        Raises:
            InvalidJobPayloadError: payload does not match the stage schema
            QueueError: backend rejected the message
        """
        options = options or JobOptions()
        envelope = self.build_envelope(stage, payload, options)
        message_id = await self.queue.enqueue(envelope, delay_seconds=options.delay_seconds)
        record_job_event(envelope.stage.value, "enqueued")
        logger.info(json.dumps({
            "event": "job_enqueued",
            "stage": envelope.stage.value,
            "job_id": envelope.job_id,
            "message_id": message_id,
            "prescription_id": envelope.prescription_id,
            "priority": envelope.priority,
            "delay_seconds": options.delay_seconds,
            "max_attempts": envelope.max_attempts,
        }))
        return message_id

    async def enqueue_tracked(
        self,
        prescription: Prescription,
        repository: PrescriptionRepository,
        stage: PipelineStage,
        payload: Union[Payload, dict],
        options: Optional[JobOptions] = None,
    ) -> bool:
        """
        Two-phase enqueue of the job that drives the record's next status change.

        The record is marked ``pending`` before the send and ``queued`` or
        ``failed`` after it. A failed send is not raised: the record keeps its
        status and the stuck sweeper re-enqueues it later.

        Returns:
            True when the queue accepted the job
        """
        prescription.mark_enqueue_pending(stage)
        await repository.save_enqueue_state(prescription)
        try:
            message_id = await self.enqueue(stage, payload, options)
        except QueueError as e:
            prescription.mark_enqueue_failed(stage, e.message)
            await repository.save_enqueue_state(prescription)
            logger.error(json.dumps({
                "event": "job_enqueue_failed",
                "stage": PipelineStage(stage).value,
                "prescription_id": prescription.prescription_id.value,
                "error": e.message,
            }))
            return False

        prescription.mark_enqueued(stage, message_id)
        await repository.save_enqueue_state(prescription)
        return True

    async def notify(self, prescription: Prescription, reason: Optional[str] = None) -> Optional[str]:
        """Best-effort notification job for the record's current status."""
        payload = NotificationJob(
            prescription_id=prescription.prescription_id.value,
            owner_id=prescription.owner_id,
            status=prescription.status.value,
            reason=reason,
        )
        try:
            return await self.enqueue(PipelineStage.NOTIFICATION, payload)
        except QueueError as e:
            logger.warning(
                f"Notification for {prescription.prescription_id.value} "
                f"({prescription.status.value}) was not enqueued: {e.message}"
            )
            return None


def next_pipeline_job(
    prescription: Prescription,
    default_languages: List[str],
) -> Optional[Tuple[PipelineStage, Payload]]:
    """The job an in-flight record is waiting for, rebuilt from stored fields."""
    if prescription.status == PrescriptionStatus.PENDING:
        return PipelineStage.EXTRACTION, ExtractionJob(
            prescription_id=prescription.prescription_id.value,
            owner_id=prescription.owner_id,
            image_path=prescription.image_ref,
            languages=list(prescription.ocr_languages or default_languages),
        )
    if prescription.status == PrescriptionStatus.EXTRACTION_DONE:
        result = prescription.extraction_result()
        if result is None:
            return None
        return PipelineStage.ANALYSIS, AnalysisJob.from_result(
            prescription.prescription_id.value, prescription.owner_id, result
        )
    return None
