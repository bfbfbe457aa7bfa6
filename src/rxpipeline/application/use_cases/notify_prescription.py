"""Notification stage: deliver status changes to the downstream collaborator."""

import json
import logging

from ...domain.enums.prescription import PipelineStage
from ..dto.jobs import JobEnvelope, NotificationJob
from ..ports.services.job_handler import JobHandler
from ..ports.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class NotifyPrescriptionUseCase(JobHandler):
    """Handler for ``notification`` jobs."""

    stage = PipelineStage.NOTIFICATION

    def __init__(self, notification_service: NotificationService):
        self._notification_service = notification_service

    async def handle(self, envelope: JobEnvelope) -> None:
        job: NotificationJob = envelope.payload
        await self._notification_service.notify(
            prescription_id=job.prescription_id,
            owner_id=job.owner_id,
            status=job.status,
            reason=job.reason,
        )

    async def on_exhausted(self, envelope: JobEnvelope, error: BaseException) -> None:
        # Record status is already authoritative; a lost notification is only logged
        logger.error(json.dumps({
            "event": "notification_dropped",
            "prescription_id": envelope.prescription_id,
            "status": envelope.payload.status,
            "attempts": envelope.attempt,
            "error": str(error),
        }))
