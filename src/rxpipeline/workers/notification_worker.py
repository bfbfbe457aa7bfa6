"""
Notification stage worker.
"""
import asyncio
from typing import Optional

from rxpipeline.application.use_cases.notify_prescription import NotifyPrescriptionUseCase
from rxpipeline.core.container import Container, ServiceNames
from rxpipeline.domain.enums.prescription import PipelineStage

from .stage_worker import StageWorker


def build_notification_worker(container: Container, shutdown_event: Optional[asyncio.Event] = None) -> StageWorker:
    handler = NotifyPrescriptionUseCase(container.get(ServiceNames.NOTIFICATION_SERVICE))
    return StageWorker(
        PipelineStage.NOTIFICATION,
        handler,
        queue=container.get(ServiceNames.JOB_QUEUE),
        settings=container.settings,
        shutdown_event=shutdown_event,
    )
