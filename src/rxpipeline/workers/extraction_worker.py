"""
Extraction stage worker: OCR over uploaded prescription images.
"""
import asyncio
from typing import Optional

from rxpipeline.application.use_cases.extract_prescription import ExtractPrescriptionUseCase
from rxpipeline.core.container import Container, ServiceNames
from rxpipeline.domain.enums.prescription import PipelineStage

from .stage_worker import StageWorker


class ExtractionWorker(StageWorker):
    """StageWorker that also releases the OCR engine on shutdown."""

    def __init__(self, handler: ExtractPrescriptionUseCase, ocr_service, **kwargs):
        super().__init__(PipelineStage.EXTRACTION, handler, **kwargs)
        self.ocr_service = ocr_service

    async def shutdown(self) -> None:
        await super().shutdown()
        await self.ocr_service.shutdown()


def build_extraction_worker(container: Container, shutdown_event: Optional[asyncio.Event] = None) -> ExtractionWorker:
    settings = container.settings
    ocr_service = container.get(ServiceNames.OCR_SERVICE)
    handler = ExtractPrescriptionUseCase(
        prescription_repository=container.get(ServiceNames.PRESCRIPTION_REPOSITORY),
        ocr_service=ocr_service,
        dispatcher=container.get(ServiceNames.JOB_DISPATCHER),
        ocr_settings=settings.ocr,
    )
    return ExtractionWorker(
        handler,
        ocr_service,
        queue=container.get(ServiceNames.JOB_QUEUE),
        settings=settings,
        shutdown_event=shutdown_event,
    )
