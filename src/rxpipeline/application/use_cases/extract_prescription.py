"""Extraction stage: OCR a stored prescription image and parse its fields."""

import logging
from typing import List

from ...core.config import OCRSettings
from ...core.exceptions import ImageNotFoundError
from ...core.utils.file_utils import is_readable_file
from ...domain.entities.extraction import ExtractionResult
from ...domain.entities.prescription import Prescription
from ...domain.enums.prescription import EnqueueState, PipelineStage, PrescriptionStatus
from ...observability.metrics import record_ocr_confidence
from ..dto.jobs import AnalysisJob, ExtractionJob, JobEnvelope, JobOptions
from ..ports.repositories.prescription_repo import PrescriptionRepository
from ..ports.services.job_handler import JobHandler
from ..ports.services.ocr_service import OCRService
from ..utils.failure_reasons import failure_reason
from ..utils.job_dispatcher import JobDispatcher
from ..utils.prescription_extractor import extract
from .prescription_lookup import find_prescription, load_for_job

logger = logging.getLogger(__name__)


class ExtractPrescriptionUseCase(JobHandler):
    """Handler for ``extraction`` jobs."""

    stage = PipelineStage.EXTRACTION

    def __init__(
        self,
        prescription_repository: PrescriptionRepository,
        ocr_service: OCRService,
        dispatcher: JobDispatcher,
        ocr_settings: OCRSettings,
    ):
        self._prescription_repository = prescription_repository
        self._ocr_service = ocr_service
        self._dispatcher = dispatcher
        self._ocr_settings = ocr_settings

    def resolve_languages(self, requested: List[str]) -> List[str]:
        """Keep requested languages the engine supports, else fall back to the default."""
        supported = set(self._ocr_settings.supported_languages)
        languages = [lang for lang in dict.fromkeys(requested or []) if lang in supported]
        if not languages:
            logger.warning(
                f"No supported OCR language in {requested}; "
                f"falling back to '{self._ocr_settings.default_language}'"
            )
            languages = [self._ocr_settings.default_language]
        return languages

    async def handle(self, envelope: JobEnvelope) -> None:
        job: ExtractionJob = envelope.payload
        prescription = await load_for_job(self._prescription_repository, job.prescription_id)

        if prescription.status != PrescriptionStatus.PENDING:
            await self._resume(prescription, envelope)
            return

        if not is_readable_file(job.image_path):
            raise ImageNotFoundError(job.image_path)

        languages = self.resolve_languages(job.languages)
        recognition = await self._ocr_service.recognize(job.image_path, languages)

        low_confidence = recognition.confidence < self._ocr_settings.min_confidence
        if low_confidence:
            logger.warning(
                f"Low OCR confidence for {job.prescription_id}: "
                f"{recognition.confidence:.1f} < {self._ocr_settings.min_confidence:.1f}"
            )
        record_ocr_confidence(recognition.confidence, low_confidence)

        result = ExtractionResult(
            text=recognition.text,
            confidence=recognition.confidence,
            structured=extract(recognition.text),
            low_confidence=low_confidence,
            languages=recognition.languages or languages,
        )
        prescription.complete_extraction(result)
        if not await self._prescription_repository.save_transition(prescription, PrescriptionStatus.PENDING):
            logger.info(f"Extraction result for {job.prescription_id} discarded: record changed concurrently")
            return

        await self._enqueue_analysis(prescription, result, envelope.priority)
        await self._dispatcher.notify(prescription)

    async def _resume(self, prescription: Prescription, envelope: JobEnvelope) -> None:
        """Redelivered job: make sure the continuation exists, never redo the work."""
        analysis_queued = (
            prescription.active_stage == PipelineStage.ANALYSIS
            and prescription.enqueue_state == EnqueueState.QUEUED
        )
        if prescription.status == PrescriptionStatus.EXTRACTION_DONE and not analysis_queued:
            result = prescription.extraction_result()
            if result is not None:
                logger.info(f"Re-enqueueing missing analysis job for {prescription.prescription_id.value}")
                await self._enqueue_analysis(prescription, result, envelope.priority)
                return
        logger.info(
            f"Skipping extraction job {envelope.job_id}: "
            f"{prescription.prescription_id.value} is already {prescription.status.value}"
        )

    async def _enqueue_analysis(self, prescription: Prescription, result: ExtractionResult, priority: int) -> bool:
        job = AnalysisJob.from_result(prescription.prescription_id.value, prescription.owner_id, result)
        return await self._dispatcher.enqueue_tracked(
            prescription,
            self._prescription_repository,
            PipelineStage.ANALYSIS,
            job,
            JobOptions(priority=priority),
        )

    async def on_exhausted(self, envelope: JobEnvelope, error: BaseException) -> None:
        """Move the record to ``extraction_failed``; no analysis job is produced."""
        prescription = await find_prescription(self._prescription_repository, envelope.prescription_id)
        if prescription is None or prescription.status != PrescriptionStatus.PENDING:
            logger.warning(f"Extraction failure for {envelope.prescription_id} not recorded: record missing or moved on")
            return

        prescription.fail_extraction(failure_reason(self.stage, error))
        if await self._prescription_repository.save_transition(prescription, PrescriptionStatus.PENDING):
            await self._dispatcher.notify(prescription, reason=prescription.failure_reason)
