"""Analysis stage: ask the language model to review the extracted prescription."""

import logging

from ...core.exceptions import PermanentJobError
from ...domain.enums.prescription import PipelineStage, PrescriptionStatus
from ..dto.jobs import AnalysisJob, JobEnvelope
from ..ports.repositories.prescription_repo import PrescriptionRepository
from ..ports.services.analysis_service import AnalysisService
from ..ports.services.job_handler import JobHandler
from ..utils.analysis_prompt import build_analysis_messages, parse_analysis_response
from ..utils.failure_reasons import EMPTY_TEXT, failure_reason
from ..utils.job_dispatcher import JobDispatcher
from .prescription_lookup import find_prescription, load_for_job

logger = logging.getLogger(__name__)


class AnalyzePrescriptionUseCase(JobHandler):
    """Handler for ``analysis`` jobs."""

    stage = PipelineStage.ANALYSIS

    def __init__(
        self,
        prescription_repository: PrescriptionRepository,
        analysis_service: AnalysisService,
        dispatcher: JobDispatcher,
    ):
        self._prescription_repository = prescription_repository
        self._analysis_service = analysis_service
        self._dispatcher = dispatcher

    async def handle(self, envelope: JobEnvelope) -> None:
        job: AnalysisJob = envelope.payload
        prescription = await load_for_job(self._prescription_repository, job.prescription_id)

        if prescription.status != PrescriptionStatus.EXTRACTION_DONE:
            logger.info(
                f"Skipping analysis job {envelope.job_id}: "
                f"{job.prescription_id} is {prescription.status.value}"
            )
            return

        extraction = job.extraction()
        if not extraction.text.strip():
            raise PermanentJobError(
                "OCR produced no text to analyze",
                EMPTY_TEXT,
                {"prescription_id": job.prescription_id},
            )

        # Malformed JSON raises AnalysisResponseError and is retried like a service error
        content = await self._analysis_service.complete(build_analysis_messages(extraction))
        result = parse_analysis_response(content, model=self._analysis_service.model_name)

        prescription.complete_analysis(result)
        if not await self._prescription_repository.save_transition(prescription, PrescriptionStatus.EXTRACTION_DONE):
            logger.info(f"Analysis result for {job.prescription_id} discarded: record changed concurrently")
            return

        logger.info(
            f"Analysis completed for {job.prescription_id}: "
            f"medications={len(result.medications)}, warnings={len(result.warnings)}"
        )
        await self._dispatcher.notify(prescription)

    async def on_exhausted(self, envelope: JobEnvelope, error: BaseException) -> None:
        """Move the record to ``analysis_failed``."""
        prescription = await find_prescription(self._prescription_repository, envelope.prescription_id)
        if prescription is None or prescription.status != PrescriptionStatus.EXTRACTION_DONE:
            logger.warning(f"Analysis failure for {envelope.prescription_id} not recorded: record missing or moved on")
            return

        prescription.fail_analysis(failure_reason(self.stage, error))
        if await self._prescription_repository.save_transition(prescription, PrescriptionStatus.EXTRACTION_DONE):
            await self._dispatcher.notify(prescription, reason=prescription.failure_reason)
