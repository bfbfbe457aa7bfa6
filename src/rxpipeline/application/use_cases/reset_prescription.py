"""Operator reset of a failed prescription back to ``pending``."""

import logging

from ...core.config import OCRSettings
from ...domain.enums.prescription import PipelineStage
from ...domain.errors import InvalidStatusTransitionError
from ..dto.jobs import ExtractionJob
from ..dto.prescription_dto import PrescriptionDTO
from ..ports.repositories.prescription_repo import PrescriptionRepository
from ..utils.job_dispatcher import JobDispatcher
from .prescription_lookup import get_prescription_or_raise

logger = logging.getLogger(__name__)


class ResetPrescriptionUseCase:
    """Use case for re-running the pipeline on a failed record."""

    def __init__(
        self,
        prescription_repository: PrescriptionRepository,
        dispatcher: JobDispatcher,
        ocr_settings: OCRSettings,
    ):
        self._prescription_repository = prescription_repository
        self._dispatcher = dispatcher
        self._ocr_settings = ocr_settings

    async def execute(self, prescription_id: str) -> PrescriptionDTO:
        """
        Clear stage outputs, move to ``pending`` and enqueue a fresh extraction job.

        Raises:
            PrescriptionNotFoundError: unknown id
            InvalidStatusTransitionError: the record is not in a failed status
        """
        prescription = await get_prescription_or_raise(self._prescription_repository, prescription_id)
        previous_status = prescription.status
        languages = list(prescription.ocr_languages) or [self._ocr_settings.default_language]

        prescription.reset()
        prescription.mark_enqueue_pending(PipelineStage.EXTRACTION)
        if not await self._prescription_repository.save_transition(prescription, previous_status):
            current = await get_prescription_or_raise(self._prescription_repository, prescription_id)
            raise InvalidStatusTransitionError(prescription_id, current.status.value, prescription.status.value)

        job = ExtractionJob(
            prescription_id=prescription.prescription_id.value,
            owner_id=prescription.owner_id,
            image_path=prescription.image_ref,
            languages=languages,
        )
        await self._dispatcher.enqueue_tracked(
            prescription, self._prescription_repository, PipelineStage.EXTRACTION, job
        )

        logger.info(
            f"Prescription reset: id={prescription_id}, from={previous_status.value}, "
            f"reset_count={prescription.reset_count}"
        )
        return PrescriptionDTO.from_entity(prescription)
