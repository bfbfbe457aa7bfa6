"""Create prescription use case: store the upload and start the pipeline."""

import logging
from typing import List, Optional

from ...core.config import OCRSettings
from ...domain.entities.prescription import Prescription
from ...domain.enums.prescription import PipelineStage
from ...domain.value_objects.prescription_id import PrescriptionId
from ..dto.jobs import ExtractionJob, JobOptions
from ..dto.prescription_dto import CreatePrescriptionRequest, CreatePrescriptionResponse
from ..ports.repositories.prescription_repo import PrescriptionRepository
from ..ports.services.image_storage import ImageStorage
from ..utils.job_dispatcher import JobDispatcher

logger = logging.getLogger(__name__)


class CreatePrescriptionUseCase:
    """Use case for uploading a prescription image."""

    def __init__(
        self,
        prescription_repository: PrescriptionRepository,
        image_storage: ImageStorage,
        dispatcher: JobDispatcher,
        ocr_settings: OCRSettings,
    ):
        self._prescription_repository = prescription_repository
        self._image_storage = image_storage
        self._dispatcher = dispatcher
        self._ocr_settings = ocr_settings

    async def execute(self, request: CreatePrescriptionRequest) -> CreatePrescriptionResponse:
        """Persist a ``pending`` record and enqueue its extraction job.

        The response is returned even when the queue is unavailable; the
        record is then flagged for the stuck sweeper.
        """
        if not request.owner_id:
            raise ValueError("owner_id is required")

        image_ref = await self._image_storage.save(request.image_bytes, request.filename)

        prescription = Prescription(
            prescription_id=PrescriptionId.generate(),
            owner_id=request.owner_id,
            image_ref=image_ref,
            original_filename=request.filename,
            notes=request.notes.strip() if request.notes else None,
        )
        prescription.mark_enqueue_pending(PipelineStage.EXTRACTION)
        await self._prescription_repository.save(prescription)

        job = ExtractionJob(
            prescription_id=prescription.prescription_id.value,
            owner_id=prescription.owner_id,
            image_path=image_ref,
            languages=self._requested_languages(request.languages),
        )
        await self._dispatcher.enqueue_tracked(
            prescription,
            self._prescription_repository,
            PipelineStage.EXTRACTION,
            job,
            JobOptions(priority=request.priority),
        )

        logger.info(
            f"Prescription created: id={prescription.prescription_id.value}, "
            f"owner={prescription.owner_id}, enqueue_state={prescription.enqueue_state.value}"
        )
        return CreatePrescriptionResponse(
            id=prescription.prescription_id.value,
            status=prescription.status.value,
            created_at=prescription.created_at,
        )

    def _requested_languages(self, languages: Optional[List[str]]) -> List[str]:
        # Filtering against supported languages happens in the extraction worker
        cleaned = [lang.strip() for lang in languages or [] if lang and lang.strip()]
        return cleaned or [self._ocr_settings.default_language]
