"""Delete a prescription and its stored image."""

import logging

from ...core.exceptions import StorageError
from ..ports.repositories.prescription_repo import PrescriptionRepository
from ..ports.services.image_storage import ImageStorage
from .prescription_lookup import ensure_access, get_prescription_or_raise

logger = logging.getLogger(__name__)


class DeletePrescriptionUseCase:
    """Use case for deleting a prescription that has no outstanding job."""

    def __init__(self, prescription_repository: PrescriptionRepository, image_storage: ImageStorage):
        self._prescription_repository = prescription_repository
        self._image_storage = image_storage

    async def execute(self, prescription_id: str, requester_id: str, is_operator: bool = False) -> bool:
        """
        Raises:
            PrescriptionNotFoundError: unknown id
            PrescriptionAccessDeniedError: requester is neither owner nor operator
            PrescriptionDeletionNotAllowedError: a pipeline job is still outstanding
        """
        prescription = await get_prescription_or_raise(self._prescription_repository, prescription_id)
        ensure_access(prescription, requester_id, is_operator)
        prescription.ensure_deletable()

        deleted = await self._prescription_repository.delete(prescription.prescription_id)
        try:
            await self._image_storage.delete(prescription.image_ref)
        except StorageError as e:
            logger.warning(f"Prescription {prescription_id} deleted but its image was kept: {e.message}")

        logger.info(f"Prescription deleted: id={prescription_id}, by={requester_id}")
        return deleted
