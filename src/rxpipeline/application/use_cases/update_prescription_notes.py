"""Update the free-text notes attached to a prescription."""

from ..dto.prescription_dto import PrescriptionDTO, UpdateNotesRequest
from ..ports.repositories.prescription_repo import PrescriptionRepository
from .prescription_lookup import ensure_access, get_prescription_or_raise


class UpdatePrescriptionNotesUseCase:
    """Notes are editable while the record is pending or failed, by its owner or an operator."""

    def __init__(self, prescription_repository: PrescriptionRepository):
        self._prescription_repository = prescription_repository

    async def execute(self, request: UpdateNotesRequest) -> PrescriptionDTO:
        prescription = await get_prescription_or_raise(self._prescription_repository, request.prescription_id)
        ensure_access(prescription, request.requester_id, request.is_operator)

        prescription.update_notes(request.notes)
        await self._prescription_repository.save(prescription)
        return PrescriptionDTO.from_entity(prescription)
