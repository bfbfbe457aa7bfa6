"""Read-side use cases: status lookup and owner listing."""

from typing import List, Optional

from ..dto.prescription_dto import PrescriptionDTO
from ..ports.repositories.prescription_repo import PrescriptionRepository
from .prescription_lookup import ensure_access, get_prescription_or_raise


class GetPrescriptionUseCase:
    """Use case for fetching one prescription."""

    def __init__(self, prescription_repository: PrescriptionRepository):
        self._prescription_repository = prescription_repository

    async def execute(
        self,
        prescription_id: str,
        requester_id: Optional[str] = None,
        is_operator: bool = False,
    ) -> PrescriptionDTO:
        prescription = await get_prescription_or_raise(self._prescription_repository, prescription_id)
        ensure_access(prescription, requester_id, is_operator)
        return PrescriptionDTO.from_entity(prescription)


class ListPrescriptionsUseCase:
    """Use case for listing an owner's prescriptions, newest first."""

    def __init__(self, prescription_repository: PrescriptionRepository):
        self._prescription_repository = prescription_repository

    async def execute(self, owner_id: str, limit: int = 20, offset: int = 0) -> List[PrescriptionDTO]:
        limit = max(1, min(limit, 100))
        offset = max(0, offset)
        prescriptions = await self._prescription_repository.find_by_owner(owner_id, limit=limit, offset=offset)
        return [PrescriptionDTO.from_entity(p) for p in prescriptions]
