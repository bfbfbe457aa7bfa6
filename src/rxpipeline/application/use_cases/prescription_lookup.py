"""Record lookup shared by the operator use cases and the stage handlers."""

from typing import Optional

from ...core.exceptions import PermanentJobError
from ...domain.entities.prescription import Prescription
from ...domain.errors import PrescriptionAccessDeniedError, PrescriptionNotFoundError
from ...domain.value_objects.prescription_id import PrescriptionId
from ..ports.repositories.prescription_repo import PrescriptionRepository


async def find_prescription(repository: PrescriptionRepository, prescription_id: str) -> Optional[Prescription]:
    try:
        pid = PrescriptionId(prescription_id)
    except ValueError:
        return None
    return await repository.find_by_id(pid)


async def get_prescription_or_raise(repository: PrescriptionRepository, prescription_id: str) -> Prescription:
    prescription = await find_prescription(repository, prescription_id)
    if prescription is None:
        raise PrescriptionNotFoundError(prescription_id)
    return prescription


async def load_for_job(repository: PrescriptionRepository, prescription_id: str) -> Prescription:
    """Like ``get_prescription_or_raise`` but fails the job permanently."""
    prescription = await find_prescription(repository, prescription_id)
    if prescription is None:
        raise PermanentJobError(
            f"Prescription {prescription_id} does not exist",
            "PRESCRIPTION_NOT_FOUND",
            {"prescription_id": prescription_id},
        )
    return prescription


def ensure_access(prescription: Prescription, requester_id: Optional[str], is_operator: bool = False) -> None:
    """Owners may act on their own records; operators on any record."""
    if is_operator:
        return
    if not requester_id or requester_id != prescription.owner_id:
        raise PrescriptionAccessDeniedError(prescription.prescription_id.value, requester_id or "")
