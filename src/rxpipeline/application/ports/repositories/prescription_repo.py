"""
Prescription repository interface.
"""

from datetime import datetime
from typing import List, Optional

from rxpipeline.domain.entities.prescription import Prescription
from rxpipeline.domain.enums.prescription import PrescriptionStatus
from rxpipeline.domain.value_objects.prescription_id import PrescriptionId


class PrescriptionRepository:
    """Repository interface for prescriptions."""

    async def save(self, prescription: Prescription) -> Prescription:
        """Insert or fully replace a prescription."""
        raise NotImplementedError

    async def find_by_id(self, prescription_id: PrescriptionId) -> Optional[Prescription]:
        """Find a prescription by ID."""
        raise NotImplementedError

    async def find_by_owner(self, owner_id: str, limit: int = 100, offset: int = 0) -> List[Prescription]:
        """Find an owner's prescriptions, newest first."""
        raise NotImplementedError

    async def delete(self, prescription_id: PrescriptionId) -> bool:
        """Delete a prescription by ID."""
        raise NotImplementedError

    async def save_transition(
        self,
        prescription: Prescription,
        expected_status: PrescriptionStatus,
    ) -> bool:
        """
        Atomically persist a status change together with the fields it sets.

        The write is a single conditional update that only applies while the
        stored status still equals ``expected_status``. Returns True when the
        document was modified, False when another writer got there first.
        """
        raise NotImplementedError

    async def save_enqueue_state(self, prescription: Prescription) -> bool:
        """
        Persist only the enqueue tracking fields (never status or stage output).
        """
        raise NotImplementedError

    async def find_stuck(
        self,
        older_than: datetime,
        limit: int = 100,
        queued_older_than: Optional[datetime] = None,
    ) -> List[Prescription]:
        """
        Records whose next job never made it onto a queue, or was lost after.

        Matches enqueue_state == "failed", plus in-flight records last
        updated before ``older_than`` whose enqueue never reached "queued".
        With ``queued_older_than``, also in-flight records whose job was
        queued before it (the job was dead-lettered without a status write).
        """
        raise NotImplementedError
