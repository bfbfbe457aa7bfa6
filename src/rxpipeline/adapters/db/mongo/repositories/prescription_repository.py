"""
MongoDB implementation of PrescriptionRepository.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from rxpipeline.application.ports.repositories.prescription_repo import PrescriptionRepository
from rxpipeline.core.exceptions import DatabaseError
from rxpipeline.domain.entities.analysis import AnalysisResult
from rxpipeline.domain.entities.extraction import StructuredExtraction
from rxpipeline.domain.entities.prescription import Prescription
from rxpipeline.domain.enums.prescription import (
    IN_FLIGHT_STATUSES,
    EnqueueState,
    PipelineStage,
    PrescriptionStatus,
)
from rxpipeline.domain.value_objects.prescription_id import PrescriptionId

from ..models.prescription_m import PrescriptionMongo

logger = logging.getLogger(__name__)

ENQUEUE_FIELDS = (
    "active_stage",
    "enqueue_state",
    "queue_message_id",
    "enqueued_at",
    "enqueue_last_error",
    "updated_at",
)


class MongoPrescriptionRepository(PrescriptionRepository):
    """MongoDB implementation of PrescriptionRepository."""

    async def save(self, prescription: Prescription) -> Prescription:
        """Save a prescription to MongoDB."""
        prescription_mongo = await self._domain_to_mongo(prescription)
        await prescription_mongo.save()
        return self._mongo_to_domain(prescription_mongo)

    async def find_by_id(self, prescription_id: PrescriptionId) -> Optional[Prescription]:
        """Find a prescription by ID."""
        prescription_mongo = await PrescriptionMongo.find_one(
            PrescriptionMongo.prescription_id == prescription_id.value
        )
        if not prescription_mongo:
            return None
        return self._mongo_to_domain(prescription_mongo)

    async def find_by_owner(self, owner_id: str, limit: int = 100, offset: int = 0) -> List[Prescription]:
        """Find an owner's prescriptions, newest first."""
        documents = await (
            PrescriptionMongo.find(PrescriptionMongo.owner_id == owner_id)
            .sort("-created_at")
            .skip(offset)
            .limit(limit)
            .to_list()
        )
        return [self._mongo_to_domain(doc) for doc in documents]

    async def delete(self, prescription_id: PrescriptionId) -> bool:
        """Delete a prescription by ID."""
        prescription_mongo = await PrescriptionMongo.find_one(
            PrescriptionMongo.prescription_id == prescription_id.value
        )
        if not prescription_mongo:
            return False
        await prescription_mongo.delete()
        return True

    async def save_transition(self, prescription: Prescription, expected_status: PrescriptionStatus) -> bool:
        """Conditional single-document update keyed on the stored status."""
        fields = self._document_fields(prescription)
        for immutable in ("prescription_id", "owner_id", "created_at"):
            fields.pop(immutable)

        collection = PrescriptionMongo.get_motor_collection()
        try:
            result = await collection.update_one(
                {
                    "prescription_id": prescription.prescription_id.value,
                    "status": PrescriptionStatus(expected_status).value,
                },
                {"$set": fields},
            )
        except Exception as e:
            raise DatabaseError(
                f"Failed to persist status transition: {e}",
                {"prescription_id": prescription.prescription_id.value},
            ) from e

        if result.matched_count != 1:
            logger.warning(
                f"Status transition skipped for {prescription.prescription_id.value}: "
                f"stored status is no longer '{PrescriptionStatus(expected_status).value}'"
            )
            return False
        return True

    async def save_enqueue_state(self, prescription: Prescription) -> bool:
        fields = self._document_fields(prescription)
        collection = PrescriptionMongo.get_motor_collection()
        try:
            result = await collection.update_one(
                {"prescription_id": prescription.prescription_id.value},
                {"$set": {key: fields[key] for key in ENQUEUE_FIELDS}},
            )
        except Exception as e:
            raise DatabaseError(
                f"Failed to persist enqueue state: {e}",
                {"prescription_id": prescription.prescription_id.value},
            ) from e
        return result.matched_count == 1

    async def find_stuck(
        self,
        older_than: datetime,
        limit: int = 100,
        queued_older_than: Optional[datetime] = None,
    ) -> List[Prescription]:
        in_flight = [s.value for s in IN_FLIGHT_STATUSES]
        clauses = [
            {"enqueue_state": EnqueueState.FAILED.value},
            {
                "status": {"$in": in_flight},
                "enqueue_state": {"$ne": EnqueueState.QUEUED.value},
                "updated_at": {"$lt": older_than},
            },
        ]
        if queued_older_than is not None:
            clauses.append({
                "status": {"$in": in_flight},
                "enqueue_state": EnqueueState.QUEUED.value,
                "enqueued_at": {"$lt": queued_older_than},
            })
        query = {"$or": clauses}
        documents = await PrescriptionMongo.find(query).sort("+updated_at").limit(limit).to_list()
        return [self._mongo_to_domain(doc) for doc in documents]

    @staticmethod
    def _document_fields(prescription: Prescription) -> Dict[str, Any]:
        """Flatten the entity into the stored document shape."""
        return {
            "prescription_id": prescription.prescription_id.value,
            "owner_id": prescription.owner_id,
            "image_ref": prescription.image_ref,
            "original_filename": prescription.original_filename,
            "status": prescription.status.value,
            "notes": prescription.notes,
            "extracted_text": prescription.extracted_text,
            "extraction_confidence": prescription.extraction_confidence,
            "structured_extraction": (
                prescription.structured_extraction.to_dict()
                if prescription.structured_extraction
                else None
            ),
            "low_confidence": prescription.low_confidence,
            "ocr_languages": list(prescription.ocr_languages),
            "analysis_result": (
                prescription.analysis_result.to_dict() if prescription.analysis_result else None
            ),
            "failure_reason": prescription.failure_reason,
            "reset_count": prescription.reset_count,
            "active_stage": prescription.active_stage.value if prescription.active_stage else None,
            "enqueue_state": prescription.enqueue_state.value if prescription.enqueue_state else None,
            "queue_message_id": prescription.queue_message_id,
            "enqueued_at": prescription.enqueued_at,
            "enqueue_last_error": prescription.enqueue_last_error,
            "created_at": prescription.created_at,
            "updated_at": prescription.updated_at,
        }

    async def _domain_to_mongo(self, prescription: Prescription) -> PrescriptionMongo:
        """Convert domain entity to MongoDB model, reusing the stored document when present."""
        fields = self._document_fields(prescription)
        existing = await PrescriptionMongo.find_one(
            PrescriptionMongo.prescription_id == prescription.prescription_id.value
        )
        if existing:
            for key, value in fields.items():
                setattr(existing, key, value)
            return existing
        return PrescriptionMongo(**fields)

    def _mongo_to_domain(self, prescription_mongo: PrescriptionMongo) -> Prescription:
        """Convert MongoDB model to domain entity."""
        return Prescription(
            prescription_id=PrescriptionId(prescription_mongo.prescription_id),
            owner_id=prescription_mongo.owner_id,
            image_ref=prescription_mongo.image_ref,
            original_filename=prescription_mongo.original_filename,
            status=PrescriptionStatus(prescription_mongo.status),
            notes=prescription_mongo.notes,
            extracted_text=prescription_mongo.extracted_text,
            extraction_confidence=prescription_mongo.extraction_confidence,
            structured_extraction=(
                StructuredExtraction.from_dict(prescription_mongo.structured_extraction)
                if prescription_mongo.structured_extraction is not None
                else None
            ),
            low_confidence=prescription_mongo.low_confidence,
            ocr_languages=list(prescription_mongo.ocr_languages),
            analysis_result=(
                AnalysisResult.from_dict(prescription_mongo.analysis_result)
                if prescription_mongo.analysis_result is not None
                else None
            ),
            failure_reason=prescription_mongo.failure_reason,
            reset_count=prescription_mongo.reset_count,
            active_stage=PipelineStage(prescription_mongo.active_stage) if prescription_mongo.active_stage else None,
            enqueue_state=EnqueueState(prescription_mongo.enqueue_state) if prescription_mongo.enqueue_state else None,
            queue_message_id=prescription_mongo.queue_message_id,
            enqueued_at=prescription_mongo.enqueued_at,
            enqueue_last_error=prescription_mongo.enqueue_last_error,
            created_at=prescription_mongo.created_at,
            updated_at=prescription_mongo.updated_at,
        )
