"""
Shared fixtures: an in-memory repository, scripted external services and a
pipeline wired to the in-memory queue with a controllable clock.
"""

import copy
import json
from datetime import datetime
from typing import Dict, List, Optional

import pytest

from rxpipeline.adapters.queue.memory_queue import InMemoryJobQueue
from rxpipeline.adapters.storage.local_image_storage import LocalImageStorage
from rxpipeline.application.dto.prescription_dto import CreatePrescriptionRequest
from rxpipeline.application.ports.repositories.prescription_repo import PrescriptionRepository
from rxpipeline.application.ports.services.analysis_service import AnalysisService
from rxpipeline.application.ports.services.notification_service import NotificationService
from rxpipeline.application.ports.services.ocr_service import OCRRecognition, OCRService
from rxpipeline.application.use_cases.analyze_prescription import AnalyzePrescriptionUseCase
from rxpipeline.application.use_cases.create_prescription import CreatePrescriptionUseCase
from rxpipeline.application.use_cases.extract_prescription import ExtractPrescriptionUseCase
from rxpipeline.application.use_cases.notify_prescription import NotifyPrescriptionUseCase
from rxpipeline.application.utils.job_dispatcher import JobDispatcher
from rxpipeline.core.config import OCRSettings, QueueSettings, Settings, StorageSettings
from rxpipeline.domain.entities.prescription import Prescription
from rxpipeline.domain.enums.prescription import (
    IN_FLIGHT_STATUSES,
    EnqueueState,
    PipelineStage,
    PrescriptionStatus,
)
from rxpipeline.domain.value_objects.prescription_id import PrescriptionId
from rxpipeline.workers.stage_worker import StageWorker

PRESCRIPTION_TEXT = """Dr. Marie Curie
Date: 12/03/2024
Patient: John Smith
Amoxicillin 500mg three times a day for 7 days
Ibuprofen 400 mg every 8 hours
Notes: Take with food"""

ANALYSIS_RESPONSE = json.dumps({
    "medications": [
        {
            "name": "Amoxicillin",
            "dosage": "500mg",
            "frequency": "three times a day",
            "duration": "7 days",
            "potentialInteractions": ["Methotrexate"],
            "sideEffects": ["Nausea", "Diarrhea"],
            "contraindications": ["Penicillin allergy"],
            "alternatives": ["Cefalexin"],
        }
    ],
    "notes": "Standard antibiotic course.",
    "warnings": ["Complete the full course"],
    "recommendedTests": [],
})


class FakeClock:
    """Monotonic clock the tests advance by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemoryPrescriptionRepository(PrescriptionRepository):
    """Stores copies, so a conditional write compares against what was persisted."""

    ENQUEUE_FIELDS = (
        "active_stage",
        "enqueue_state",
        "queue_message_id",
        "enqueued_at",
        "enqueue_last_error",
        "updated_at",
    )

    def __init__(self):
        self.items: Dict[str, Prescription] = {}
        self.transition_conflicts = 0

    async def save(self, prescription: Prescription) -> Prescription:
        self.items[prescription.prescription_id.value] = copy.deepcopy(prescription)
        return prescription

    async def find_by_id(self, prescription_id: PrescriptionId) -> Optional[Prescription]:
        stored = self.items.get(prescription_id.value)
        return copy.deepcopy(stored) if stored else None

    async def find_by_owner(self, owner_id: str, limit: int = 100, offset: int = 0) -> List[Prescription]:
        owned = [p for p in self.items.values() if p.owner_id == owner_id]
        owned.sort(key=lambda p: p.created_at, reverse=True)
        return [copy.deepcopy(p) for p in owned[offset:offset + limit]]

    async def delete(self, prescription_id: PrescriptionId) -> bool:
        return self.items.pop(prescription_id.value, None) is not None

    async def save_transition(self, prescription: Prescription, expected_status: PrescriptionStatus) -> bool:
        stored = self.items.get(prescription.prescription_id.value)
        if stored is None or stored.status != expected_status:
            self.transition_conflicts += 1
            return False
        self.items[prescription.prescription_id.value] = copy.deepcopy(prescription)
        return True

    async def save_enqueue_state(self, prescription: Prescription) -> bool:
        stored = self.items.get(prescription.prescription_id.value)
        if stored is None:
            return False
        for name in self.ENQUEUE_FIELDS:
            setattr(stored, name, copy.deepcopy(getattr(prescription, name)))
        return True

    async def find_stuck(
        self,
        older_than: datetime,
        limit: int = 100,
        queued_older_than: Optional[datetime] = None,
    ) -> List[Prescription]:
        def lost(p: Prescription) -> bool:
            return (
                queued_older_than is not None
                and p.enqueue_state == EnqueueState.QUEUED
                and p.enqueued_at is not None
                and p.enqueued_at < queued_older_than
            )

        stuck = [
            p
            for p in self.items.values()
            if p.enqueue_state == EnqueueState.FAILED
            or (
                p.status in IN_FLIGHT_STATUSES
                and p.enqueue_state != EnqueueState.QUEUED
                and p.updated_at < older_than
            )
            or (p.status in IN_FLIGHT_STATUSES and lost(p))
        ]
        stuck.sort(key=lambda p: p.updated_at)
        return [copy.deepcopy(p) for p in stuck[:limit]]

    def get(self, prescription_id: str) -> Prescription:
        return self.items[prescription_id]


class FakeOCRService(OCRService):
    """Returns ``text``/``confidence``; raises queued ``failures`` first, one per call."""

    def __init__(self, text: str = PRESCRIPTION_TEXT, confidence: float = 91.5):
        self.text = text
        self.confidence = confidence
        self.failures: List[Exception] = []
        self.calls: List[dict] = []
        self.shutdown_called = False

    async def recognize(self, image_path: str, languages: List[str]) -> OCRRecognition:
        self.calls.append({"image_path": image_path, "languages": list(languages)})
        if self.failures:
            raise self.failures.pop(0)
        return OCRRecognition(text=self.text, confidence=self.confidence, languages=list(languages))

    async def shutdown(self) -> None:
        self.shutdown_called = True


class FakeAnalysisService(AnalysisService):
    """Plays back scripted responses (strings or exceptions), then ``default``."""

    model_name = "gpt-test"

    def __init__(self, default: str = ANALYSIS_RESPONSE):
        self.default = default
        self.responses: list = []
        self.calls: List[list] = []

    async def complete(self, messages):
        self.calls.append(messages)
        if self.responses:
            response = self.responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return self.default


class RecordingNotifier(NotificationService):
    def __init__(self):
        self.sent: List[dict] = []
        self.failures: List[Exception] = []

    async def notify(self, prescription_id, owner_id, status, reason=None) -> None:
        if self.failures:
            raise self.failures.pop(0)
        self.sent.append(
            {"prescription_id": prescription_id, "owner_id": owner_id, "status": status, "reason": reason}
        )


@pytest.fixture
def settings(tmp_path):
    return Settings(
        queue=QueueSettings(backend="memory"),
        ocr=OCRSettings(temp_dir=str(tmp_path / "ocr"), supported_languages=["eng", "fra"]),
        storage=StorageSettings(upload_dir=str(tmp_path / "uploads")),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    return InMemoryJobQueue(clock=clock)


@pytest.fixture
def repository():
    return InMemoryPrescriptionRepository()


@pytest.fixture
def image_storage(settings):
    return LocalImageStorage(settings.storage)


@pytest.fixture
def ocr_service():
    return FakeOCRService()


@pytest.fixture
def analysis_service():
    return FakeAnalysisService()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def dispatcher(queue, settings):
    return JobDispatcher(queue, settings.queue)


@pytest.fixture
def create_use_case(repository, image_storage, dispatcher, settings):
    return CreatePrescriptionUseCase(repository, image_storage, dispatcher, settings.ocr)


@pytest.fixture
def upload(create_use_case):
    """Upload a fake image and return the new prescription id."""

    async def _upload(owner_id: str = "user-1", **kwargs) -> str:
        request = CreatePrescriptionRequest(
            owner_id=owner_id,
            image_bytes=kwargs.pop("image_bytes", b"\x89PNG fake image"),
            filename=kwargs.pop("filename", "scan.png"),
            **kwargs,
        )
        response = await create_use_case.execute(request)
        return response.id

    return _upload


@pytest.fixture
def extraction_worker(repository, ocr_service, dispatcher, queue, settings):
    handler = ExtractPrescriptionUseCase(repository, ocr_service, dispatcher, settings.ocr)
    return StageWorker(PipelineStage.EXTRACTION, handler, queue, settings=settings)


@pytest.fixture
def analysis_worker(repository, analysis_service, dispatcher, queue, settings):
    handler = AnalyzePrescriptionUseCase(repository, analysis_service, dispatcher)
    return StageWorker(PipelineStage.ANALYSIS, handler, queue, settings=settings)


@pytest.fixture
def notification_worker(notifier, queue, settings):
    return StageWorker(PipelineStage.NOTIFICATION, NotifyPrescriptionUseCase(notifier), queue, settings=settings)
