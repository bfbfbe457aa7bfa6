"""
Process-local job queue for development runs and tests.

Mirrors the Azure backend's semantics: delayed visibility, a lease while a
worker holds a message, a dequeue counter, and a dead-letter list per stage.
The clock is injectable so tests can step through backoff delays.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ...application.dto.jobs import JobEnvelope
from ...application.ports.services.job_queue import JobQueue, QueuedJob
from ...core.exceptions import InvalidJobPayloadError, QueueError
from ...domain.enums.prescription import PipelineStage

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    message_id: str
    content: str
    priority: int
    sequence: int
    visible_at: float
    dequeue_count: int = 0
    receipt: Optional[str] = None


@dataclass
class DeadLetter:
    message_id: str
    content: str
    reason: str
    dead_lettered_at: datetime


class InMemoryJobQueue(JobQueue):
    """In-memory queue with Azure-like visibility semantics."""

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        visibility_timeout: float = 600.0,
        max_dequeue_count: int = 5,
    ) -> None:
        self.clock = clock or time.monotonic
        self.visibility_timeout = visibility_timeout
        self.max_dequeue_count = max_dequeue_count
        self._live: Dict[PipelineStage, List[_Entry]] = {stage: [] for stage in PipelineStage}
        self._dead: Dict[PipelineStage, List[DeadLetter]] = {stage: [] for stage in PipelineStage}
        self._sequence = 0
        # When set, enqueue raises QueueError (simulates a backend outage)
        self.fail_enqueue: Optional[str] = None

    async def ensure_queues(self) -> None:
        return None

    async def enqueue(self, envelope: JobEnvelope, delay_seconds: float = 0.0) -> str:
        if self.fail_enqueue:
            raise QueueError(self.fail_enqueue, {"stage": envelope.stage.value})
        self._sequence += 1
        entry = _Entry(
            message_id=uuid.uuid4().hex,
            content=envelope.to_message(),
            priority=envelope.priority,
            sequence=self._sequence,
            visible_at=self.clock() + max(0.0, delay_seconds),
        )
        self._live[envelope.stage].append(entry)
        return entry.message_id

    async def put_raw(self, stage: PipelineStage, content: str) -> str:
        """Insert an arbitrary message body, bypassing validation."""
        self._sequence += 1
        entry = _Entry(
            message_id=uuid.uuid4().hex,
            content=content,
            priority=0,
            sequence=self._sequence,
            visible_at=self.clock(),
        )
        self._live[PipelineStage(stage)].append(entry)
        return entry.message_id

    async def dequeue(self, stage: PipelineStage, max_messages: int = 1) -> List[QueuedJob]:
        stage = PipelineStage(stage)
        now = self.clock()
        visible = [e for e in self._live[stage] if e.visible_at <= now]
        visible.sort(key=lambda e: (-e.priority, e.sequence))

        jobs: List[QueuedJob] = []
        for entry in visible[:max(0, max_messages)]:
            entry.dequeue_count += 1
            entry.receipt = uuid.uuid4().hex
            entry.visible_at = now + self.visibility_timeout
            jobs.append(self._to_job(stage, entry))
        return jobs

    def _to_job(self, stage: PipelineStage, entry: _Entry) -> QueuedJob:
        envelope: Optional[JobEnvelope] = None
        poison_reason: Optional[str] = None
        try:
            envelope = JobEnvelope.from_message(entry.content)
        except InvalidJobPayloadError as e:
            poison_reason = f"INVALID_PAYLOAD: {e.message}"

        if poison_reason is None and entry.dequeue_count > self.max_dequeue_count:
            poison_reason = f"MAX_DEQUEUE_COUNT_EXCEEDED ({entry.dequeue_count})"

        return QueuedJob(
            envelope=envelope,
            message_id=entry.message_id,
            receipt=entry.receipt,
            stage=stage,
            dequeue_count=entry.dequeue_count,
            raw_content=entry.content,
            poison_reason=poison_reason,
            source=f"memory:{stage.value}",
        )

    def _remove(self, job: QueuedJob) -> Optional[_Entry]:
        entries = self._live[job.stage]
        for index, entry in enumerate(entries):
            if entry.message_id == job.message_id:
                if entry.receipt != job.receipt:
                    raise QueueError(
                        "Receipt does not match the current delivery",
                        {"message_id": job.message_id},
                    )
                return entries.pop(index)
        return None

    async def ack(self, job: QueuedJob) -> None:
        if self._remove(job) is None:
            logger.warning(f"Ack for unknown message {job.message_id} on {job.stage.value}")

    async def dead_letter(self, job: QueuedJob, reason: str) -> None:
        self._remove(job)
        self._dead[job.stage].append(
            DeadLetter(
                message_id=job.message_id,
                content=job.raw_content,
                reason=reason,
                dead_lettered_at=datetime.utcnow(),
            )
        )

    async def length(self, stage: PipelineStage) -> int:
        return len(self._live[PipelineStage(stage)])

    async def dead_letter_length(self, stage: PipelineStage) -> int:
        return len(self._dead[PipelineStage(stage)])

    def dead_letters(self, stage: PipelineStage) -> List[DeadLetter]:
        return list(self._dead[PipelineStage(stage)])

    def peek(self, stage: PipelineStage) -> List[JobEnvelope]:
        """Decoded envelopes waiting on a stage (visible or not), in delivery order."""
        entries = sorted(self._live[PipelineStage(stage)], key=lambda e: (-e.priority, e.sequence))
        return [JobEnvelope.from_message(e.content) for e in entries]

    def next_visible_in(self, stage: PipelineStage) -> Optional[float]:
        """Seconds until the earliest message on ``stage`` becomes visible."""
        entries = self._live[PipelineStage(stage)]
        if not entries:
            return None
        return max(0.0, min(e.visible_at for e in entries) - self.clock())
