"""
Job queue interface shared by the Azure and in-memory backends.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional

from rxpipeline.application.dto.jobs import JobEnvelope
from rxpipeline.domain.enums.prescription import PipelineStage


@dataclass
class QueuedJob:
    """A job handed to a worker. ``receipt`` identifies this delivery for ack/retry."""

    envelope: Optional[JobEnvelope]
    message_id: str
    receipt: str
    stage: PipelineStage
    dequeue_count: int = 1
    raw_content: str = ""
    # Physical queue the message was received from (backends with several queues per stage)
    source: str = ""
    # Set when the message could not be decoded or was redelivered too often
    poison_reason: Optional[str] = None

    @property
    def is_poison(self) -> bool:
        return self.poison_reason is not None


class JobQueue(ABC):
    """Durable per-stage work queues with delayed delivery and a dead-letter area."""

    @abstractmethod
    async def ensure_queues(self) -> None:
        """Create the stage queues if they do not exist."""
        pass

    @abstractmethod
    async def enqueue(self, envelope: JobEnvelope, delay_seconds: float = 0.0) -> str:
        """
        Put a job on its stage queue.

        Returns:
            Queue message id

        Raises:
            QueueError: when the backend rejects the message
        """
        pass

    @abstractmethod
    async def dequeue(self, stage: PipelineStage, max_messages: int = 1) -> List[QueuedJob]:
        """Receive up to ``max_messages`` visible jobs, hiding them from other consumers."""
        pass

    @abstractmethod
    async def ack(self, job: QueuedJob) -> None:
        """Remove a finished job."""
        pass

    @abstractmethod
    async def dead_letter(self, job: QueuedJob, reason: str) -> None:
        """Move a job to the stage's dead-letter queue and remove it from the live queue."""
        pass

    @abstractmethod
    async def length(self, stage: PipelineStage) -> int:
        """Approximate number of jobs waiting on a stage."""
        pass

    async def dead_letter_length(self, stage: PipelineStage) -> int:
        return 0

    async def close(self) -> None:
        return None
