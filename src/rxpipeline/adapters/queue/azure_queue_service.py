"""
Azure Queue Storage backend for the pipeline job queues.

Each stage owns three physical queues:
- ``{prefix}-{stage}``: normal jobs
- ``{prefix}-{stage}-priority``: jobs with priority > 0, polled first
- ``{prefix}-{stage}-poison``: dead-lettered jobs
"""
import json
import logging
import asyncio
from datetime import datetime
from typing import Dict, List, Optional

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError
from azure.storage.queue import QueueClient, QueueServiceClient

from ...application.dto.jobs import JobEnvelope
from ...application.ports.services.job_queue import JobQueue, QueuedJob
from ...core.config import AzureQueueSettings, get_settings
from ...core.exceptions import ConfigurationError, InvalidJobPayloadError, QueueError
from ...domain.enums.prescription import PipelineStage

logger = logging.getLogger(__name__)

# Azure caps message visibility delays at 7 days
MAX_VISIBILITY_DELAY_SECONDS = 7 * 24 * 3600


async def run_blocking(func, *args, **kwargs):
    """
    Run a blocking function in an executor to avoid blocking the event loop.

    Args:
        func: The blocking function to run
        *args: Positional arguments for the function
        **kwargs: Keyword arguments for the function

    Returns:
        Result of the function call
    """
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


class AzureQueueService(JobQueue):
    """Azure Queue Storage service for pipeline jobs."""

    def __init__(self, settings: Optional[AzureQueueSettings] = None):
        self.settings = settings or get_settings().azure_queue
        self._service_client: Optional[QueueServiceClient] = None
        self._clients: Dict[str, QueueClient] = {}

    @property
    def service_client(self) -> QueueServiceClient:
        """Get or create the QueueServiceClient."""
        if self._service_client is None:
            if not self.settings.connection_string:
                raise ConfigurationError(
                    "Azure Queue Storage connection string is required. "
                    "Set AZURE_QUEUE_CONNECTION_STRING or AZURE_STORAGE_CONNECTION_STRING"
                )
            self._service_client = QueueServiceClient.from_connection_string(
                self.settings.connection_string
            )
            logger.info(f"Azure Queue Storage client initialized (prefix: {self.settings.queue_prefix})")
        return self._service_client

    def queue_name(self, stage: PipelineStage, kind: str = "") -> str:
        stage = PipelineStage(stage)
        name = f"{self.settings.queue_prefix}-{stage.value}"
        return f"{name}-{kind}" if kind else name

    def _client(self, name: str) -> QueueClient:
        if name not in self._clients:
            self._clients[name] = self.service_client.get_queue_client(name)
        return self._clients[name]

    def _all_queue_names(self) -> List[str]:
        names = []
        for stage in PipelineStage:
            names.extend([
                self.queue_name(stage),
                self.queue_name(stage, "priority"),
                self.queue_name(stage, "poison"),
            ])
        return names

    async def ensure_queues(self) -> None:
        """Ensure every stage queue exists (non-blocking)."""
        for name in self._all_queue_names():
            try:
                await run_blocking(self._client(name).create_queue)
                logger.info(f"Created queue: {name}")
            except ResourceExistsError:
                logger.debug(f"Queue already exists: {name}")
            except Exception as e:
                raise QueueError(f"Failed to create queue {name}: {e}", {"queue": name}) from e

    async def enqueue(self, envelope: JobEnvelope, delay_seconds: float = 0.0) -> str:
        name = self.queue_name(envelope.stage, "priority" if envelope.priority > 0 else "")
        delay = min(int(max(0.0, delay_seconds)), MAX_VISIBILITY_DELAY_SECONDS)
        try:
            response = await run_blocking(
                self._client(name).send_message,
                envelope.to_message(),
                visibility_timeout=delay or None,
            )
        except Exception as e:
            logger.error(f"Failed to enqueue {envelope.stage.value} job {envelope.job_id}: {e}")
            raise QueueError(
                f"Failed to enqueue {envelope.stage.value} job: {e}",
                {"queue": name, "job_id": envelope.job_id},
            ) from e
        logger.debug(f"Sent message {response.id} to {name} (delay={delay}s)")
        return response.id

    async def _receive(self, name: str, count: int) -> list:
        return await run_blocking(
            lambda: list(self._client(name).receive_messages(
                messages_per_page=count,
                max_messages=count,
                visibility_timeout=self.settings.visibility_timeout,
            ))
        )

    async def dequeue(self, stage: PipelineStage, max_messages: int = 1) -> List[QueuedJob]:
        """Receive jobs, draining the priority queue before the normal one (non-blocking)."""
        stage = PipelineStage(stage)
        jobs: List[QueuedJob] = []
        for name in (self.queue_name(stage, "priority"), self.queue_name(stage)):
            wanted = max_messages - len(jobs)
            if wanted <= 0:
                break
            try:
                messages = await self._receive(name, wanted)
            except ResourceNotFoundError:
                logger.warning(f"Queue {name} does not exist; call ensure_queues() first")
                continue
            except Exception as e:
                logger.error(f"Failed to receive from {name}: {e}")
                continue
            jobs.extend(self._to_job(stage, name, message) for message in messages)
        return jobs

    def _to_job(self, stage: PipelineStage, source: str, message) -> QueuedJob:
        envelope: Optional[JobEnvelope] = None
        poison_reason: Optional[str] = None
        try:
            envelope = JobEnvelope.from_message(message.content)
        except InvalidJobPayloadError as e:
            poison_reason = f"INVALID_PAYLOAD: {e.message}"

        dequeue_count = message.dequeue_count or 1
        if poison_reason is None and dequeue_count > self.settings.max_dequeue_count:
            poison_reason = f"MAX_DEQUEUE_COUNT_EXCEEDED ({dequeue_count})"

        return QueuedJob(
            envelope=envelope,
            message_id=message.id,
            receipt=message.pop_receipt,
            stage=stage,
            dequeue_count=dequeue_count,
            raw_content=message.content,
            source=source,
            poison_reason=poison_reason,
        )

    async def ack(self, job: QueuedJob) -> None:
        """Delete a processed message from its queue (non-blocking)."""
        source = job.source or self.queue_name(job.stage)
        try:
            await run_blocking(self._client(source).delete_message, job.message_id, job.receipt)
            logger.debug(f"Deleted message: {job.message_id}")
        except Exception as e:
            raise QueueError(f"Failed to delete message {job.message_id}: {e}", {"queue": source}) from e

    async def dead_letter(self, job: QueuedJob, reason: str) -> None:
        """Copy the message to the stage poison queue, then delete the original (non-blocking)."""
        poison = self.queue_name(job.stage, "poison")
        body = {
            "original_message_id": job.message_id,
            "source_queue": job.source,
            "stage": job.stage.value,
            "reason": reason,
            "dequeue_count": job.dequeue_count,
            "dead_lettered_at": datetime.utcnow().isoformat(),
            "content": job.raw_content,
        }
        try:
            await run_blocking(self._client(poison).send_message, json.dumps(body))
        except Exception as e:
            raise QueueError(f"Failed to dead-letter message {job.message_id}: {e}", {"queue": poison}) from e
        await self.ack(job)
        logger.warning(f"Moved message {job.message_id} to {poison}: {reason}")

    async def _count(self, name: str) -> int:
        try:
            properties = await run_blocking(self._client(name).get_queue_properties)
            return properties.approximate_message_count or 0
        except Exception as e:
            logger.error(f"Failed to get length of {name}: {e}")
            return 0

    async def length(self, stage: PipelineStage) -> int:
        """Approximate number of messages waiting on a stage (non-blocking)."""
        return await self._count(self.queue_name(stage)) + await self._count(self.queue_name(stage, "priority"))

    async def dead_letter_length(self, stage: PipelineStage) -> int:
        return await self._count(self.queue_name(stage, "poison"))

    async def close(self) -> None:
        for client in self._clients.values():
            client.close()
        self._clients.clear()
        if self._service_client is not None:
            self._service_client.close()
            self._service_client = None
