"""
Queue worker shared by the pipeline stages.

A StageWorker polls one stage queue with bounded concurrency and routes each
job through its handler. Every outcome is settled here:

- success: ack
- transient failure with attempts left: re-enqueue with backoff, then ack
- permanent failure or last attempt: handler.on_exhausted once, then dead-letter;
  if on_exhausted raises, the message is left for redelivery instead

Exceptions never propagate into the poll loop.
"""
import asyncio
import json
import logging
import os
import signal
import time
from typing import Optional, Set

from rxpipeline.application.dto.jobs import JobEnvelope
from rxpipeline.application.ports.services.job_handler import JobHandler
from rxpipeline.application.ports.services.job_queue import JobQueue, QueuedJob
from rxpipeline.core.config import Settings, get_settings
from rxpipeline.core.exceptions import JobError, PermanentJobError, QueueError
from rxpipeline.domain.enums.prescription import PipelineStage
from rxpipeline.observability.metrics import record_job_event

logger = logging.getLogger(__name__)


def _describe(error: BaseException) -> str:
    code = getattr(error, "error_code", None) or type(error).__name__
    message = getattr(error, "message", None) or str(error)
    return f"{code}: {message}"[:500]


class StageWorker:
    """Worker that processes one stage's jobs."""

    def __init__(
        self,
        stage: PipelineStage,
        handler: JobHandler,
        queue: JobQueue,
        settings: Optional[Settings] = None,
        concurrency: Optional[int] = None,
        shutdown_event: Optional[asyncio.Event] = None,
    ):
        self.stage = PipelineStage(stage)
        self.handler = handler
        self.queue = queue
        self.settings = settings or get_settings()
        self.concurrency = concurrency or self.settings.worker.concurrency_for(self.stage.value)
        self.poll_interval = self.settings.queue.poll_interval
        self.shutdown_timeout = self.settings.worker.shutdown_timeout
        self._owns_shutdown_event = shutdown_event is None
        self.shutdown_event = shutdown_event or asyncio.Event()
        self.active_tasks: Set[asyncio.Task] = set()
        self.poll_count = 0

    def stop(self) -> None:
        self.shutdown_event.set()

    # ------------------------------------------------------------------
    # Job outcome handling
    # ------------------------------------------------------------------

    async def process_job(self, job: QueuedJob) -> None:
        """Run one job to a settled outcome. Never raises."""
        record_job_event(self.stage.value, "dequeued")
        try:
            if job.is_poison:
                await self._handle_poison_job(job)
                return
            await self._run_handler(job)
        except Exception as e:
            # Settlement itself failed (queue unreachable); the message becomes visible again
            logger.error(
                f"Failed to settle {self.stage.value} job {job.message_id}: {e}",
                exc_info=True,
            )

    async def _run_handler(self, job: QueuedJob) -> None:
        envelope = job.envelope
        start_time = time.time()
        try:
            await self.handler.handle(envelope)
        except Exception as e:
            duration = time.time() - start_time
            if isinstance(e, PermanentJobError) or envelope.is_last_attempt():
                await self._fail(job, envelope, e, duration)
            else:
                await self._retry(job, envelope, e, duration)
            return

        duration = time.time() - start_time
        await self.queue.ack(job)
        record_job_event(self.stage.value, "completed", latency_seconds=duration)
        logger.info(json.dumps({
            "event": f"{self.stage.value}_job_completed",
            "job_id": envelope.job_id,
            "message_id": job.message_id,
            "prescription_id": envelope.prescription_id,
            "attempt": envelope.attempt,
            "status": "completed",
            "total_time_seconds": round(duration, 3),
        }))

    async def _retry(self, job: QueuedJob, envelope: JobEnvelope, error: Exception, duration: float) -> None:
        retry_envelope = envelope.for_retry(_describe(error))
        delay_seconds = envelope.retry_delay()
        try:
            await self.queue.enqueue(retry_envelope, delay_seconds=delay_seconds)
        except QueueError as requeue_error:
            # Original message is kept and reappears after its visibility timeout
            logger.error(f"Failed to re-enqueue {self.stage.value} job {envelope.job_id}: {requeue_error.message}")
            return

        await self.queue.ack(job)
        record_job_event(self.stage.value, "retried", latency_seconds=duration)
        logger.warning(json.dumps({
            "event": f"{self.stage.value}_job_retry",
            "job_id": envelope.job_id,
            "message_id": job.message_id,
            "prescription_id": envelope.prescription_id,
            "attempt": envelope.attempt,
            "max_attempts": envelope.max_attempts,
            "status": "retrying",
            "error_type": type(error).__name__,
            "error_code": getattr(error, "error_code", None),
            "error_message": str(error)[:500],
            "delay_seconds": delay_seconds,
            "total_time_seconds": round(duration, 3),
        }))

    async def _fail(self, job: QueuedJob, envelope: JobEnvelope, error: Exception, duration: float) -> None:
        if not await self._run_failure_continuation(envelope, error):
            # Record still carries its in-flight status; redelivery retries the continuation
            record_job_event(self.stage.value, "continuation_failed", latency_seconds=duration)
            return
        reason = _describe(error)
        await self.queue.dead_letter(job, reason)
        record_job_event(self.stage.value, "failed", latency_seconds=duration)
        logger.error(json.dumps({
            "event": f"{self.stage.value}_job_failed",
            "job_id": envelope.job_id,
            "message_id": job.message_id,
            "prescription_id": envelope.prescription_id,
            "attempt": envelope.attempt,
            "max_attempts": envelope.max_attempts,
            "status": "failed",
            "error_type": type(error).__name__,
            "error_code": getattr(error, "error_code", None),
            "error_message": str(error)[:500],
            "is_permanent": isinstance(error, JobError) and error.permanent,
            "max_attempts_exceeded": envelope.is_last_attempt(),
            "total_time_seconds": round(duration, 3),
        }))

    async def _run_failure_continuation(self, envelope: JobEnvelope, error: BaseException) -> bool:
        """Run ``handler.on_exhausted``; False when it raised."""
        try:
            await self.handler.on_exhausted(envelope, error)
        except Exception as e:
            logger.error(
                f"Failure continuation raised for {self.stage.value} job {envelope.job_id} "
                f"({envelope.prescription_id}): {e}",
                exc_info=True,
            )
            return False
        return True

    async def _handle_poison_job(self, job: QueuedJob) -> None:
        """Undecodable or over-delivered message: fail the record when possible, then dead-letter."""
        if job.envelope is not None:
            await self._run_failure_continuation(
                job.envelope, PermanentJobError(job.poison_reason, "POISON_MESSAGE")
            )
        else:
            logger.error(
                f"POISON_MESSAGE_WITHOUT_ENVELOPE: stage={self.stage.value}, "
                f"message_id={job.message_id}, reason={job.poison_reason}"
            )
        await self.queue.dead_letter(job, job.poison_reason)
        record_job_event(self.stage.value, "dead_lettered")

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def run_once(self) -> int:
        """Dequeue one batch and process it to completion. Returns the batch size."""
        jobs = await self.queue.dequeue(self.stage, max_messages=self.concurrency)
        for job in jobs:
            await self.process_job(job)
        return len(jobs)

    def _install_signal_handlers(self) -> None:
        def signal_handler():
            logger.info(f"Shutdown signal received, stopping {self.stage.value} worker gracefully...")
            self.shutdown_event.set()

        loop = asyncio.get_event_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, signal_handler)
            except (NotImplementedError, RuntimeError):
                # Not supported on this platform or outside the main thread
                pass

    async def run(self) -> None:
        """Main worker loop with bounded concurrency and batch dequeue."""
        logger.info(
            f"Starting {self.stage.value} worker (PID: {os.getpid()}, concurrency={self.concurrency})..."
        )
        if self._owns_shutdown_event:
            self._install_signal_handlers()

        semaphore = asyncio.Semaphore(self.concurrency)
        last_status_log = time.time()
        status_log_interval = 300

        async def handle_job(job: QueuedJob):
            async with semaphore:
                await self.process_job(job)

        while not self.shutdown_event.is_set():
            try:
                free_slots = self.concurrency - len(self.active_tasks)
                if free_slots > 0:
                    jobs = await self.queue.dequeue(self.stage, max_messages=free_slots)
                    self.poll_count += 1
                    for job in jobs:
                        task = asyncio.create_task(handle_job(job))
                        self.active_tasks.add(task)
                        task.add_done_callback(self.active_tasks.discard)
                    if not jobs:
                        await self._sleep(self.poll_interval)
                else:
                    await self._sleep(min(1.0, self.poll_interval))

                if time.time() - last_status_log >= status_log_interval:
                    logger.info(
                        f"Worker status: stage={self.stage.value}, poll_count={self.poll_count}, "
                        f"active_jobs={len(self.active_tasks)}, concurrency={self.concurrency}"
                    )
                    last_status_log = time.time()
            except Exception as e:
                logger.error(f"{self.stage.value} worker error: {e}", exc_info=True)
                await self._sleep(self.poll_interval)

        await self.shutdown()

    async def _sleep(self, seconds: float) -> None:
        """Sleep that returns early when shutdown is requested."""
        try:
            await asyncio.wait_for(self.shutdown_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def shutdown(self) -> None:
        """Wait for active jobs, cancelling whatever outlives ``shutdown_timeout``."""
        if not self.active_tasks:
            logger.info(f"{self.stage.value} worker stopped")
            return

        pending = list(self.active_tasks)
        logger.info(
            f"Waiting for {len(pending)} active {self.stage.value} job(s) "
            f"to complete (max {self.shutdown_timeout:.0f}s)..."
        )
        done, not_done = await asyncio.wait(pending, timeout=self.shutdown_timeout)
        if not_done:
            logger.warning(f"Timeout waiting for {len(not_done)} job(s) to complete. Cancelling...")
            for task in not_done:
                task.cancel()
            await asyncio.gather(*not_done, return_exceptions=True)
        logger.info(f"{self.stage.value} worker stopped")
