"""
StageWorker outcome handling, polling loop and worker builders.
"""

import asyncio

import pytest

from rxpipeline.application.dto.jobs import NotificationJob
from rxpipeline.application.ports.services.job_handler import JobHandler
from rxpipeline.core.container import ServiceNames, build_container
from rxpipeline.core.exceptions import NotificationError, PermanentJobError, QueueError
from rxpipeline.domain.enums.prescription import PipelineStage, PrescriptionStatus
from rxpipeline.workers.analysis_worker import build_analysis_worker
from rxpipeline.workers.extraction_worker import ExtractionWorker, build_extraction_worker
from rxpipeline.workers.notification_worker import build_notification_worker
from rxpipeline.workers.stage_worker import StageWorker

PID = "RX-" + "b" * 32


class ScriptedHandler(JobHandler):
    """Raises the queued errors in order, then succeeds."""

    def __init__(self, errors=None, exhausted_error=None):
        self.errors = list(errors or [])
        self.exhausted_error = exhausted_error
        self.handled = []
        self.exhausted = []

    async def handle(self, envelope):
        self.handled.append(envelope.attempt)
        if self.errors:
            raise self.errors.pop(0)

    async def on_exhausted(self, envelope, error):
        self.exhausted.append((envelope.attempt, error))
        if self.exhausted_error:
            raise self.exhausted_error


def notification(status: str = "analysis_done") -> NotificationJob:
    return NotificationJob(prescription_id=PID, owner_id="user-1", status=status)


def worker_for(handler, queue, settings, **kwargs) -> StageWorker:
    return StageWorker(PipelineStage.NOTIFICATION, handler, queue, settings=settings, **kwargs)


@pytest.mark.asyncio
async def test_success_acks_the_job(queue, dispatcher, settings):
    handler = ScriptedHandler()
    await dispatcher.enqueue(PipelineStage.NOTIFICATION, notification())

    assert await worker_for(handler, queue, settings).run_once() == 1

    assert handler.handled == [1]
    assert handler.exhausted == []
    assert await queue.length(PipelineStage.NOTIFICATION) == 0


@pytest.mark.asyncio
async def test_permanent_error_skips_retries(queue, dispatcher, settings):
    error = PermanentJobError("bad data", "BAD_DATA")
    handler = ScriptedHandler(errors=[error])
    await dispatcher.enqueue(PipelineStage.NOTIFICATION, notification())

    await worker_for(handler, queue, settings).run_once()

    assert handler.handled == [1]
    assert handler.exhausted == [(1, error)]
    assert await queue.length(PipelineStage.NOTIFICATION) == 0
    assert queue.dead_letters(PipelineStage.NOTIFICATION)[0].reason == "BAD_DATA: bad data"


@pytest.mark.asyncio
async def test_notification_backoff_doubles(queue, clock, dispatcher, settings):
    handler = ScriptedHandler(errors=[NotificationError("502"), NotificationError("502")])
    worker = worker_for(handler, queue, settings)
    await dispatcher.enqueue(PipelineStage.NOTIFICATION, notification())

    await worker.run_once()
    assert queue.next_visible_in(PipelineStage.NOTIFICATION) == 2.0
    clock.advance(2)
    await worker.run_once()
    assert queue.next_visible_in(PipelineStage.NOTIFICATION) == 4.0
    clock.advance(4)
    await worker.run_once()

    assert handler.handled == [1, 2, 3]
    assert handler.exhausted == []
    assert await queue.length(PipelineStage.NOTIFICATION) == 0


@pytest.mark.asyncio
async def test_raising_failure_continuation_keeps_message(queue, clock, dispatcher, settings):
    handler = ScriptedHandler(
        errors=[NotificationError("502") for _ in range(4)],
        exhausted_error=RuntimeError("database down"),
    )
    worker = worker_for(handler, queue, settings)
    await dispatcher.enqueue(PipelineStage.NOTIFICATION, notification())

    await worker.run_once()
    clock.advance(2)
    await worker.run_once()
    clock.advance(4)
    await worker.run_once()

    assert handler.handled == [1, 2, 3]
    assert [attempt for attempt, _ in handler.exhausted] == [3]
    assert await queue.dead_letter_length(PipelineStage.NOTIFICATION) == 0
    assert await queue.length(PipelineStage.NOTIFICATION) == 1

    # redelivered after the lease expires; the continuation runs again
    handler.exhausted_error = None
    clock.advance(queue.visibility_timeout)
    await worker.run_once()

    assert handler.handled == [1, 2, 3, 3]
    assert [attempt for attempt, _ in handler.exhausted] == [3, 3]
    assert await queue.length(PipelineStage.NOTIFICATION) == 0
    assert await queue.dead_letter_length(PipelineStage.NOTIFICATION) == 1


@pytest.mark.asyncio
async def test_poison_message_dead_lettered_even_if_continuation_raises(queue, clock, dispatcher, settings):
    handler = ScriptedHandler(exhausted_error=RuntimeError("database down"))
    queue.max_dequeue_count = 1
    await dispatcher.enqueue(PipelineStage.NOTIFICATION, notification())
    # a worker that crashed mid-job
    await queue.dequeue(PipelineStage.NOTIFICATION)
    clock.advance(queue.visibility_timeout)

    await worker_for(handler, queue, settings).run_once()

    assert handler.handled == []
    [(_, error)] = handler.exhausted
    assert error.error_code == "POISON_MESSAGE"
    assert await queue.length(PipelineStage.NOTIFICATION) == 0
    assert await queue.dead_letter_length(PipelineStage.NOTIFICATION) == 1


@pytest.mark.asyncio
async def test_failed_requeue_keeps_original_message(queue, dispatcher, settings):
    handler = ScriptedHandler(errors=[NotificationError("502")])
    await dispatcher.enqueue(PipelineStage.NOTIFICATION, notification())
    queue.fail_enqueue = "queue unavailable"

    await worker_for(handler, queue, settings).run_once()

    # still leased; it reappears after the visibility timeout
    assert await queue.length(PipelineStage.NOTIFICATION) == 1
    assert await queue.dead_letter_length(PipelineStage.NOTIFICATION) == 0


@pytest.mark.asyncio
async def test_process_job_never_raises_when_settlement_fails(queue, dispatcher, settings, monkeypatch):
    handler = ScriptedHandler()
    await dispatcher.enqueue(PipelineStage.NOTIFICATION, notification())

    async def broken_ack(job):
        raise QueueError("ack failed")

    monkeypatch.setattr(queue, "ack", broken_ack)
    worker = worker_for(handler, queue, settings)
    [job] = await queue.dequeue(PipelineStage.NOTIFICATION)

    await worker.process_job(job)

    assert handler.handled == [1]


@pytest.mark.asyncio
async def test_notification_exhaustion_only_logs(queue, clock, dispatcher, settings, notifier, notification_worker):
    notifier.failures = [NotificationError("timeout") for _ in range(3)]
    await dispatcher.enqueue(PipelineStage.NOTIFICATION, notification("extraction_failed"))

    await notification_worker.run_once()
    clock.advance(2)
    await notification_worker.run_once()
    clock.advance(4)
    await notification_worker.run_once()

    assert notifier.sent == []
    assert await queue.dead_letter_length(PipelineStage.NOTIFICATION) == 1


@pytest.mark.asyncio
async def test_run_loop_processes_jobs_until_stopped(upload, repository, queue, extraction_worker, settings):
    prescription_id = await upload()
    stop = asyncio.Event()
    worker = StageWorker(
        PipelineStage.EXTRACTION,
        extraction_worker.handler,
        queue,
        settings=settings,
        shutdown_event=stop,
    )

    task = asyncio.create_task(worker.run())
    for _ in range(100):
        if repository.get(prescription_id).status != PrescriptionStatus.PENDING:
            break
        await asyncio.sleep(0.01)
    stop.set()
    await asyncio.wait_for(task, timeout=5)

    assert repository.get(prescription_id).status == PrescriptionStatus.EXTRACTION_DONE
    assert worker.poll_count >= 1
    assert not worker.active_tasks


@pytest.mark.asyncio
async def test_builders_wire_workers_from_container(settings, queue, repository, ocr_service, analysis_service, notifier):
    container = build_container(settings)
    container.register_singleton(ServiceNames.JOB_QUEUE, queue)
    container.register_singleton(ServiceNames.PRESCRIPTION_REPOSITORY, repository)
    container.register_singleton(ServiceNames.OCR_SERVICE, ocr_service)
    container.register_singleton(ServiceNames.ANALYSIS_SERVICE, analysis_service)
    container.register_singleton(ServiceNames.NOTIFICATION_SERVICE, notifier)

    extraction = build_extraction_worker(container)
    analysis = build_analysis_worker(container)
    notifications = build_notification_worker(container)

    assert isinstance(extraction, ExtractionWorker)
    assert extraction.concurrency == settings.worker.extraction_concurrency
    assert analysis.stage == PipelineStage.ANALYSIS
    assert analysis.concurrency == settings.worker.analysis_concurrency
    assert notifications.stage == PipelineStage.NOTIFICATION
    assert extraction.queue is queue

    await extraction.shutdown()
    assert ocr_service.shutdown_called


def test_container_uses_memory_queue_backend(settings):
    from rxpipeline.adapters.queue.memory_queue import InMemoryJobQueue

    container = build_container(settings)

    assert isinstance(container.get(ServiceNames.JOB_QUEUE), InMemoryJobQueue)
    assert container.get(ServiceNames.JOB_DISPATCHER).queue is container.get(ServiceNames.JOB_QUEUE)
    assert container.get(ServiceNames.SETTINGS) is settings
