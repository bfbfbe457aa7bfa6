"""
Re-enqueues pipeline jobs that never reached a queue or were lost from it.

A record is stuck when its enqueue was rejected (``enqueue_state=failed``),
when it has sat in an in-flight status past the threshold without its job
being confirmed as queued (process died between the status write and the
enqueue), or when its job was queued so long ago that it must have been lost
(dead-lettered while the failure status write kept failing).
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from rxpipeline.application.ports.repositories.prescription_repo import PrescriptionRepository
from rxpipeline.application.utils.job_dispatcher import JobDispatcher, next_pipeline_job
from rxpipeline.core.config import Settings, get_settings

logger = logging.getLogger(__name__)


class PipelineStuckSweeper:
    """Periodic repair of the two-phase enqueue."""

    def __init__(
        self,
        prescription_repository: PrescriptionRepository,
        dispatcher: JobDispatcher,
        settings: Optional[Settings] = None,
    ):
        self._prescription_repository = prescription_repository
        self._dispatcher = dispatcher
        self._settings = settings or get_settings()

    async def sweep_once(self, now: Optional[datetime] = None, limit: int = 100) -> int:
        """
        Perform a single sweep. Returns the number of jobs re-enqueued.
        """
        now = now or datetime.utcnow()
        sweeper = self._settings.sweeper
        stuck = await self._prescription_repository.find_stuck(
            now - timedelta(seconds=sweeper.threshold_seconds),
            limit=limit,
            queued_older_than=now - timedelta(seconds=sweeper.queued_threshold_seconds),
        )

        requeued = 0
        for prescription in stuck:
            pid = prescription.prescription_id.value
            job = next_pipeline_job(prescription, [self._settings.ocr.default_language])
            if job is None:
                logger.warning(
                    "[StuckSweeper] Nothing to re-enqueue for %s (status=%s, enqueue_state=%s)",
                    pid,
                    prescription.status.value,
                    prescription.enqueue_state.value if prescription.enqueue_state else None,
                )
                continue

            stage, payload = job
            logger.info(
                "[StuckSweeper] Found stuck record=%s status=%s stage=%s last_error=%s",
                pid,
                prescription.status.value,
                stage.value,
                prescription.enqueue_last_error,
            )
            if await self._dispatcher.enqueue_tracked(prescription, self._prescription_repository, stage, payload):
                requeued += 1
                logger.info("[StuckSweeper] STUCK_REENQUEUE success record=%s stage=%s", pid, stage.value)
            else:
                logger.error("[StuckSweeper] STUCK_REENQUEUE_FAILED record=%s stage=%s", pid, stage.value)
        return requeued

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """
        Run the sweeper in a loop until ``stop_event`` is set.
        """
        stop_event = stop_event or asyncio.Event()
        interval = max(30, self._settings.sweeper.interval_seconds)
        logger.info(
            "[StuckSweeper] Starting (interval=%ss, threshold=%ss)",
            interval,
            self._settings.sweeper.threshold_seconds,
        )

        while not stop_event.is_set():
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error("[StuckSweeper] Sweep iteration failed: %s", e, exc_info=True)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
