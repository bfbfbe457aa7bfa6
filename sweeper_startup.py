"""
Entry point for the pipeline stuck sweeper.

This process is intended to be run separately from the workers:
    python sweeper_startup.py
"""
import sys
from pathlib import Path

_src_dir_str = str(Path(__file__).resolve().parent / "src")
if _src_dir_str not in sys.path:
    sys.path.insert(0, _src_dir_str)

import asyncio
import logging
import signal

from rxpipeline.adapters.db.mongo.init_db import init_database
from rxpipeline.core.config import get_settings
from rxpipeline.core.container import ServiceNames, build_container
from rxpipeline.core.structured_logger import configure_logging
from rxpipeline.workers.pipeline_stuck_sweeper import PipelineStuckSweeper

logger = logging.getLogger(__name__)


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.logging)
    if not settings.sweeper.enabled:
        logger.info("Pipeline stuck sweeper is disabled. Set PIPELINE_SWEEPER_ENABLED=true to enable.")
        return

    logger.info(
        "Sweeper config: interval=%ss, threshold=%ss",
        settings.sweeper.interval_seconds,
        settings.sweeper.threshold_seconds,
    )

    client = await init_database(settings.database)
    container = build_container(settings)
    sweeper = PipelineStuckSweeper(
        container.get(ServiceNames.PRESCRIPTION_REPOSITORY),
        container.get(ServiceNames.JOB_DISPATCHER),
        settings,
    )

    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("Shutdown signal received for sweeper, stopping gracefully...")
        stop_event.set()

    loop = asyncio.get_event_loop()
    loop.add_signal_handler(signal.SIGTERM, _signal_handler)
    loop.add_signal_handler(signal.SIGINT, _signal_handler)

    try:
        await sweeper.run_forever(stop_event)
    finally:
        await container.get(ServiceNames.JOB_QUEUE).close()
        client.close()
        logger.info("Sweeper MongoDB client closed.")


if __name__ == "__main__":
    asyncio.run(main())
