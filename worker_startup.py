"""
Standalone startup script for the pipeline stage workers.
Run this as a separate process/service for production deployments.

    python worker_startup.py                      # all stages
    python worker_startup.py extraction analysis  # selected stages
"""
import sys
from pathlib import Path

# Bootstrap: Add src directory to Python path for src-layout convenience
_script_dir = Path(__file__).resolve().parent
_src_dir_str = str(_script_dir / "src")
if _src_dir_str not in sys.path:
    sys.path.insert(0, _src_dir_str)

import argparse
import asyncio
import logging
import signal

from rxpipeline.adapters.db.mongo.init_db import init_database
from rxpipeline.core.config import get_settings
from rxpipeline.core.container import ServiceNames, build_container
from rxpipeline.core.exceptions import ConfigurationError
from rxpipeline.core.structured_logger import configure_logging
from rxpipeline.domain.enums.prescription import PipelineStage
from rxpipeline.workers.analysis_worker import build_analysis_worker
from rxpipeline.workers.extraction_worker import build_extraction_worker
from rxpipeline.workers.notification_worker import build_notification_worker

logger = logging.getLogger(__name__)

BUILDERS = {
    PipelineStage.EXTRACTION: build_extraction_worker,
    PipelineStage.ANALYSIS: build_analysis_worker,
    PipelineStage.NOTIFICATION: build_notification_worker,
}


async def main(stages) -> None:
    """Entry point for standalone worker process."""
    settings = get_settings()
    configure_logging(settings.logging)
    logger.info(f"{settings.app_name} {settings.app_version} workers ({settings.app_env})")
    if settings.is_production and settings.queue.backend == "memory":
        # the memory queue is process-local; jobs would never reach other workers
        raise ConfigurationError("QUEUE_BACKEND=memory is not supported in production")

    client = await init_database(settings.database)
    container = build_container(settings)
    queue = container.get(ServiceNames.JOB_QUEUE)
    await queue.ensure_queues()

    shutdown_event = asyncio.Event()

    def signal_handler():
        logger.info("Shutdown signal received, stopping workers gracefully...")
        shutdown_event.set()

    loop = asyncio.get_event_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    workers = [BUILDERS[stage](container, shutdown_event) for stage in stages]
    logger.info(f"Starting workers: {', '.join(w.stage.value for w in workers)}")
    try:
        await asyncio.gather(*(worker.run() for worker in workers))
    finally:
        await queue.close()
        client.close()
        logger.info("Worker process stopped")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run prescription pipeline stage workers")
    parser.add_argument(
        "stages",
        nargs="*",
        choices=[stage.value for stage in PipelineStage],
        help="Stages to run (default: all)",
    )
    args = parser.parse_args(argv)
    return [PipelineStage(s) for s in args.stages] or list(PipelineStage)


if __name__ == "__main__":
    asyncio.run(main(parse_args()))
