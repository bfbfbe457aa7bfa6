#!/usr/bin/env python3
"""
Print per-stage Azure Queue statistics and the current queue configuration.
Shows approximate live and dead-letter message counts for every stage.
"""

import sys
from pathlib import Path

# Bootstrap: Add src directory to Python path for src-layout convenience
_script_dir = Path(__file__).resolve().parent
_src_dir_str = str(_script_dir.parent / "src")
if _src_dir_str not in sys.path:
    sys.path.insert(0, _src_dir_str)

import asyncio

from rxpipeline.adapters.queue.azure_queue_service import AzureQueueService
from rxpipeline.core.config import get_settings
from rxpipeline.domain.enums.prescription import PipelineStage


def mask_connection_string(conn_str: str) -> str:
    """Mask sensitive parts of connection string for display."""
    if not conn_str:
        return "not set"
    parts = []
    for part in conn_str.split(";"):
        if part.startswith("AccountKey="):
            parts.append("AccountKey=***masked***")
        elif part.startswith("SharedAccessKey="):
            parts.append("SharedAccessKey=***masked***")
        else:
            parts.append(part)
    return ";".join(parts)


async def main() -> int:
    """Print queue statistics."""
    print("=" * 70)
    print("Pipeline Queue Statistics")
    print("=" * 70)
    print()

    settings = get_settings()
    queue_settings = settings.azure_queue

    print("Configuration (from Settings):")
    print(f"  Queue Prefix: {queue_settings.queue_prefix}")
    print(f"  Visibility Timeout: {queue_settings.visibility_timeout}s")
    print(f"  Max Dequeue Count: {queue_settings.max_dequeue_count}")
    print(f"  Max Attempts: {settings.queue.max_attempts}")
    print(f"  Poll Interval: {settings.queue.poll_interval}s")
    print(f"  Connection String: {mask_connection_string(queue_settings.connection_string)}")
    print()

    queue_service = AzureQueueService(queue_settings)
    try:
        print(f"  {'stage':<14}{'queue':<34}{'waiting':>9}{'dead':>7}")
        for stage in PipelineStage:
            waiting = await queue_service.length(stage)
            dead = await queue_service.dead_letter_length(stage)
            print(f"  {stage.value:<14}{queue_service.queue_name(stage):<34}{waiting:>9}{dead:>7}")
    except Exception as e:
        print(f"  Connection failed: {e}")
        print(f"     Error type: {type(e).__name__}")
        return 1
    finally:
        await queue_service.close()

    print()
    print("=" * 70)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
