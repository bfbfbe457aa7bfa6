#!/usr/bin/env python3
"""
Operator reset of failed prescriptions.

Moves each record from extraction_failed/analysis_failed back to pending and
enqueues a fresh extraction job.

    python scripts/reset_prescription.py RX-<id> [RX-<id> ...]
"""

import sys
from pathlib import Path

_src_dir_str = str(Path(__file__).resolve().parent.parent / "src")
if _src_dir_str not in sys.path:
    sys.path.insert(0, _src_dir_str)

import argparse
import asyncio

from rxpipeline.adapters.db.mongo.init_db import init_database
from rxpipeline.application.use_cases.reset_prescription import ResetPrescriptionUseCase
from rxpipeline.core.config import get_settings
from rxpipeline.core.container import ServiceNames, build_container
from rxpipeline.core.structured_logger import configure_logging
from rxpipeline.domain.errors import DomainError


async def main(prescription_ids) -> int:
    settings = get_settings()
    configure_logging(settings.logging)
    client = await init_database(settings.database)
    container = build_container(settings)
    use_case = ResetPrescriptionUseCase(
        container.get(ServiceNames.PRESCRIPTION_REPOSITORY),
        container.get(ServiceNames.JOB_DISPATCHER),
        settings.ocr,
    )

    failures = 0
    try:
        for prescription_id in prescription_ids:
            try:
                result = await use_case.execute(prescription_id)
            except DomainError as e:
                failures += 1
                print(f"{prescription_id}: {e.error_code}: {e.message}")
                continue
            print(f"{prescription_id}: reset to {result.status} (reset #{result.reset_count})")
    finally:
        await container.get(ServiceNames.JOB_QUEUE).close()
        client.close()
    return 1 if failures else 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reset failed prescriptions to pending")
    parser.add_argument("prescription_ids", nargs="+", help="Prescription IDs (RX-...)")
    args = parser.parse_args()
    sys.exit(asyncio.run(main(args.prescription_ids)))
