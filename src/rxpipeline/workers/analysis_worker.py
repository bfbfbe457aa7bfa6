"""
Analysis stage worker: language-model review of extracted prescriptions.
"""
import asyncio
from typing import Optional

from rxpipeline.application.use_cases.analyze_prescription import AnalyzePrescriptionUseCase
from rxpipeline.core.container import Container, ServiceNames
from rxpipeline.domain.enums.prescription import PipelineStage

from .stage_worker import StageWorker


def build_analysis_worker(container: Container, shutdown_event: Optional[asyncio.Event] = None) -> StageWorker:
    handler = AnalyzePrescriptionUseCase(
        prescription_repository=container.get(ServiceNames.PRESCRIPTION_REPOSITORY),
        analysis_service=container.get(ServiceNames.ANALYSIS_SERVICE),
        dispatcher=container.get(ServiceNames.JOB_DISPATCHER),
    )
    return StageWorker(
        PipelineStage.ANALYSIS,
        handler,
        queue=container.get(ServiceNames.JOB_QUEUE),
        settings=container.settings,
        shutdown_event=shutdown_event,
    )
