"""
Stage handler interface driven by the stage workers.
"""

from abc import ABC, abstractmethod

from rxpipeline.application.dto.jobs import JobEnvelope


class JobHandler(ABC):
    """Business logic for one pipeline stage.

    ``handle`` raises to signal failure: ``PermanentJobError`` fails the job
    at once, anything else is retried until attempts run out. ``on_exhausted``
    is the failure continuation, called exactly once per job that will not be
    retried again.
    """

    @abstractmethod
    async def handle(self, envelope: JobEnvelope) -> None:
        pass

    async def on_exhausted(self, envelope: JobEnvelope, error: BaseException) -> None:
        return None
