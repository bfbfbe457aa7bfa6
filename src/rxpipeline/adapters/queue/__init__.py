"""Queue adapters for background job processing."""

from .azure_queue_service import AzureQueueService
from .memory_queue import InMemoryJobQueue

__all__ = [
    "AzureQueueService",
    "InMemoryJobQueue",
]
