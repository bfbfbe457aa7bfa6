"""
Dependency injection container for the pipeline processes.

Factories are registered by name and instantiated once on first ``get``.
``build_container`` wires the default adapters from settings; tests and
scripts register their own instances over the defaults.
"""

from typing import Any, Callable, Dict, Optional

from .config import Settings, get_settings
from .exceptions import ConfigurationError


class Container:
    """Lightweight dependency injection container."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._factories: Dict[str, Callable[[], Any]] = {}
        self._singletons: Dict[str, Any] = {}
        self.settings = settings or get_settings()

    def register_singleton(self, name: str, instance: Any) -> None:
        """Register a singleton instance."""
        self._singletons[name] = instance

    def register_factory(self, name: str, factory: Callable[[], Any]) -> None:
        """Register a factory function."""
        self._factories[name] = factory

    def get(self, name: str) -> Any:
        """Get a service by name."""
        if name in self._singletons:
            return self._singletons[name]

        if name in self._factories:
            instance = self._factories[name]()
            # Cache as singleton if it's a factory
            self._singletons[name] = instance
            return instance

        raise ConfigurationError(f"Service '{name}' not found")


class ServiceNames:
    """Service names used throughout the pipeline."""

    SETTINGS = "settings"
    JOB_QUEUE = "job_queue"
    PRESCRIPTION_REPOSITORY = "prescription_repository"
    IMAGE_STORAGE = "image_storage"
    OCR_SERVICE = "ocr_service"
    ANALYSIS_SERVICE = "analysis_service"
    NOTIFICATION_SERVICE = "notification_service"
    JOB_DISPATCHER = "job_dispatcher"


def _build_queue(settings: Settings):
    if settings.queue.backend == "memory":
        from ..adapters.queue.memory_queue import InMemoryJobQueue

        return InMemoryJobQueue(
            visibility_timeout=settings.azure_queue.visibility_timeout,
            max_dequeue_count=settings.azure_queue.max_dequeue_count,
        )
    from ..adapters.queue.azure_queue_service import AzureQueueService

    return AzureQueueService(settings.azure_queue)


def build_container(settings: Optional[Settings] = None) -> Container:
    """Container with the default adapter for every port."""
    container = Container(settings)
    settings = container.settings
    container.register_singleton(ServiceNames.SETTINGS, settings)

    def repository():
        from ..adapters.db.mongo.repositories.prescription_repository import MongoPrescriptionRepository

        return MongoPrescriptionRepository()

    def image_storage():
        from ..adapters.storage.local_image_storage import LocalImageStorage

        return LocalImageStorage(settings.storage)

    def ocr_service():
        from ..adapters.external.ocr_service_tesseract import TesseractOCRService

        return TesseractOCRService(settings.ocr)

    def analysis_service():
        from ..adapters.external.analysis_service_openai import OpenAIAnalysisService

        return OpenAIAnalysisService(settings)

    def notification_service():
        from ..adapters.external.notification_service_webhook import WebhookNotificationService

        return WebhookNotificationService(settings.notification)

    def dispatcher():
        from ..application.utils.job_dispatcher import JobDispatcher

        return JobDispatcher(container.get(ServiceNames.JOB_QUEUE), settings.queue)

    container.register_factory(ServiceNames.JOB_QUEUE, lambda: _build_queue(settings))
    container.register_factory(ServiceNames.PRESCRIPTION_REPOSITORY, repository)
    container.register_factory(ServiceNames.IMAGE_STORAGE, image_storage)
    container.register_factory(ServiceNames.OCR_SERVICE, ocr_service)
    container.register_factory(ServiceNames.ANALYSIS_SERVICE, analysis_service)
    container.register_factory(ServiceNames.NOTIFICATION_SERVICE, notification_service)
    container.register_factory(ServiceNames.JOB_DISPATCHER, dispatcher)
    return container
