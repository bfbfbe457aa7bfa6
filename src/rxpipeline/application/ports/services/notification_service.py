"""
Notification service interface for downstream status updates.
"""

from abc import ABC, abstractmethod
from typing import Optional


class NotificationService(ABC):
    """Abstract notifier called by the notification stage."""

    @abstractmethod
    async def notify(
        self,
        prescription_id: str,
        owner_id: str,
        status: str,
        reason: Optional[str] = None,
    ) -> None:
        """
        Deliver one status update.

        Raises:
            NotificationError: delivery failed (retryable)
        """
        pass
