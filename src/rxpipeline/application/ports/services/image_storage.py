"""
Image storage interface for uploaded prescriptions.
"""

from abc import ABC, abstractmethod


class ImageStorage(ABC):
    """Abstract store for prescription images."""

    @abstractmethod
    async def save(self, image_bytes: bytes, filename: str) -> str:
        """Store an upload and return its locator (a local path the OCR worker can read)."""
        pass

    @abstractmethod
    async def delete(self, image_ref: str) -> bool:
        """Delete a stored image. Returns False when it was already gone."""
        pass

    @abstractmethod
    async def exists(self, image_ref: str) -> bool:
        pass
