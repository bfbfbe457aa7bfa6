"""
Local filesystem storage for uploaded prescription images.

Images are written under ``STORAGE_UPLOAD_DIR`` with a millisecond timestamp
prefix and a sanitized name, and the absolute path is returned as the image
reference the OCR worker reads from.
"""

import asyncio
import logging
import os
import uuid
from pathlib import Path
from typing import Optional

from ...application.ports.services.image_storage import ImageStorage
from ...core.config import StorageSettings, get_settings
from ...core.exceptions import InvalidImageError, StorageError
from ...core.utils.file_utils import (
    create_directory,
    get_file_extension,
    timestamped_filename,
    validate_file_type,
)

logger = logging.getLogger(__name__)


class LocalImageStorage(ImageStorage):
    """Stores prescription images on the local filesystem."""

    def __init__(self, settings: Optional[StorageSettings] = None):
        self.settings = settings or get_settings().storage
        self.upload_dir = Path(self.settings.upload_dir).resolve()

    def validate(self, image_bytes: bytes, filename: str) -> None:
        if not image_bytes:
            raise InvalidImageError("Uploaded image is empty", {"filename": filename})
        if not validate_file_type(filename, self.settings.allowed_extensions):
            raise InvalidImageError(
                f"Unsupported image type '.{get_file_extension(filename)}'",
                {"filename": filename, "allowed": self.settings.allowed_extensions},
            )
        max_bytes = self.settings.max_image_size_mb * 1024 * 1024
        if len(image_bytes) > max_bytes:
            raise InvalidImageError(
                f"Image exceeds {self.settings.max_image_size_mb} MB",
                {"filename": filename, "size": len(image_bytes)},
            )

    async def save(self, image_bytes: bytes, filename: str) -> str:
        self.validate(image_bytes, filename)
        if not create_directory(str(self.upload_dir)):
            raise StorageError(f"Cannot create upload directory {self.upload_dir}")

        path = self.upload_dir / timestamped_filename(filename)
        if path.exists():
            path = self.upload_dir / f"{uuid.uuid4().hex[:8]}-{path.name}"
        try:
            await asyncio.to_thread(path.write_bytes, image_bytes)
        except OSError as e:
            raise StorageError(f"Failed to write image: {e}", {"path": str(path)}) from e

        logger.info(f"Stored prescription image {path.name} ({len(image_bytes)} bytes)")
        return str(path)

    async def delete(self, image_ref: str) -> bool:
        try:
            await asyncio.to_thread(os.remove, image_ref)
        except FileNotFoundError:
            logger.warning(f"Image already removed: {image_ref}")
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete image: {e}", {"path": image_ref}) from e
        logger.info(f"Deleted prescription image {image_ref}")
        return True

    async def exists(self, image_ref: str) -> bool:
        return await asyncio.to_thread(os.path.isfile, image_ref)
