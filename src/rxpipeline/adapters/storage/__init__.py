"""
Storage adapters for prescription images.
"""

from .local_image_storage import LocalImageStorage

__all__ = [
    "LocalImageStorage",
]
