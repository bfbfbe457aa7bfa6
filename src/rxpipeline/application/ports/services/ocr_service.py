"""
OCR service interface for prescription image recognition.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List


@dataclass(frozen=True)
class OCRRecognition:
    """Raw recognition output."""

    text: str
    confidence: float  # 0-100
    languages: List[str]


class OCRService(ABC):
    """Abstract long-lived OCR engine."""

    @abstractmethod
    async def recognize(self, image_path: str, languages: List[str]) -> OCRRecognition:
        """
        Recognize the text of an image.

        Args:
            image_path: Path to a readable image file
            languages: Engine language codes, already filtered to supported ones

        Returns:
            OCRRecognition with text and a confidence in [0, 100]

        Raises:
            OCRError: engine failure or timeout (retryable)
        """
        pass

    async def shutdown(self) -> None:
        """Release engine resources and purge leftover temp files."""
        return None
