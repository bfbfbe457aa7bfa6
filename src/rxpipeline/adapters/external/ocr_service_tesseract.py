"""
Tesseract-based OCR service implementation.
"""

import asyncio
import functools
import logging
import os
import uuid
from typing import List, Optional, Tuple

import pytesseract
from PIL import Image, ImageOps, UnidentifiedImageError

from rxpipeline.application.ports.services.ocr_service import OCRRecognition, OCRService
from rxpipeline.core.config import OCRSettings, get_settings
from rxpipeline.core.exceptions import ImageNotFoundError, OCRError
from rxpipeline.core.utils.file_utils import create_directory, purge_directory

logger = logging.getLogger(__name__)


class TesseractOCRService(OCRService):
    """Tesseract implementation of OCRService.

    The engine is checked once on first use. Calls go through a small pool of
    engine slots so a worker process never runs more recognitions at once than
    ``engine_pool_size``. A slot stays taken until its engine call returns,
    including calls the caller stopped waiting for after a timeout. The temp
    image belongs to the engine call and is removed by it.
    """

    def __init__(self, settings: Optional[OCRSettings] = None):
        self._settings = settings or get_settings().ocr
        self._init_lock = asyncio.Lock()
        self._slots: Optional[asyncio.Queue] = None
        self._initialized = False
        self.version: Optional[str] = None

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def _ensure_initialized(self) -> None:
        """Lazy initialization, performed at most once per instance."""
        if self._initialized:
            return
        async with self._init_lock:
            if self._initialized:
                return
            if self._settings.tesseract_cmd:
                pytesseract.pytesseract.tesseract_cmd = self._settings.tesseract_cmd
            create_directory(self._settings.temp_dir)
            try:
                version = await asyncio.to_thread(pytesseract.get_tesseract_version)
            except (pytesseract.TesseractNotFoundError, OSError) as e:
                raise OCRError(f"Tesseract is not available: {e}") from e

            self._slots = asyncio.Queue()
            for slot in range(self._settings.engine_pool_size):
                self._slots.put_nowait(slot)
            self.version = str(version)
            self._initialized = True
            logger.info(
                f"Tesseract {self.version} initialized "
                f"(pool={self._settings.engine_pool_size}, psm={self._settings.page_segmentation_mode})"
            )

    async def recognize(self, image_path: str, languages: List[str]) -> OCRRecognition:
        """Recognize an image with Tesseract."""
        await self._ensure_initialized()
        languages = list(languages) or [self._settings.default_language]
        temp_path = os.path.join(self._settings.temp_dir, f"{uuid.uuid4().hex}.png")

        slots = self._slots
        slot = await slots.get()
        work = asyncio.get_running_loop().run_in_executor(
            None, functools.partial(self._recognize_sync, image_path, temp_path, languages)
        )
        # The slot is freed when the engine call returns, even after a timeout
        work.add_done_callback(lambda _: slots.put_nowait(slot))
        try:
            text, confidence = await asyncio.wait_for(
                asyncio.shield(work),
                timeout=self._settings.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise OCRError(
                f"Recognition timed out after {self._settings.timeout_seconds}s",
                {"image_path": image_path},
            ) from e
        except FileNotFoundError as e:
            raise ImageNotFoundError(image_path) from e
        except UnidentifiedImageError as e:
            raise ImageNotFoundError(image_path, reason="is not a readable image") from e
        except (pytesseract.TesseractError, RuntimeError, OSError) as e:
            raise OCRError(str(e), {"image_path": image_path}) from e

        logger.info(
            f"OCR completed: path={image_path}, languages={'+'.join(languages)}, "
            f"confidence={confidence:.1f}, chars={len(text)}"
        )
        return OCRRecognition(text=text, confidence=confidence, languages=languages)

    def _recognize_sync(self, image_path: str, temp_path: str, languages: List[str]) -> Tuple[str, float]:
        """Synchronous recognition: normalize to grayscale, then run Tesseract."""
        try:
            with Image.open(image_path) as image:
                normalized = ImageOps.exif_transpose(image).convert("L")
                normalized.save(temp_path, format="PNG")

            lang = "+".join(languages)
            config = f"--psm {self._settings.page_segmentation_mode} -c preserve_interword_spaces=1"
            text = pytesseract.image_to_string(temp_path, lang=lang, config=config)
            data = pytesseract.image_to_data(
                temp_path, lang=lang, config=config, output_type=pytesseract.Output.DICT
            )
            return text.strip(), self._mean_confidence(data.get("conf", []))
        finally:
            self._remove_temp(temp_path)

    @staticmethod
    def _mean_confidence(values) -> float:
        """Average word confidence, ignoring Tesseract's -1 placeholders."""
        scores = []
        for value in values:
            try:
                score = float(value)
            except (TypeError, ValueError):
                continue
            if score > 0:
                scores.append(score)
        if not scores:
            return 0.0
        return round(min(100.0, sum(scores) / len(scores)), 2)

    @staticmethod
    def _remove_temp(temp_path: str) -> None:
        try:
            os.remove(temp_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to delete OCR temp file {temp_path}: {e}")

    async def shutdown(self) -> None:
        """Purge leftover temp files. Safe to call whether or not the engine started."""
        removed = purge_directory(self._settings.temp_dir)
        if removed:
            logger.info(f"Removed {removed} leftover OCR temp file(s) from {self._settings.temp_dir}")
        self._initialized = False
        self._slots = None
