"""
File utility functions for the prescription pipeline.
"""

import logging
import os
import re
import time
from pathlib import Path
from typing import List

logger = logging.getLogger("rxpipeline")


def get_file_extension(filename: str) -> str:
    """Get file extension (lowercase, without the dot) from filename."""
    return Path(filename).suffix.lower().lstrip(".")


def validate_file_type(filename: str, allowed_extensions: List[str]) -> bool:
    """Validate if file type is allowed."""
    return get_file_extension(filename) in {ext.lower().lstrip(".") for ext in allowed_extensions}


def sanitize_filename(filename: str) -> str:
    """Replace every character outside ``[A-Za-z0-9.]`` with an underscore."""
    name = os.path.basename(filename or "") or "upload"
    return re.sub(r"[^a-zA-Z0-9.]", "_", name)


def timestamped_filename(filename: str) -> str:
    """Build a storage name like ``1718000000000-scan_01.jpg``."""
    return f"{int(time.time() * 1000)}-{sanitize_filename(filename)}"


def create_directory(directory_path: str) -> bool:
    """Create directory if it doesn't exist."""
    try:
        Path(directory_path).mkdir(parents=True, exist_ok=True)
        return True
    except OSError:
        return False


def is_readable_file(filepath: str) -> bool:
    """True when ``filepath`` names an existing regular file this process can read."""
    return os.path.isfile(filepath) and os.access(filepath, os.R_OK)


def purge_directory(directory_path: str) -> int:
    """Delete every regular file directly inside ``directory_path``.

    Returns the number of files removed. Failures are logged and skipped.
    """
    directory = Path(directory_path)
    if not directory.is_dir():
        return 0

    removed = 0
    for entry in directory.iterdir():
        if not entry.is_file():
            continue
        try:
            entry.unlink()
            removed += 1
        except OSError as e:
            logger.warning(f"Failed to delete leftover file {entry}: {e}")
    return removed
