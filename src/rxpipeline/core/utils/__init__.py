"""
Utility functions for the prescription pipeline.
"""

from .file_utils import (
    create_directory,
    get_file_extension,
    is_readable_file,
    purge_directory,
    sanitize_filename,
    timestamped_filename,
    validate_file_type,
)

__all__ = [
    "create_directory",
    "get_file_extension",
    "is_readable_file",
    "purge_directory",
    "sanitize_filename",
    "timestamped_filename",
    "validate_file_type",
]
