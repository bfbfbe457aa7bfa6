"""
Value objects package for domain layer.
"""

from .prescription_id import PrescriptionId

__all__ = [
    "PrescriptionId",
]
