"""
Prescription ID value object for type-safe prescription identification.
Format: RX-<32 hex chars>
"""

import re
import uuid
from dataclasses import dataclass
from typing import Any

_PATTERN = re.compile(r"^RX-[0-9a-f]{32}$")


@dataclass(frozen=True)
class PrescriptionId:
    """Immutable prescription identifier value object."""

    value: str

    def __post_init__(self) -> None:
        """Validate prescription ID format."""
        if not isinstance(self.value, str):
            raise ValueError("Prescription ID must be a string")

        if not self.value:
            raise ValueError("Prescription ID cannot be empty")

        if not _PATTERN.match(self.value):
            raise ValueError("Prescription ID must follow format: RX-<32 hex characters>")

    def __str__(self) -> str:
        """String representation."""
        return self.value

    def __eq__(self, other: Any) -> bool:
        """Equality comparison."""
        if not isinstance(other, PrescriptionId):
            return False
        return self.value == other.value

    def __hash__(self) -> int:
        """Hash for use in sets and dictionaries."""
        return hash(self.value)

    @classmethod
    def generate(cls) -> "PrescriptionId":
        """Generate a new prescription ID."""
        return cls(f"RX-{uuid.uuid4().hex}")
