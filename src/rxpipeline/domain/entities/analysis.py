"""Analysis stage output: a fully populated medication review."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .extraction import NOT_SPECIFIED

UNKNOWN = "Unknown"


@dataclass(frozen=True)
class MedicationAnalysis:
    """Review of a single medication. Every field is always present."""

    name: str = UNKNOWN
    dosage: str = NOT_SPECIFIED
    frequency: str = NOT_SPECIFIED
    duration: str = NOT_SPECIFIED
    potential_interactions: List[str] = field(default_factory=list)
    side_effects: List[str] = field(default_factory=list)
    contraindications: List[str] = field(default_factory=list)
    alternatives: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "dosage": self.dosage,
            "frequency": self.frequency,
            "duration": self.duration,
            "potential_interactions": list(self.potential_interactions),
            "side_effects": list(self.side_effects),
            "contraindications": list(self.contraindications),
            "alternatives": list(self.alternatives),
        }


@dataclass(frozen=True)
class AnalysisResult:
    """Normalized language-model review of a prescription."""

    medications: List[MedicationAnalysis] = field(default_factory=list)
    notes: str = ""
    warnings: List[str] = field(default_factory=list)
    recommended_tests: List[str] = field(default_factory=list)
    model: Optional[str] = None
    processed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "medications": [m.to_dict() for m in self.medications],
            "notes": self.notes,
            "warnings": list(self.warnings),
            "recommended_tests": list(self.recommended_tests),
            "model": self.model,
            "processed_at": self.processed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        processed_at = data.get("processed_at")
        if isinstance(processed_at, str):
            processed_at = datetime.fromisoformat(processed_at)
        return cls(
            medications=[MedicationAnalysis(**m) for m in data.get("medications") or []],
            notes=data.get("notes") or "",
            warnings=list(data.get("warnings") or []),
            recommended_tests=list(data.get("recommended_tests") or []),
            model=data.get("model"),
            processed_at=processed_at or datetime.utcnow(),
        )
