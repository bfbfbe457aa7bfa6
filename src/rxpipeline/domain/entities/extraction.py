"""Extraction stage output: recognized text plus the fields parsed out of it."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

NOT_SPECIFIED = "Not specified"


@dataclass(frozen=True)
class MedicationLine:
    """One medication line found in the recognized text."""

    name: str = NOT_SPECIFIED
    dosage: str = NOT_SPECIFIED
    frequency: str = NOT_SPECIFIED
    duration: str = NOT_SPECIFIED
    raw_line: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MedicationLine":
        return cls(
            name=data.get("name") or NOT_SPECIFIED,
            dosage=data.get("dosage") or NOT_SPECIFIED,
            frequency=data.get("frequency") or NOT_SPECIFIED,
            duration=data.get("duration") or NOT_SPECIFIED,
            raw_line=data.get("raw_line") or "",
        )


@dataclass(frozen=True)
class StructuredExtraction:
    """Typed fields parsed from OCR text. Absent values use ``NOT_SPECIFIED``."""

    patient_name: str = NOT_SPECIFIED
    doctor_name: str = NOT_SPECIFIED
    date: str = NOT_SPECIFIED
    medications: List[MedicationLine] = field(default_factory=list)
    notes: str = NOT_SPECIFIED

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "StructuredExtraction":
        data = data or {}
        return cls(
            patient_name=data.get("patient_name") or NOT_SPECIFIED,
            doctor_name=data.get("doctor_name") or NOT_SPECIFIED,
            date=data.get("date") or NOT_SPECIFIED,
            medications=[MedicationLine.from_dict(m) for m in data.get("medications") or []],
            notes=data.get("notes") or NOT_SPECIFIED,
        )


@dataclass(frozen=True)
class ExtractionResult:
    """Everything the extraction stage hands to the analysis stage."""

    text: str
    confidence: float  # 0-100
    structured: StructuredExtraction
    low_confidence: bool = False
    languages: List[str] = field(default_factory=list)
    processed_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "confidence": self.confidence,
            "structured": self.structured.to_dict(),
            "low_confidence": self.low_confidence,
            "languages": list(self.languages),
            "processed_at": self.processed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExtractionResult":
        processed_at = data.get("processed_at")
        if isinstance(processed_at, str):
            processed_at = datetime.fromisoformat(processed_at)
        return cls(
            text=data.get("text") or "",
            confidence=float(data.get("confidence") or 0.0),
            structured=StructuredExtraction.from_dict(data.get("structured")),
            low_confidence=bool(data.get("low_confidence", False)),
            languages=list(data.get("languages") or []),
            processed_at=processed_at or datetime.utcnow(),
        )
