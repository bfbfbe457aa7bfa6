"""
Structured field extraction from recognized prescription text.

Pure and deterministic: the same text always yields the same result, nothing
is read or written outside the arguments, and the function never raises.
Fields that cannot be found are set to ``NOT_SPECIFIED`` instead of None.
"""

import logging
import re
from typing import List, Optional, Tuple

from rxpipeline.domain.entities.extraction import (
    NOT_SPECIFIED,
    MedicationLine,
    StructuredExtraction,
)

logger = logging.getLogger(__name__)

PATIENT_RE = re.compile(r"^(?:patient(?:\s+name)?|nom|name)\s*[:.\-]\s*(.+)$", re.IGNORECASE)
DOCTOR_RE = re.compile(r"(?:^|\s)(?:Dr\b\.?|Doctor\b|Docteur\b|Médecin\b)\s*:?\s*(.*)$", re.IGNORECASE)
DATE_RE = re.compile(r"\b(\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4})\b")
NOTES_RE = re.compile(r"^notes?\b\s*[:.]?\s*(.*)$", re.IGNORECASE)

# "500mg", "2.5 ml", "1000 UI", "50 µg"
UNIT_DOSAGE_RE = re.compile(r"\b\d+(?:[.,]\d+)?\s*(?:mg|mcg|µg|ml|g|UI)\b", re.IGNORECASE)
# "2 x 1 tablet", "1×2 comprimés", "3 x 5"
COUNT_DOSAGE_RE = re.compile(
    r"[\d½¼¾]+\s*[x×]\s*\d+"
    r"(?:\s*(?:tablets?|tabs?|capsules?|caps?|comprimés?|cp|gouttes?|drops?|sachets?|puffs?|ml)\b)?",
    re.IGNORECASE,
)

FREQUENCY_RE = re.compile(
    r"\b(?:once|twice|three\s+times)\b(?:\s+(?:a|per)\s+day|\s+daily)?"
    r"|\b\d+\s*times?\s*(?:(?:a|per)\s*day|daily)?\b"
    r"|\bevery\s*\d+\s*(?:hours?|hrs?|h)\b"
    r"|\b\d+\s*fois\s*par\s*jour\b",
    re.IGNORECASE,
)
DURATION_RE = re.compile(
    r"\bfor\s*(\d+\s*(?:days?|weeks?|months?))\b"
    r"|\bpendant\s*(\d+\s*(?:jours?|semaines?|mois))\b",
    re.IGNORECASE,
)

LIST_MARKER_RE = re.compile(r"^(?:[-•*]|\d+[.)])\s+")


def _clean_value(value: Optional[str]) -> str:
    if not value:
        return NOT_SPECIFIED
    cleaned = value.strip().strip(",;:").strip()
    return cleaned or NOT_SPECIFIED


def _find_dosage(line: str) -> Optional[re.Match]:
    return UNIT_DOSAGE_RE.search(line) or COUNT_DOSAGE_RE.search(line)


def is_medication_line(line: str) -> bool:
    """A line is a medication line when it carries a dosage-like token."""
    return _find_dosage(line) is not None


def _leading_capitalized_run(prefix: str) -> str:
    """Longest run of capitalized tokens at the start of ``prefix``."""
    run: List[str] = []
    for token in prefix.split():
        token = token.strip(",;:")
        if not token or not token[0].isupper():
            break
        run.append(token)
    return " ".join(run)


def parse_medication_line(line: str) -> MedicationLine:
    """Split one medication line into name, dosage, frequency and duration."""
    body = LIST_MARKER_RE.sub("", line.strip())
    dosage_match = _find_dosage(body)
    if dosage_match is None:
        return MedicationLine(raw_line=line.strip())

    name = _leading_capitalized_run(body[: dosage_match.start()])

    frequency_match = FREQUENCY_RE.search(body, dosage_match.end())
    if frequency_match is None:
        frequency_match = FREQUENCY_RE.search(body)

    duration_match = DURATION_RE.search(body)
    duration = None
    if duration_match:
        duration = duration_match.group(1) or duration_match.group(2)

    return MedicationLine(
        name=_clean_value(name),
        dosage=_clean_value(dosage_match.group(0)),
        frequency=_clean_value(frequency_match.group(0) if frequency_match else None),
        duration=_clean_value(duration),
        raw_line=line.strip(),
    )


def _split_notes(lines: List[str]) -> Tuple[List[str], Optional[str]]:
    """Separate a trailing ``Notes:`` section from the body lines."""
    for index, line in enumerate(lines):
        match = NOTES_RE.match(line)
        if match:
            tail = [match.group(1)] + lines[index + 1:]
            notes = "\n".join(part for part in tail if part).strip()
            return lines[:index], notes or None
    return lines, None


def _scan(text: str) -> StructuredExtraction:
    lines = [line.strip() for line in text.replace("\r\n", "\n").split("\n")]
    lines = [line for line in lines if line]
    body, notes = _split_notes(lines)

    patient_name: Optional[str] = None
    doctor_name: Optional[str] = None
    date: Optional[str] = None
    medications: List[MedicationLine] = []

    for line in body:
        if date is None:
            date_match = DATE_RE.search(line)
            if date_match:
                date = date_match.group(1)

        patient_match = PATIENT_RE.match(line)
        if patient_match:
            if patient_name is None:
                patient_name = patient_match.group(1)
            continue

        if is_medication_line(line):
            medications.append(parse_medication_line(line))
            continue

        if doctor_name is None:
            doctor_match = DOCTOR_RE.search(line)
            if doctor_match:
                doctor_name = doctor_match.group(1)

    return StructuredExtraction(
        patient_name=_clean_value(patient_name),
        doctor_name=_clean_value(doctor_name),
        date=_clean_value(date),
        medications=medications,
        notes=_clean_value(notes),
    )


def extract(text: Optional[str]) -> StructuredExtraction:
    """
    Parse recognized prescription text into typed fields.

    Line-oriented, first match wins for patient, doctor and date. Every line
    with a dosage token becomes a medication entry. Anything after a
    ``Notes:`` label is captured as notes.

    Args:
        text: Raw OCR output (may be empty or None)

    Returns:
        StructuredExtraction with sentinel values for anything not found
    """
    if not text or not isinstance(text, str):
        return StructuredExtraction()
    try:
        return _scan(text)
    except Exception as e:
        # Regex scanning over arbitrary OCR output must not break a job
        logger.error(f"Structured extraction failed, returning empty result: {e}", exc_info=True)
        return StructuredExtraction()
