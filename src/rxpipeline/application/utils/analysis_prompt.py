"""
Prompt construction and response normalization for prescription analysis.

The model's JSON is never trusted: every medication entry is backfilled so the
persisted result always has the full shape, and both camelCase and snake_case
keys are accepted.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from rxpipeline.core.exceptions import AnalysisResponseError
from rxpipeline.domain.entities.analysis import UNKNOWN, AnalysisResult, MedicationAnalysis
from rxpipeline.domain.entities.extraction import NOT_SPECIFIED, ExtractionResult

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a highly trained pharmaceutical assistant specializing in prescription analysis. "
    "Analyze the prescription data and provide detailed, structured information "
    "about medications, potential interactions, side effects, and recommendations. "
    "Format your response as valid JSON."
)

RESPONSE_SCHEMA = """{
  "medications": [
    {
      "name": "medication name",
      "dosage": "dosage information",
      "frequency": "how often to take",
      "duration": "how long to take",
      "potentialInteractions": ["list of potential interactions"],
      "sideEffects": ["common side effects"],
      "contraindications": ["situations where this medication should not be used"],
      "alternatives": ["potential alternative medications"]
    }
  ],
  "notes": "general notes about the prescription",
  "warnings": ["important warnings about the medications or combinations"],
  "recommendedTests": ["any tests that might be recommended while on these medications"]
}"""

_LIST_FIELDS = {
    "potential_interactions": ("potential_interactions", "potentialInteractions", "interactions"),
    "side_effects": ("side_effects", "sideEffects"),
    "contraindications": ("contraindications",),
    "alternatives": ("alternatives",),
}
_TEXT_FIELDS = ("dosage", "frequency", "duration")

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


def _display(value: str) -> str:
    return "Unknown" if not value or value == NOT_SPECIFIED else value


def build_analysis_prompt(extraction: ExtractionResult) -> str:
    """Build the user prompt from extraction output."""
    structured = extraction.structured
    prompt = "Analyze the following prescription information:\n\n"
    prompt += f"Patient: {_display(structured.patient_name)}\n"
    prompt += f"Doctor: {_display(structured.doctor_name)}\n"
    prompt += f"Date: {_display(structured.date)}\n\n"

    if structured.medications:
        prompt += "Medications detected:\n"
        for i, med in enumerate(structured.medications, start=1):
            parts = [_display(med.name)] + [
                value for value in (med.dosage, med.frequency, med.duration) if value != NOT_SPECIFIED
            ]
            prompt += f"{i}. {' '.join(parts)}\n"
        prompt += "\n"

    if structured.notes != NOT_SPECIFIED:
        prompt += f"Notes: {structured.notes}\n\n"

    if extraction.low_confidence:
        prompt += (
            f"Note: the text was recognized with low OCR confidence "
            f"({extraction.confidence:.0f}/100); some words may be misread.\n\n"
        )

    prompt += f"Full prescription text:\n{extraction.text}\n\n"
    prompt += "Please provide a detailed analysis in JSON format with the following structure:\n"
    prompt += RESPONSE_SCHEMA
    return prompt


def build_analysis_messages(extraction: ExtractionResult) -> List[Dict[str, str]]:
    """System + user chat messages for the analysis call."""
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_analysis_prompt(extraction)},
    ]


def _pick(data: Dict[str, Any], keys) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _as_text(value: Any, default: str) -> str:
    if value is None:
        return default
    if isinstance(value, (list, tuple)):
        value = ", ".join(str(v) for v in value if v is not None)
    text = str(value).strip()
    return text or default


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    return [str(value)]


def normalize_medication(raw: Any) -> MedicationAnalysis:
    """Backfill one medication entry with explicit defaults."""
    if isinstance(raw, str):
        raw = {"name": raw}
    if not isinstance(raw, dict):
        raw = {}

    kwargs: Dict[str, Any] = {"name": _as_text(_pick(raw, ("name", "medication", "drug")), UNKNOWN)}
    for text_field in _TEXT_FIELDS:
        kwargs[text_field] = _as_text(raw.get(text_field), NOT_SPECIFIED)
    for list_field, aliases in _LIST_FIELDS.items():
        kwargs[list_field] = _as_list(_pick(raw, aliases))
    return MedicationAnalysis(**kwargs)


def parse_json_object(content: Optional[str]) -> Dict[str, Any]:
    """Decode the model output, tolerating a ```json fence around it."""
    if content is None or not content.strip():
        raise AnalysisResponseError("Language model returned an empty response")

    text = content.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise AnalysisResponseError(
            f"Language model response is not valid JSON: {e.msg}",
            {"position": e.pos, "length": len(text)},
        ) from e

    if not isinstance(data, dict):
        raise AnalysisResponseError(
            "Language model response is not a JSON object",
            {"type": type(data).__name__},
        )
    return data


def parse_analysis_response(content: Optional[str], model: Optional[str] = None) -> AnalysisResult:
    """Parse and normalize the model output into a fully populated AnalysisResult."""
    data = parse_json_object(content)

    medications_raw = data.get("medications")
    if medications_raw is None:
        medications_raw = []
    elif not isinstance(medications_raw, list):
        logger.warning(f"Analysis 'medications' is {type(medications_raw).__name__}, expected list")
        medications_raw = [medications_raw]

    return AnalysisResult(
        medications=[normalize_medication(m) for m in medications_raw],
        notes=_as_text(data.get("notes"), ""),
        warnings=_as_list(data.get("warnings")),
        recommended_tests=_as_list(_pick(data, ("recommended_tests", "recommendedTests"))),
        model=model,
    )
