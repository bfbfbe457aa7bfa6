"""Queue job payloads.

Each stage has its own payload model, joined in a tagged union on
``job_type``. Messages are validated when they are enqueued and again when
they are dequeued, so a malformed message never reaches a handler.
"""

import uuid
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, model_validator

from ...core.exceptions import InvalidJobPayloadError
from ...domain.entities.extraction import ExtractionResult
from ...domain.enums.prescription import PipelineStage


class ExtractionJob(BaseModel):
    """Run OCR over a stored prescription image."""

    model_config = ConfigDict(extra="forbid")

    job_type: Literal["extraction"] = "extraction"
    prescription_id: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    image_path: str = Field(..., min_length=1)
    languages: List[str] = Field(default_factory=lambda: ["eng"])


class AnalysisJob(BaseModel):
    """Ask the language model to review an extraction result."""

    model_config = ConfigDict(extra="forbid")

    job_type: Literal["analysis"] = "analysis"
    prescription_id: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    extraction_result: Dict[str, Any]

    @classmethod
    def from_result(cls, prescription_id: str, owner_id: str, result: ExtractionResult) -> "AnalysisJob":
        return cls(
            prescription_id=prescription_id,
            owner_id=owner_id,
            extraction_result=result.to_dict(),
        )

    def extraction(self) -> ExtractionResult:
        return ExtractionResult.from_dict(self.extraction_result)


class NotificationJob(BaseModel):
    """Tell the downstream collaborator about a status change."""

    model_config = ConfigDict(extra="forbid")

    job_type: Literal["notification"] = "notification"
    prescription_id: str = Field(..., min_length=1)
    owner_id: str = Field(..., min_length=1)
    status: str
    reason: Optional[str] = None


JobPayload = Annotated[
    Union[ExtractionJob, AnalysisJob, NotificationJob],
    Field(discriminator="job_type"),
]

_payload_adapter: TypeAdapter = TypeAdapter(JobPayload)


class JobOptions(BaseModel):
    """Per-enqueue options. Higher ``priority`` values are served first (0 = normal)."""

    priority: int = Field(default=0, ge=0, le=10)
    delay_seconds: float = Field(default=0.0, ge=0.0)
    max_attempts: Optional[int] = Field(default=None, ge=1)


class JobEnvelope(BaseModel):
    """What actually travels through a queue: the payload plus retry bookkeeping."""

    job_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    stage: PipelineStage
    attempts: int = Field(default=0, ge=0)  # failed attempts so far
    max_attempts: int = Field(default=3, ge=1)
    priority: int = 0
    backoff_base_seconds: float = Field(default=5.0, ge=0.0)
    enqueued_at: datetime = Field(default_factory=datetime.utcnow)
    last_error: Optional[str] = None
    payload: JobPayload

    @model_validator(mode="after")
    def payload_matches_stage(self) -> "JobEnvelope":
        if self.payload.job_type != self.stage.value:
            raise ValueError(
                f"Payload job_type '{self.payload.job_type}' does not match stage '{self.stage.value}'"
            )
        return self

    @property
    def attempt(self) -> int:
        """1-based number of the attempt currently being made."""
        return self.attempts + 1

    @property
    def prescription_id(self) -> str:
        return self.payload.prescription_id

    def is_last_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    def retry_delay(self) -> float:
        """Backoff before the next attempt: ``base * 2^(attempt-1)``."""
        return self.backoff_base_seconds * (2 ** (self.attempt - 1))

    def for_retry(self, error: str) -> "JobEnvelope":
        """Copy for re-enqueue after the current attempt failed."""
        return self.model_copy(
            update={
                "attempts": self.attempt,
                "last_error": error,
                "enqueued_at": datetime.utcnow(),
            }
        )

    def to_message(self) -> str:
        return self.model_dump_json()

    @classmethod
    def from_message(cls, content: str) -> "JobEnvelope":
        try:
            return cls.model_validate_json(content)
        except ValidationError as e:
            raise InvalidJobPayloadError(
                "Queue message does not match any job schema",
                {"errors": e.errors(include_url=False)[:5]},
            ) from e


def validate_payload(data: Any) -> Union[ExtractionJob, AnalysisJob, NotificationJob]:
    """Validate a raw dict (or model) against the payload union."""
    if isinstance(data, BaseModel):
        data = data.model_dump()
    try:
        return _payload_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidJobPayloadError(
            "Job payload failed validation",
            {"errors": e.errors(include_url=False)[:5]},
        ) from e
