"""
Shared validator contract and typed input shapes.

Every validator is a pure function of `(data, context, now)`. Loosely typed
payloads are parsed into the models below at the boundary, so the checks
themselves work on typed fields and never on raw dictionaries.
"""

from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from compliance_core.domain.models import (
    ValidationContext,
    ValidationResult,
    ValidatorType,
    create_issue,
    create_result,
)


@runtime_checkable
class Validator(Protocol):
    """Anything the engine can route a validation request to."""

    validator_type: ValidatorType | str
    name: str

    def validate(
        self,
        data: Any,
        context: ValidationContext | None = None,
        *,
        now: datetime | None = None,
    ) -> ValidationResult: ...


def utc_now() -> datetime:
    return datetime.now(UTC)


def parse_timestamp(value: Any) -> datetime | None:
    """
    Strict timestamp parsing used by validators.

    Accepts datetimes and ISO 8601 strings. Naive values are read as UTC.
    Returns None for anything else; lenient recovery is the auto-fix service's job.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def timestamp_drift(
    timestamp: datetime, now: datetime, max_age_days: int
) -> Literal["future", "stale"] | None:
    """Classify a parsed timestamp against `now`. Future and stale are exclusive."""
    if timestamp > now:
        return "future"
    if timestamp < now - timedelta(days=max_age_days):
        return "stale"
    return None


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def structural_error(
    validator_type: ValidatorType | str,
    message: str,
    *,
    field: str = "data",
    rule_ref: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ValidationResult:
    """Single blocking error, no warnings. Used when input cannot be checked field by field."""
    issue = create_issue(
        field, message, rule_ref=rule_ref, code="structure.invalid", metadata=metadata
    )
    return create_result(validator_type, [issue], [], "Invalid input data")


def describe_parse_errors(exc: ValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": ".".join(str(part) for part in error["loc"]), "msg": error["msg"]}
        for error in exc.errors()
    ]


# --- SOP shapes ---------------------------------------------------------------


class SOPStep(BaseModel):
    """A declared step of a standard operating procedure."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", alias_generator=to_camel)

    step: int | None = None
    action: str | None = None
    details: str | None = None
    description: str | None = None
    required: bool | None = None
    min_notes_length: int | None = Field(default=None, ge=0)

    @property
    def is_required(self) -> bool:
        return self.required is not False

    @property
    def declared_action(self) -> str | None:
        for text in (self.action, self.details, self.description):
            if text and text.strip():
                return text.strip()
        return None


class CompletedStep(BaseModel):
    """A step a staff member marked as done."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", alias_generator=to_camel)

    step: int
    action: str | None = None
    completed_at: str | datetime | None = None
    notes: str | None = None
    staff_id: str | None = None


class SOPSubmission(BaseModel):
    """Declared steps of an SOP plus the entries completed against it."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    steps: list[SOPStep]
    completed_steps: list[CompletedStep]

    def step_number(self, position: int) -> int:
        """Declared step number, or the 1-based position when none is declared."""
        declared = self.steps[position].step
        return declared if declared is not None else position + 1

    def completed_by_number(self) -> dict[int, CompletedStep]:
        # First entry wins when a step was completed twice.
        completed: dict[int, CompletedStep] = {}
        for entry in self.completed_steps:
            completed.setdefault(entry.step, entry)
        return completed


def sop_structure_problem(data: Any) -> str | None:
    """Return a message when `data` lacks the list-valued `steps`/`completed_steps`."""
    if not isinstance(data, Mapping):
        return "Invalid data structure: expected object with steps and completed_steps"
    if not isinstance(data.get("steps"), list):
        return "Invalid data structure: 'steps' must be a list"
    completed = data.get("completed_steps", data.get("completedSteps"))
    if not isinstance(completed, list):
        return "Invalid data structure: 'completed_steps' must be a list"
    return None


# --- Record shapes ------------------------------------------------------------


class RecordData(BaseModel):
    """A generic documentation record (service note, incident note, ...)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", alias_generator=to_camel)

    staff_id: Any = None
    client_id: str | None = None
    alert_id: str | None = None
    timestamp: Any = None
    created_at: Any = None
    location: Any = None
    service_description: str | None = None
    description: str | None = None
    notes: str | None = None
    record_type: str | None = None
    metadata: dict[str, Any] | None = None

    @property
    def effective_description(self) -> str | None:
        for text in (self.service_description, self.description, self.notes):
            if text:
                return text
        return None

    @property
    def effective_timestamp(self) -> Any:
        return self.timestamp if self.timestamp not in (None, "") else self.created_at

    @property
    def timestamp_field(self) -> str:
        return "timestamp" if self.timestamp not in (None, "") else "created_at"

    @property
    def has_location(self) -> bool:
        return self.location not in (None, "")


def resolve_staff_id(record: RecordData, context: ValidationContext | None) -> Any:
    if record.staff_id not in (None, ""):
        return record.staff_id
    return context.user_id if context else None
