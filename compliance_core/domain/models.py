"""
Domain models for compliance validation.

These models are the shared vocabulary of every validator: an issue, a result,
and the combined result the engine produces when several validators run
together. They use Pydantic for validation and carry their own invariants, so a
result can never claim to be submittable while holding a blocking error.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


class ValidatorType(str, Enum):
    """Validator kinds the engine can route to."""

    RECORD = "record"
    SOP = "sop"
    COMPLIANCE = "compliance"


class IssueSeverity(str, Enum):
    """Severity of a single validation issue."""

    ERROR = "error"
    WARNING = "warning"


class ValidationIssue(BaseModel):
    """
    A single problem found by a validator.

    `blocking` defaults to True for errors and False for warnings. A validator may
    downgrade an error to non-blocking, but a warning can never block.
    """

    model_config = ConfigDict(frozen=True)

    field: str
    message: str
    severity: IssueSeverity = IssueSeverity.ERROR
    blocking: bool = True
    rule_ref: str | None = None
    suggestion: str | None = None
    step: int | None = None
    code: str | None = Field(
        default=None, description="Stable machine-readable check id, e.g. 'timestamp.future'"
    )
    metadata: dict[str, Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def default_blocking_from_severity(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("blocking") is None:
            severity = data.get("severity", IssueSeverity.ERROR)
            data = {**data, "blocking": IssueSeverity(severity) == IssueSeverity.ERROR}
        return data

    @model_validator(mode="after")
    def warnings_never_block(self) -> "ValidationIssue":
        if self.severity == IssueSeverity.WARNING and self.blocking:
            raise ValueError("warnings cannot be blocking")
        return self


def create_issue(
    field: str,
    message: str,
    *,
    severity: IssueSeverity = IssueSeverity.ERROR,
    blocking: bool | None = None,
    rule_ref: str | None = None,
    suggestion: str | None = None,
    step: int | None = None,
    code: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ValidationIssue:
    """Build an issue, deriving `blocking` from severity unless given explicitly."""
    return ValidationIssue(
        field=field,
        message=message,
        severity=severity,
        blocking=blocking,  # type: ignore[arg-type]
        rule_ref=rule_ref,
        suggestion=suggestion,
        step=step,
        code=code,
        metadata=metadata,
    )


def create_warning(field: str, message: str, **kwargs: Any) -> ValidationIssue:
    return create_issue(field, message, severity=IssueSeverity.WARNING, blocking=False, **kwargs)


class ValidationContext(BaseModel):
    """Caller identity and linkage supplied alongside the data being validated."""

    user_id: str | None = None
    role: str | None = None
    client_id: str | None = None
    alert_id: str | None = None
    sop_response_id: str | None = None
    additional_data: dict[str, Any] = Field(default_factory=dict)


class ValidationResult(BaseModel):
    """Outcome of one validator run."""

    validator_type: ValidatorType | str = Field(union_mode="left_to_right")
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
    summary: str = ""
    metadata: dict[str, Any] | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_valid(self) -> bool:
        """No errors and no warnings at all."""
        return not self.errors and not self.warnings

    @computed_field  # type: ignore[prop-decorator]
    @property
    def can_submit(self) -> bool:
        """No blocking error. Data can be submittable yet imperfect."""
        return not any(issue.blocking for issue in self.errors)

    @property
    def blocking_errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.errors if issue.blocking]

    @property
    def issues(self) -> list[ValidationIssue]:
        return [*self.errors, *self.warnings]

    @model_validator(mode="after")
    def default_summary(self) -> "ValidationResult":
        if not self.summary:
            self.summary = (
                "Validation passed"
                if self.is_valid
                else f"Found {len(self.errors)} error(s) and {len(self.warnings)} warning(s)"
            )
        return self


def create_result(
    validator_type: ValidatorType | str,
    errors: list[ValidationIssue] | None = None,
    warnings: list[ValidationIssue] | None = None,
    summary: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ValidationResult:
    return ValidationResult(
        validator_type=validator_type,
        errors=errors or [],
        warnings=warnings or [],
        summary=summary or "",
        metadata=metadata,
    )


class ValidationRequest(BaseModel):
    """One entry of a multi-validator run."""

    validator_type: ValidatorType | str = Field(union_mode="left_to_right")
    data: Any = None
    context: ValidationContext | None = None


class CombinedValidationResult(BaseModel):
    """Aggregate of several validator results, in request order."""

    results: list[ValidationResult]
    all_errors: list[ValidationIssue]
    all_warnings: list[ValidationIssue]
    summary: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_valid(self) -> bool:
        return not self.all_errors and not self.all_warnings

    @computed_field  # type: ignore[prop-decorator]
    @property
    def can_submit(self) -> bool:
        return all(result.can_submit for result in self.results)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def blocking_error_count(self) -> int:
        return sum(1 for issue in self.all_errors if issue.blocking)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def warning_count(self) -> int:
        return len(self.all_warnings)
