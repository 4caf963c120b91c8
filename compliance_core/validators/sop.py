"""
SOP response validator.

Checks a staff member's completed steps against the SOP's declared steps:
- every required step has a completed entry with the same step number
- every completed entry has an action and a parseable completion time
- completion times are neither in the future nor older than a year
- notes meet the step's documentation expectations
"""

from datetime import datetime
from typing import Any

import structlog
from pydantic import ValidationError

from adapters.oac import rules as oac
from compliance_core.config import ValidationConfig
from compliance_core.domain.models import (
    ValidationContext,
    ValidationIssue,
    ValidationResult,
    ValidatorType,
    create_issue,
    create_result,
    create_warning,
)
from compliance_core.validators.base import (
    SOPSubmission,
    describe_parse_errors,
    is_blank,
    parse_timestamp,
    sop_structure_problem,
    structural_error,
    timestamp_drift,
    utc_now,
)

logger = structlog.get_logger(__name__)


class SOPValidator:
    """Validates `{steps, completed_steps}` payloads."""

    validator_type = ValidatorType.SOP
    name = "SOP Response Validator"

    def __init__(self, config: ValidationConfig | None = None) -> None:
        self.config = config or ValidationConfig()
        self.logger = logger.bind(component="sop_validator")

    def validate(
        self,
        data: Any,
        context: ValidationContext | None = None,
        *,
        now: datetime | None = None,
    ) -> ValidationResult:
        problem = sop_structure_problem(data)
        if problem:
            return structural_error(self.validator_type, problem, rule_ref=oac.DOCUMENTATION)

        try:
            submission = SOPSubmission.model_validate(data)
        except ValidationError as exc:
            self.logger.debug("sop_payload_rejected", error_count=exc.error_count())
            return structural_error(
                self.validator_type,
                "Invalid step entries: steps or completed steps could not be read",
                rule_ref=oac.DOCUMENTATION,
                metadata={"errors": describe_parse_errors(exc)},
            )

        now = now or utc_now()
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        self._check_completeness(submission, errors, warnings)
        self._check_required_fields(submission, errors)
        self._check_timestamps(submission, now, errors, warnings)

        blocking = sum(1 for issue in errors if issue.blocking)
        if not errors and not warnings:
            summary = "SOP response validation passed"
        elif blocking == 0:
            summary = f"SOP response has {len(warnings)} warning(s) but can be submitted"
        else:
            summary = f"SOP response has {blocking} blocking error(s) and cannot be submitted"

        return create_result(
            self.validator_type,
            errors,
            warnings,
            summary,
            metadata={
                "total_steps": len(submission.steps),
                "completed_steps": len(submission.completed_steps),
            },
        )

    def _check_completeness(
        self,
        submission: SOPSubmission,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> None:
        completed = submission.completed_by_number()

        for position, step in enumerate(submission.steps):
            number = submission.step_number(position)
            entry = completed.get(number)

            if entry is None:
                if step.is_required:
                    errors.append(
                        create_issue(
                            "completion",
                            f"Step {number} is required but not completed",
                            rule_ref=oac.DOCUMENTATION,
                            suggestion=step.declared_action,
                            step=number,
                            code="step.missing",
                        )
                    )
                continue

            notes = (entry.notes or "").strip()
            if step.min_notes_length and len(notes) < step.min_notes_length:
                warnings.append(
                    create_warning(
                        "notes",
                        f"Step {number} notes should be at least "
                        f"{step.min_notes_length} characters",
                        rule_ref=oac.DESCRIPTION_COMPLETENESS,
                        step=number,
                        code="notes.too_short",
                    )
                )
            if step.required is True and not notes:
                warnings.append(
                    create_warning(
                        "notes",
                        f"Step {number} notes are recommended but empty",
                        rule_ref=oac.DESCRIPTION_COMPLETENESS,
                        step=number,
                        code="notes.missing",
                    )
                )

    def _check_required_fields(
        self, submission: SOPSubmission, errors: list[ValidationIssue]
    ) -> None:
        for entry in submission.completed_steps:
            if is_blank(entry.action):
                errors.append(
                    create_issue(
                        "action",
                        f"Step {entry.step} action is required",
                        rule_ref=oac.DOCUMENTATION,
                        step=entry.step,
                        code="action.missing",
                    )
                )
            if entry.completed_at is None or entry.completed_at == "":
                errors.append(
                    create_issue(
                        "completed_at",
                        f"Step {entry.step} completion timestamp is required",
                        rule_ref=oac.DOCUMENTATION,
                        suggestion="Record when the step was completed",
                        step=entry.step,
                        code="timestamp.missing",
                    )
                )

    def _check_timestamps(
        self,
        submission: SOPSubmission,
        now: datetime,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> None:
        for entry in submission.completed_steps:
            raw = entry.completed_at
            if raw is None or raw == "":
                continue  # reported as a missing required field

            timestamp = parse_timestamp(raw)
            if timestamp is None:
                errors.append(
                    create_issue(
                        "completed_at",
                        f"Step {entry.step} has an invalid timestamp",
                        rule_ref=oac.TIMESTAMP,
                        suggestion="Use an ISO 8601 timestamp",
                        step=entry.step,
                        code="timestamp.invalid",
                        metadata={"value": raw},
                    )
                )
                continue

            drift = timestamp_drift(timestamp, now, self.config.max_timestamp_age_days)
            if drift == "future":
                warnings.append(
                    create_warning(
                        "completed_at",
                        f"Step {entry.step} timestamp is in the future",
                        rule_ref=oac.TIMELINE_ACCURACY,
                        suggestion="Verify the timestamp is correct",
                        step=entry.step,
                        code="timestamp.future",
                        metadata={"value": timestamp.isoformat()},
                    )
                )
            elif drift == "stale":
                warnings.append(
                    create_warning(
                        "completed_at",
                        f"Step {entry.step} timestamp is more than "
                        f"{self.config.max_timestamp_age_days} days old",
                        rule_ref=oac.TIMELINE_ACCURACY,
                        suggestion="Verify the timestamp is correct",
                        step=entry.step,
                        code="timestamp.stale",
                        metadata={"value": timestamp.isoformat()},
                    )
                )
