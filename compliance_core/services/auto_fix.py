"""
Auto-fix service: deterministic, safe corrections for validation issues.

Classification looks at the issue's stable `code`, never at message text. A fix
is applied to a deep copy of the data, only when it changes something, so
running the service on its own output is a no-op. Re-validation is the
caller's job.
"""

import copy
from collections.abc import MutableMapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from compliance_core.config import IncidentConfig
from compliance_core.domain.models import (
    ValidationContext,
    ValidationIssue,
    ValidationResult,
    ValidatorType,
)
from compliance_core.services.validator_engine import validator_key
from compliance_core.validators.base import parse_timestamp, utc_now

logger = structlog.get_logger(__name__)

LENIENT_FORMATS = (
    "%m/%d/%Y %H:%M:%S",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d",
    "%Y-%m-%d %H:%M:%S %Z",
)

TIMESTAMP_CODES = frozenset({"timestamp.missing", "timestamp.invalid", "timestamp.future"})


class FixKind(str, Enum):
    SET_TIMESTAMP = "set_timestamp"
    NORMALIZE_TIMESTAMP = "normalize_timestamp"
    CLAMP_TIMESTAMP = "clamp_timestamp"
    SET_STAFF_ID = "set_staff_id"
    SET_LOCATION = "set_location"


class AutoFixOptions(BaseModel):
    apply_safe_fixes: bool = True
    require_confirmation: bool = False
    context: ValidationContext | None = None


class AppliedFix(BaseModel):
    """One change made to the fixed copy."""

    kind: FixKind
    field: str
    step: int | None = None
    old_value: Any = None
    new_value: Any = None
    issue: ValidationIssue


class SkippedFix(BaseModel):
    issue: ValidationIssue
    reason: str


class AutoFixResult(BaseModel):
    success: bool
    fixed_data: Any
    applied_fixes: list[AppliedFix] = Field(default_factory=list)
    skipped_fixes: list[SkippedFix] = Field(default_factory=list)
    unfixable_issues: list[ValidationIssue] = Field(default_factory=list)
    summary: str
    warnings: list[str] = Field(default_factory=list)


def recover_timestamp(value: Any) -> datetime | None:
    """
    Lenient timestamp parsing for malformed-but-recoverable values.

    Handles ISO 8601, epoch seconds or milliseconds, US-style dates and RFC 2822.
    Naive results are read as UTC.
    """
    parsed = parse_timestamp(value)
    if parsed is not None:
        return parsed

    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return _from_epoch(float(value))
    if not isinstance(value, str) or not value.strip():
        return None

    text = value.strip()
    try:
        return _from_epoch(float(text))
    except ValueError:
        pass

    for fmt in LENIENT_FORMATS:
        try:
            parsed = datetime.strptime(text, fmt)
        except ValueError:
            continue
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)

    try:
        parsed = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def _from_epoch(seconds: float) -> datetime | None:
    if seconds > 1e11:  # milliseconds
        seconds /= 1000.0
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return None


def to_iso(value: datetime) -> str:
    return value.astimezone(UTC).isoformat()


def _pick_key(target: MutableMapping[str, Any], snake: str, camel: str) -> str:
    """Write back under whichever spelling the caller used."""
    if camel in target and snake not in target:
        return camel
    return snake


def _present(target: MutableMapping[str, Any], key: str) -> bool:
    return target.get(key) not in (None, "")


class AutoFixService:
    """Classifies issues as fixable or not and applies the safe fixes."""

    def __init__(self, config: IncidentConfig | None = None) -> None:
        self.config = config or IncidentConfig()
        self.logger = logger.bind(component="auto_fix")

    # --- classification ---------------------------------------------------

    def can_auto_fix(
        self, issue: ValidationIssue, context: ValidationContext | None = None
    ) -> bool:
        """Whether a deterministic, safe correction exists for this issue on its own."""
        code = issue.code
        if code == "timestamp.missing" or code == "timestamp.future":
            return True
        if code == "timestamp.invalid":
            raw = (issue.metadata or {}).get("value")
            return recover_timestamp(raw) is not None
        if code == "staff_id.missing":
            return bool(context and context.user_id)
        if code == "location.missing":
            return not issue.blocking and bool(context and context.client_id)
        return False

    def _partition(
        self, result: ValidationResult, context: ValidationContext | None
    ) -> tuple[list[ValidationIssue], list[ValidationIssue]]:
        fixable: list[ValidationIssue] = []
        unfixable: list[ValidationIssue] = []
        for issue in result.issues:
            (fixable if self.can_auto_fix(issue, context) else unfixable).append(issue)

        # A field that also carries an unfixable issue is left alone entirely.
        locked_fields = {(issue.field, issue.step) for issue in unfixable}
        for issue in list(fixable):
            if (issue.field, issue.step) in locked_fields:
                fixable.remove(issue)
                unfixable.append(issue)
        return fixable, unfixable

    def get_fixable_issues(
        self, result: ValidationResult, context: ValidationContext | None = None
    ) -> list[ValidationIssue]:
        return self._partition(result, context)[0]

    def get_unfixable_issues(
        self, result: ValidationResult, context: ValidationContext | None = None
    ) -> list[ValidationIssue]:
        return self._partition(result, context)[1]

    # --- application ------------------------------------------------------

    def auto_fix(
        self,
        data: Any,
        result: ValidationResult,
        options: AutoFixOptions | None = None,
        *,
        now: datetime | None = None,
    ) -> AutoFixResult:
        options = options or AutoFixOptions()
        context = options.context
        now = now or utc_now()
        fixed_data = copy.deepcopy(data)

        fixable, unfixable = self._partition(result, context)
        applied: list[AppliedFix] = []
        skipped: list[SkippedFix] = []
        warnings: list[str] = []

        if not options.apply_safe_fixes or options.require_confirmation:
            reason = (
                "confirmation required" if options.require_confirmation else "safe fixes disabled"
            )
            skipped = [SkippedFix(issue=issue, reason=reason) for issue in fixable]
        else:
            for issue in fixable:
                target = self._target_for(fixed_data, issue, result.validator_type)
                if target is None:
                    skipped.append(SkippedFix(issue=issue, reason="field not found in data"))
                    continue
                fix = self._apply(target, issue, context, now)
                if fix is None:
                    continue  # already in the fixed state
                applied.append(fix)
                note = self._warning_for(fix.kind)
                if note and note not in warnings:
                    warnings.append(note)

        success = bool(applied)
        if success:
            summary = (
                f"Auto-fixed {len(applied)} issue(s). "
                f"{len(unfixable)} issue(s) require manual attention."
            )
        elif skipped:
            summary = f"{len(skipped)} fix(es) proposed but not applied."
        else:
            summary = (
                f"Could not auto-fix any issues. "
                f"All {len(unfixable)} issue(s) require manual attention."
            )

        self.logger.info(
            "auto_fix_completed",
            validator_type=validator_key(result.validator_type),
            applied=len(applied),
            skipped=len(skipped),
            unfixable=len(unfixable),
        )
        return AutoFixResult(
            success=success,
            fixed_data=fixed_data,
            applied_fixes=applied,
            skipped_fixes=skipped,
            unfixable_issues=unfixable,
            summary=summary,
            warnings=warnings,
        )

    def _target_for(
        self, data: Any, issue: ValidationIssue, validator_type: ValidatorType | str
    ) -> MutableMapping[str, Any] | None:
        """The mapping that holds the issue's field inside the copied payload."""
        if not isinstance(data, MutableMapping):
            return None

        if validator_type == ValidatorType.SOP:
            entries = data.get("completed_steps", data.get("completedSteps"))
            if not isinstance(entries, list) or issue.step is None:
                return None
            for entry in entries:
                if isinstance(entry, MutableMapping) and entry.get("step") == issue.step:
                    return entry
            return None

        if validator_type == ValidatorType.COMPLIANCE:
            record = data.get("record")
            return record if isinstance(record, MutableMapping) else None

        return data

    def _apply(
        self,
        target: MutableMapping[str, Any],
        issue: ValidationIssue,
        context: ValidationContext | None,
        now: datetime,
    ) -> AppliedFix | None:
        if issue.code in TIMESTAMP_CODES:
            return self._fix_timestamp(target, issue, now)

        if issue.code == "staff_id.missing" and context and context.user_id:
            key = _pick_key(target, "staff_id", "staffId")
            if _present(target, key):
                return None
            old = target.get(key)
            target[key] = context.user_id
            return AppliedFix(
                kind=FixKind.SET_STAFF_ID,
                field=key,
                old_value=old,
                new_value=context.user_id,
                issue=issue,
            )

        if issue.code == "location.missing":
            if _present(target, "location"):
                return None
            old = target.get("location")
            target["location"] = self.config.default_location
            return AppliedFix(
                kind=FixKind.SET_LOCATION,
                field="location",
                old_value=old,
                new_value=self.config.default_location,
                issue=issue,
            )

        return None

    def _timestamp_key(self, target: MutableMapping[str, Any], issue: ValidationIssue) -> str:
        if issue.step is not None:
            return _pick_key(target, "completed_at", "completedAt")
        if _present(target, "timestamp"):
            return "timestamp"
        for key in ("created_at", "createdAt"):
            if _present(target, key):
                return key
        return "timestamp"

    def _fix_timestamp(
        self, target: MutableMapping[str, Any], issue: ValidationIssue, now: datetime
    ) -> AppliedFix | None:
        key = self._timestamp_key(target, issue)
        current = target.get(key)

        if issue.code == "timestamp.missing":
            if current not in (None, ""):
                return None
            kind, new = FixKind.SET_TIMESTAMP, to_iso(now)
        elif issue.code == "timestamp.invalid":
            if parse_timestamp(current) is not None:
                return None
            recovered = recover_timestamp(current)
            if recovered is None:
                return None
            kind, new = FixKind.NORMALIZE_TIMESTAMP, to_iso(recovered)
        else:
            parsed = parse_timestamp(current)
            if parsed is None or parsed <= now:
                return None
            kind, new = FixKind.CLAMP_TIMESTAMP, to_iso(now)

        target[key] = new
        return AppliedFix(
            kind=kind, field=key, step=issue.step, old_value=current, new_value=new, issue=issue
        )

    @staticmethod
    def _warning_for(kind: FixKind) -> str | None:
        return {
            FixKind.SET_TIMESTAMP: "Set timestamp to current time. Verify this is correct.",
            FixKind.NORMALIZE_TIMESTAMP: "Normalized timestamp format to ISO 8601.",
            FixKind.CLAMP_TIMESTAMP: (
                "Changed future timestamp to current time. Verify this is correct."
            ),
            FixKind.SET_LOCATION: "Set generic location. Please update with specific location.",
        }.get(kind)
