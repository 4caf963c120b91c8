"""
OAC 5123 compliance validator.

Each check is driven by an entry of the rule catalogue in `adapters.oac.rules`:
the rule decides whether a violation blocks and which severity it carries, so
changing a rule's classification never requires touching the checks.
"""

from collections.abc import Mapping
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from adapters.oac import rules as oac
from compliance_core.config import ValidationConfig
from compliance_core.domain.models import (
    ValidationContext,
    ValidationIssue,
    ValidationResult,
    ValidatorType,
    create_issue,
    create_result,
)
from compliance_core.validators.base import (
    RecordData,
    SOPSubmission,
    describe_parse_errors,
    parse_timestamp,
    resolve_staff_id,
    sop_structure_problem,
    structural_error,
    timestamp_drift,
    utc_now,
)

logger = structlog.get_logger(__name__)


class ComplianceFlags(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    is_incident: bool = False
    requires_location: bool = False


class ComplianceData(BaseModel):
    """A record, an optional SOP response and the facility context they were filed in."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    record: RecordData | None = None
    sop_response: SOPSubmission | None = None
    record_type: str = "service"
    context: ComplianceFlags = Field(default_factory=ComplianceFlags)


def rule_issue(
    reference: str,
    field: str,
    message: str,
    *,
    suggestion: str | None = None,
    code: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> ValidationIssue:
    """Build an issue whose blocking flag and severity come from the cited rule."""
    rule = oac.OAC_RULES[reference]
    return create_issue(
        field,
        f"{message} ({rule.reference})",
        severity=rule.severity,
        blocking=rule.blocking,
        rule_ref=rule.reference,
        suggestion=suggestion,
        code=code,
        metadata=metadata,
    )


class ComplianceValidator:
    validator_type = ValidatorType.COMPLIANCE
    name = "OAC 5123 Compliance Validator"

    def __init__(self, config: ValidationConfig | None = None) -> None:
        self.config = config or ValidationConfig()
        self.logger = logger.bind(component="compliance_validator")

    def validate(
        self,
        data: Any,
        context: ValidationContext | None = None,
        *,
        now: datetime | None = None,
    ) -> ValidationResult:
        if not isinstance(data, Mapping):
            return structural_error(
                self.validator_type,
                "Invalid data structure: expected compliance data object",
                rule_ref=oac.DOCUMENTATION,
            )

        sop_payload = data.get("sop_response", data.get("sopResponse"))
        if sop_payload is not None:
            problem = sop_structure_problem(sop_payload)
            if problem:
                return structural_error(
                    self.validator_type, problem, field="sop_response", rule_ref=oac.DOCUMENTATION
                )

        try:
            compliance = ComplianceData.model_validate(data)
        except ValidationError as exc:
            self.logger.debug("compliance_payload_rejected", error_count=exc.error_count())
            return structural_error(
                self.validator_type,
                "Invalid compliance data: one or more fields have the wrong type",
                rule_ref=oac.DOCUMENTATION,
                metadata={"errors": describe_parse_errors(exc)},
            )

        now = now or utc_now()
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []
        record_type = compliance.record_type or "service"

        record = compliance.record
        if record is not None:
            location_expected = (
                record_type in {"incident", "service"} or compliance.context.requires_location
            )
            self._check_documentation(record, location_expected, context, errors, warnings)
            self._check_timestamp(record, now, errors, warnings)
            self._check_staff_qualification(record, context, errors)
            self._check_service_description(record, errors, warnings)
            if compliance.context.is_incident or record_type == "incident":
                self._check_incident_reporting(record, errors)

        if compliance.sop_response is not None:
            self._check_sop(compliance.sop_response, errors, warnings)

        blocking = sum(1 for issue in errors if issue.blocking)
        if not errors and not warnings:
            summary = "Compliance validation passed - all OAC 5123 requirements met"
        elif blocking == 0:
            summary = (
                f"Compliance validation passed with {len(warnings)} warning(s). "
                "Submission allowed."
            )
        else:
            summary = (
                f"Compliance validation failed with {blocking} blocking violation(s). "
                "Submission blocked."
            )

        return create_result(
            self.validator_type,
            errors,
            warnings,
            summary,
            metadata={"record_type": record_type},
        )

    def _check_documentation(
        self,
        record: RecordData,
        location_expected: bool,
        context: ValidationContext | None,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> None:
        staff_id = resolve_staff_id(record, context)
        if staff_id is None or staff_id == "":
            errors.append(
                rule_issue(
                    oac.DOCUMENTATION,
                    "staff_id",
                    "Staff ID is required for compliance",
                    suggestion="Ensure staff ID is provided in the record",
                    code="staff_id.missing",
                )
            )

        timestamp = record.effective_timestamp
        if timestamp is None or timestamp == "":
            errors.append(
                rule_issue(
                    oac.DOCUMENTATION,
                    "timestamp",
                    "Timestamp is required for compliance",
                    suggestion="Provide timestamp or created_at field",
                    code="timestamp.missing",
                )
            )

        if not (record.effective_description or "").strip():
            errors.append(
                rule_issue(
                    oac.DOCUMENTATION,
                    "service_description",
                    "Service description is required for compliance",
                    suggestion="Provide a description of the service provided",
                    code="description.missing",
                )
            )

        if not record.has_location and location_expected:
            warnings.append(
                rule_issue(
                    oac.LOCATION,
                    "location",
                    "Location is recommended for compliance",
                    suggestion="Provide the location where the service or incident took place",
                    code="location.missing",
                )
            )

    def _check_timestamp(
        self,
        record: RecordData,
        now: datetime,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> None:
        raw = record.effective_timestamp
        if raw is None or raw == "":
            return

        timestamp = parse_timestamp(raw)
        if timestamp is None:
            errors.append(
                rule_issue(
                    oac.TIMESTAMP,
                    record.timestamp_field,
                    "Invalid timestamp format violates compliance",
                    suggestion="Ensure timestamp is in ISO 8601 format",
                    code="timestamp.invalid",
                    metadata={"value": raw},
                )
            )
            return

        drift = timestamp_drift(timestamp, now, self.config.max_timestamp_age_days)
        if drift == "future":
            warnings.append(
                rule_issue(
                    oac.TIMELINE_ACCURACY,
                    record.timestamp_field,
                    "Future timestamp should be verified for compliance",
                    suggestion="Verify the timestamp is correct",
                    code="timestamp.future",
                    metadata={"value": timestamp.isoformat()},
                )
            )
        elif drift == "stale":
            warnings.append(
                rule_issue(
                    oac.TIMELINE_ACCURACY,
                    record.timestamp_field,
                    "Timestamp more than 1 year old should be verified for compliance",
                    suggestion="Verify the timestamp is correct",
                    code="timestamp.stale",
                    metadata={"value": timestamp.isoformat()},
                )
            )

    def _check_staff_qualification(
        self,
        record: RecordData,
        context: ValidationContext | None,
        errors: list[ValidationIssue],
    ) -> None:
        staff_id = resolve_staff_id(record, context)
        if staff_id is None or staff_id == "":
            return  # reported under documentation requirements
        if not isinstance(staff_id, str) or not staff_id.strip():
            errors.append(
                rule_issue(
                    oac.STAFF_QUALIFICATION,
                    "staff_id",
                    "Staff ID must be valid for compliance",
                    suggestion="Provide a valid staff ID",
                    code="staff_id.invalid",
                )
            )

    def _check_service_description(
        self,
        record: RecordData,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> None:
        description = (record.effective_description or "").strip()
        if not description:
            return

        if len(description) < self.config.min_description_length:
            errors.append(
                rule_issue(
                    oac.SERVICE_DESCRIPTION,
                    "service_description",
                    f"Service description must be at least "
                    f"{self.config.min_description_length} characters for compliance",
                    suggestion="Provide a more detailed description",
                    code="description.too_short",
                )
            )
        if len(description) < self.config.recommended_description_length:
            warnings.append(
                rule_issue(
                    oac.DESCRIPTION_COMPLETENESS,
                    "service_description",
                    f"Service description should be at least "
                    f"{self.config.recommended_description_length} characters for compliance",
                    suggestion="Add detail to meet recommended documentation requirements",
                    code="description.short",
                )
            )

    def _check_incident_reporting(
        self, record: RecordData, errors: list[ValidationIssue]
    ) -> None:
        if not record.has_location:
            errors.append(
                rule_issue(
                    oac.INCIDENT_REPORTING,
                    "location",
                    "Location is required for incident reports",
                    suggestion="Provide the specific location where the incident occurred",
                    code="incident.location_missing",
                )
            )

        description = (record.effective_description or "").strip()
        if description and len(description) < self.config.recommended_description_length:
            errors.append(
                rule_issue(
                    oac.INCIDENT_REPORTING,
                    "service_description",
                    f"Incident reports require a detailed description "
                    f"(minimum {self.config.recommended_description_length} characters)",
                    suggestion="Describe the incident comprehensively",
                    code="incident.description_short",
                )
            )

    def _check_sop(
        self,
        sop: SOPSubmission,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> None:
        total = len(sop.steps)
        if len(sop.completed_steps) < total:
            errors.append(
                rule_issue(
                    oac.DOCUMENTATION,
                    "sop_completion",
                    "All SOP steps must be completed for compliance",
                    suggestion=f"Complete all {total} steps in the SOP",
                    code="sop.incomplete",
                    metadata={"total_steps": total, "completed_steps": len(sop.completed_steps)},
                )
            )

        without_notes = [
            entry.step for entry in sop.completed_steps if not (entry.notes or "").strip()
        ]
        if without_notes:
            warnings.append(
                rule_issue(
                    oac.DESCRIPTION_COMPLETENESS,
                    "sop_notes",
                    "SOP steps should have notes for compliance documentation",
                    suggestion="Add notes to completed SOP steps",
                    code="sop.notes_missing",
                    metadata={"steps": without_notes},
                )
            )
