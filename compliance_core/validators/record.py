"""Documentation record validator (service notes, incident notes and the like)."""

from collections.abc import Mapping
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
    RecordData,
    describe_parse_errors,
    parse_timestamp,
    resolve_staff_id,
    structural_error,
    timestamp_drift,
    utc_now,
)

logger = structlog.get_logger(__name__)

LOCATION_EXPECTED_FOR = frozenset({"service", "incident"})


class RecordValidator:
    """Validates a single documentation record."""

    validator_type = ValidatorType.RECORD
    name = "Record Validator"

    def __init__(self, config: ValidationConfig | None = None) -> None:
        self.config = config or ValidationConfig()
        self.logger = logger.bind(component="record_validator")

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
                "Invalid data structure: expected object with record fields",
                rule_ref=oac.DOCUMENTATION,
            )
        try:
            record = RecordData.model_validate(data)
        except ValidationError as exc:
            self.logger.debug("record_payload_rejected", error_count=exc.error_count())
            return structural_error(
                self.validator_type,
                "Invalid record: one or more fields have the wrong type",
                rule_ref=oac.DOCUMENTATION,
                metadata={"errors": describe_parse_errors(exc)},
            )

        now = now or utc_now()
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        self._check_staff(record, context, errors)
        self._check_timestamp(record, now, errors, warnings)
        self._check_description(record, errors, warnings)
        self._check_location(record, warnings)

        blocking = sum(1 for issue in errors if issue.blocking)
        if not errors and not warnings:
            summary = "Record validation passed"
        elif blocking == 0:
            summary = f"Record has {len(warnings)} warning(s) but can be submitted"
        else:
            summary = f"Record has {blocking} blocking error(s) and cannot be submitted"

        return create_result(self.validator_type, errors, warnings, summary)

    def _check_staff(
        self,
        record: RecordData,
        context: ValidationContext | None,
        errors: list[ValidationIssue],
    ) -> None:
        staff_id = resolve_staff_id(record, context)
        if staff_id is None or staff_id == "":
            errors.append(
                create_issue(
                    "staff_id",
                    "Staff ID is required for record creation",
                    rule_ref=oac.DOCUMENTATION,
                    suggestion="Ensure staff ID is provided in the record or context",
                    code="staff_id.missing",
                )
            )
        elif not isinstance(staff_id, str) or not staff_id.strip():
            errors.append(
                create_issue(
                    "staff_id",
                    "Staff ID must be a valid string",
                    rule_ref=oac.DOCUMENTATION,
                    suggestion="Provide a valid staff ID",
                    code="staff_id.invalid",
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
            errors.append(
                create_issue(
                    "timestamp",
                    "Timestamp is required for record creation",
                    rule_ref=oac.DOCUMENTATION,
                    suggestion="Provide timestamp or created_at field",
                    code="timestamp.missing",
                )
            )
            return

        timestamp = parse_timestamp(raw)
        if timestamp is None:
            errors.append(
                create_issue(
                    record.timestamp_field,
                    "Invalid timestamp format",
                    rule_ref=oac.TIMESTAMP,
                    suggestion="Use an ISO 8601 timestamp",
                    code="timestamp.invalid",
                    metadata={"value": raw},
                )
            )
            return

        drift = timestamp_drift(timestamp, now, self.config.max_timestamp_age_days)
        if drift == "future":
            warnings.append(
                create_warning(
                    record.timestamp_field,
                    "Timestamp is in the future",
                    rule_ref=oac.TIMELINE_ACCURACY,
                    suggestion="Verify the timestamp is correct",
                    code="timestamp.future",
                    metadata={"value": timestamp.isoformat()},
                )
            )
        elif drift == "stale":
            warnings.append(
                create_warning(
                    record.timestamp_field,
                    f"Timestamp is more than {self.config.max_timestamp_age_days} days old",
                    rule_ref=oac.TIMELINE_ACCURACY,
                    suggestion="Verify the timestamp is correct",
                    code="timestamp.stale",
                    metadata={"value": timestamp.isoformat()},
                )
            )

    def _check_description(
        self,
        record: RecordData,
        errors: list[ValidationIssue],
        warnings: list[ValidationIssue],
    ) -> None:
        description = (record.effective_description or "").strip()
        if not description:
            errors.append(
                create_issue(
                    "service_description",
                    "Service description is required",
                    rule_ref=oac.DOCUMENTATION,
                    suggestion="Describe the service provided or action taken",
                    code="description.missing",
                )
            )
            return

        cfg = self.config
        if len(description) < cfg.min_description_length:
            errors.append(
                create_issue(
                    "service_description",
                    f"Service description must be at least {cfg.min_description_length} characters",
                    rule_ref=oac.SERVICE_DESCRIPTION,
                    suggestion="Provide a more detailed description",
                    code="description.too_short",
                    metadata={"length": len(description)},
                )
            )
        if len(description) < cfg.recommended_description_length:
            warnings.append(
                create_warning(
                    "service_description",
                    f"Service description should be at least "
                    f"{cfg.recommended_description_length} characters",
                    rule_ref=oac.DESCRIPTION_COMPLETENESS,
                    suggestion="Add more detail for audit purposes",
                    code="description.short",
                    metadata={"length": len(description)},
                )
            )

        distinct = {char for char in description if not char.isspace()}
        if len(distinct) < cfg.min_distinct_characters:
            warnings.append(
                create_warning(
                    "service_description",
                    "Service description looks like placeholder text",
                    rule_ref=oac.DESCRIPTION_COMPLETENESS,
                    suggestion="Replace placeholder text with a real description",
                    code="description.placeholder",
                )
            )

    def _check_location(self, record: RecordData, warnings: list[ValidationIssue]) -> None:
        if not record.has_location:
            if record.record_type in LOCATION_EXPECTED_FOR:
                warnings.append(
                    create_warning(
                        "location",
                        "Location is recommended for service and incident records",
                        rule_ref=oac.LOCATION,
                        suggestion="Provide the location where the service was provided",
                        code="location.missing",
                    )
                )
            return

        location = record.location
        if not isinstance(location, str) or not location.strip():
            warnings.append(
                create_warning(
                    "location",
                    "Location should be a non-empty string",
                    rule_ref=oac.LOCATION,
                    suggestion="Provide a valid location description",
                    code="location.blank",
                )
            )
        elif len(location.strip()) < self.config.min_location_length:
            warnings.append(
                create_warning(
                    "location",
                    "Location description is too short",
                    rule_ref=oac.LOCATION,
                    suggestion="Provide a more detailed location description",
                    code="location.too_short",
                )
            )
