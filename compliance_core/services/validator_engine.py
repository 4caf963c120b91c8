"""
Validator engine: routes validation requests to registered validators.

Key architectural decisions:
- Registry is injected, not a process-wide singleton, so tests can swap in fakes
- A missing validator or a validator bug becomes a blocking issue, never an exception
- Several requests can run together and merge into one combined result
"""

import traceback
from collections.abc import Iterable
from datetime import datetime
from enum import Enum
from typing import Any

import structlog

from compliance_core.config import ValidationConfig
from compliance_core.domain.models import (
    CombinedValidationResult,
    ValidationContext,
    ValidationIssue,
    ValidationRequest,
    ValidationResult,
    ValidatorType,
    create_issue,
    create_result,
)
from compliance_core.validators import (
    ComplianceValidator,
    RecordValidator,
    SOPValidator,
    Validator,
)

logger = structlog.get_logger(__name__)


def validator_key(validator_type: ValidatorType | str) -> str:
    return validator_type.value if isinstance(validator_type, Enum) else str(validator_type)


def default_validators(config: ValidationConfig | None = None) -> list[Validator]:
    """The built-in validator set."""
    return [SOPValidator(config), RecordValidator(config), ComplianceValidator(config)]


class ValidatorEngine:
    """Type-keyed validator registry and dispatcher."""

    def __init__(self, validators: Iterable[Validator] | None = None) -> None:
        self.logger = logger.bind(component="validator_engine")
        self._validators: dict[str, Validator] = {}
        for validator in default_validators() if validators is None else validators:
            self.register(validator)

    def register(self, validator: Validator) -> None:
        """Register a validator, replacing any existing one of the same type."""
        self._validators[validator_key(validator.validator_type)] = validator

    def get_validator(self, validator_type: ValidatorType | str) -> Validator | None:
        return self._validators.get(validator_key(validator_type))

    def has_validator(self, validator_type: ValidatorType | str) -> bool:
        return validator_key(validator_type) in self._validators

    def available_validators(self) -> list[str]:
        return list(self._validators)

    def validate(
        self,
        validator_type: ValidatorType | str,
        data: Any,
        context: ValidationContext | None = None,
        *,
        now: datetime | None = None,
    ) -> ValidationResult:
        """Run one validator. Never raises for a missing or failing validator."""
        validator = self.get_validator(validator_type)
        if validator is None:
            self.logger.warning("validator_not_found", validator_type=validator_key(validator_type))
            return create_result(
                validator_type,
                [
                    create_issue(
                        "validator",
                        f"Validator type '{validator_key(validator_type)}' is not available",
                        code="validator.not_found",
                    )
                ],
                [],
                f"Validator '{validator_key(validator_type)}' not found",
            )

        try:
            return validator.validate(data, context, now=now)
        except Exception as e:
            self.logger.error(
                "validator_failed",
                validator_type=validator_key(validator_type),
                validator=validator.name,
                error=str(e),
                exc_info=True,
            )
            return create_result(
                validator_type,
                [
                    create_issue(
                        "validator",
                        f"Validation failed: {e}",
                        code="validator.error",
                        metadata={
                            "error": str(e),
                            "error_type": type(e).__name__,
                            "traceback": traceback.format_exc(),
                        },
                    )
                ],
                [],
                "Validation error occurred",
            )

    def validate_multiple(
        self,
        requests: Iterable[ValidationRequest],
        *,
        now: datetime | None = None,
    ) -> CombinedValidationResult:
        """Run each request independently, in order, and merge the outcome."""
        results: list[ValidationResult] = []
        all_errors: list[ValidationIssue] = []
        all_warnings: list[ValidationIssue] = []

        for request in requests:
            result = self.validate(request.validator_type, request.data, request.context, now=now)
            results.append(result)
            all_errors.extend(result.errors)
            all_warnings.extend(result.warnings)

        blocking = sum(1 for issue in all_errors if issue.blocking)
        non_blocking = len(all_errors) - blocking

        if not all_errors and not all_warnings:
            summary = "All validations passed"
        elif blocking == 0 and non_blocking:
            summary = (
                f"Validation passed with {non_blocking} non-blocking error(s) and "
                f"{len(all_warnings)} warning(s). Submission allowed."
            )
        elif blocking == 0:
            summary = f"Validation passed with {len(all_warnings)} warning(s). Submission allowed."
        else:
            summary = (
                f"Validation failed with {blocking} blocking error(s) and "
                f"{non_blocking} non-blocking error(s). Submission blocked."
            )
            if all_warnings:
                summary += f" Also found {len(all_warnings)} warning(s)."

        self.logger.debug(
            "validation_batch_completed",
            requests=len(results),
            blocking_errors=blocking,
            warnings=len(all_warnings),
        )
        return CombinedValidationResult(
            results=results,
            all_errors=all_errors,
            all_warnings=all_warnings,
            summary=summary,
        )
