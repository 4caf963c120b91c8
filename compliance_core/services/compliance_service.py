"""
Compliance service: the operations exposed to the web layer.

Wires the engine, auto-fix service, drafter and finalizer together so a
route handler makes one call per request. Nothing here holds state between
calls; persistence goes through the injected stores.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

import structlog
from pydantic import BaseModel, Field

from compliance_core.config import AppConfig, get_config
from compliance_core.domain.incidents import (
    DraftOptions,
    DraftOutcome,
    Incident,
    IncidentStatus,
    IntegrityReport,
    MUIDraftData,
)
from compliance_core.domain.models import (
    CombinedValidationResult,
    ValidationContext,
    ValidationIssue,
    ValidationRequest,
    ValidationResult,
    ValidatorType,
)
from compliance_core.domain.result import Result
from compliance_core.errors import LifecycleError
from compliance_core.services.auto_fix import AutoFixOptions, AutoFixResult, AutoFixService
from compliance_core.services.incident_drafter import IncidentDrafter
from compliance_core.services.incident_finalizer import IncidentFinalizer
from compliance_core.services.store import AlertDataSource, IncidentStore, TagSource
from compliance_core.services.tag_analysis import TagAnalysisService, build_risk_analyzer
from compliance_core.services.validator_engine import (
    ValidatorEngine,
    default_validators,
    validator_key,
)

logger = structlog.get_logger(__name__)


class FixOutcome(BaseModel):
    """Auto-fix run plus the validation before and after it."""

    original_validation: ValidationResult
    fixable_issues: list[ValidationIssue] = Field(default_factory=list)
    unfixable_issues: list[ValidationIssue] = Field(default_factory=list)
    fix_result: AutoFixResult | None = None
    revalidation_result: ValidationResult | None = None

    @property
    def message(self) -> str:
        if self.fix_result is None or not self.fixable_issues:
            return "No auto-fixable issues found"
        return self.fix_result.summary


class ComplianceService:
    """Validation, auto-fix and incident lifecycle behind one object."""

    def __init__(
        self,
        engine: ValidatorEngine,
        auto_fixer: AutoFixService,
        drafter: IncidentDrafter,
        finalizer: IncidentFinalizer,
    ) -> None:
        self.engine = engine
        self.auto_fixer = auto_fixer
        self.drafter = drafter
        self.finalizer = finalizer
        self.logger = logger.bind(component="compliance_service")

    @classmethod
    def from_config(
        cls,
        alerts: AlertDataSource,
        incidents: IncidentStore,
        *,
        tag_source: TagSource | None = None,
        config: AppConfig | None = None,
    ) -> "ComplianceService":
        """Build the full service graph from application configuration."""
        config = config or get_config()
        engine = ValidatorEngine(default_validators(config.validation))
        tag_analysis = None
        if tag_source is not None:
            tag_analysis = TagAnalysisService(tag_source, build_risk_analyzer(config.ai_provider))
        return cls(
            engine=engine,
            auto_fixer=AutoFixService(config.incidents),
            drafter=IncidentDrafter(
                alerts,
                incidents,
                tag_analysis=tag_analysis,
                engine=engine,
                config=config.incidents,
            ),
            finalizer=IncidentFinalizer(incidents, config.incidents),
        )

    # --- validation -------------------------------------------------------

    def validate(
        self,
        validator_type: ValidatorType | str,
        data: Any,
        context: ValidationContext | None = None,
        *,
        now: datetime | None = None,
    ) -> ValidationResult:
        return self.engine.validate(validator_type, data, context, now=now)

    def validate_multiple(
        self, requests: Iterable[ValidationRequest], *, now: datetime | None = None
    ) -> CombinedValidationResult:
        return self.engine.validate_multiple(requests, now=now)

    def preview_fixes(
        self,
        validator_type: ValidatorType | str,
        data: Any,
        context: ValidationContext | None = None,
        *,
        now: datetime | None = None,
    ) -> FixOutcome:
        """Validate and classify issues without changing anything."""
        result = self.engine.validate(validator_type, data, context, now=now)
        return FixOutcome(
            original_validation=result,
            fixable_issues=self.auto_fixer.get_fixable_issues(result, context),
            unfixable_issues=self.auto_fixer.get_unfixable_issues(result, context),
        )

    def auto_fix(
        self,
        validator_type: ValidatorType | str,
        data: Any,
        context: ValidationContext | None = None,
        options: AutoFixOptions | None = None,
        *,
        now: datetime | None = None,
    ) -> FixOutcome:
        """
        Validate, apply safe fixes to a copy, and validate the copy again.

        Both passes always run, so a clean or unfixable payload comes back with
        no applied fixes and `fixed_data` equal to the input.
        """
        options = options or AutoFixOptions()
        if options.context is None and context is not None:
            options = options.model_copy(update={"context": context})
        context = options.context

        outcome = self.preview_fixes(validator_type, data, context, now=now)
        fix_result = self.auto_fixer.auto_fix(
            data, outcome.original_validation, options, now=now
        )
        outcome.fix_result = fix_result
        outcome.revalidation_result = self.engine.validate(
            validator_type, fix_result.fixed_data, context, now=now
        )
        self.logger.info(
            "auto_fix_revalidated",
            validator_type=validator_key(validator_type),
            applied=len(fix_result.applied_fixes),
            can_submit_before=outcome.original_validation.can_submit,
            can_submit_after=outcome.revalidation_result.can_submit,
        )
        return outcome

    # --- incidents --------------------------------------------------------

    async def generate_draft(
        self,
        alert_id: str,
        created_by: str,
        options: DraftOptions | None = None,
        *,
        now: datetime | None = None,
    ) -> Result[DraftOutcome, LifecycleError]:
        """Generate and persist the alert's draft. Raises AlertNotFoundError."""
        return await self.drafter.generate_and_persist(alert_id, created_by, options, now=now)

    async def update_draft(
        self,
        incident_id: str,
        draft_data: MUIDraftData,
        actor: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Result[Incident, LifecycleError]:
        return await self.finalizer.update_draft(incident_id, draft_data, actor=actor, now=now)

    async def review_transition(
        self,
        incident_id: str,
        target_status: IncidentStatus | str,
        actor: str,
        comment: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Result[Incident, LifecycleError]:
        return await self.finalizer.review_transition(
            incident_id, target_status, actor, comment, now=now
        )

    async def finalize(
        self, incident_id: str, finalized_by: str, *, now: datetime | None = None
    ) -> Result[Incident, LifecycleError]:
        return await self.finalizer.finalize(incident_id, finalized_by, now=now)

    async def lock(
        self, incident_id: str, locked_by: str, *, now: datetime | None = None
    ) -> Result[Incident, LifecycleError]:
        return await self.finalizer.lock(incident_id, locked_by, now=now)

    async def verify_integrity(self, incident_id: str) -> IntegrityReport:
        return await self.finalizer.verify_integrity(incident_id)
