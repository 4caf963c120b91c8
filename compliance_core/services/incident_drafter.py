"""
Incident drafter: assembles an MUI/UI report from everything known about an alert.

Sources, all read through injected collaborators:
- the alert with its detection and client (AlertDataSource)
- linked SOP responses and the SOP's declared steps
- alert events, rendered as the timeline
- recording tags and transcript, via TagAnalysisService
- SOP validator output, folded into a count summary

The draft is a pure function of that state plus `now`. Persisting it keeps
exactly one draft-status incident per alert: regeneration rewrites that row,
and once the incident has left draft the drafter refuses to touch it.
"""

import math
import uuid
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

import structlog

from compliance_core.config import IncidentConfig
from compliance_core.domain.incidents import (
    AIAnalysisBlock,
    AlertEventRecord,
    AlertRecord,
    ClientRef,
    DraftOptions,
    DraftOutcome,
    Incident,
    IncidentStatus,
    IncidentType,
    IncidentUpdate,
    MUIDraftData,
    SOPResponseRecord,
    SOPResponseSummary,
    StaffMember,
    Tag,
    TimelineEntry,
    ValidationSummary,
)
from compliance_core.domain.models import ValidationContext, ValidatorType
from compliance_core.domain.result import Result
from compliance_core.errors import AlertNotFoundError, LifecycleError, LifecycleErrorCode
from compliance_core.services.store import AlertDataSource, IncidentStore
from compliance_core.services.tag_analysis import AlertAnalysis, TagAnalysisService, critical_tags
from compliance_core.services.validator_engine import ValidatorEngine
from compliance_core.validators.base import utc_now

logger = structlog.get_logger(__name__)

# Keyword heuristic. MUI indicators are checked first and win.
MUI_INDICATORS = (
    "fall",
    "injury",
    "hospital",
    "ambulance",
    "emergency",
    "unresponsive",
    "medical emergency",
    "serious injury",
    "critical",
)
UI_INDICATORS = ("agitated", "behavioral", "minor", "concern", "unusual")

UNKNOWN_LOCATION = "Location not specified"


def determine_incident_type(
    tags: Iterable[Tag],
    alert_type: str | None = None,
    detection_type: str | None = None,
) -> IncidentType:
    """
    Classify an incident as MUI or UI from tag values and alert context.

    This is a substring heuristic, not a regulatory determination: reviewers
    may change the type before finalization. Anything unmatched is UI.
    """
    tag_values = " ".join(tag.tag_value.lower() for tag in tags)
    text = f"{alert_type or ''} {detection_type or ''} {tag_values}".lower()

    if any(indicator in text for indicator in MUI_INDICATORS):
        return IncidentType.MUI
    if any(indicator in text for indicator in UI_INDICATORS):
        return IncidentType.UI
    return IncidentType.UI


def _as_utc(value: datetime) -> datetime:
    return value.astimezone(UTC) if value.tzinfo else value.replace(tzinfo=UTC)


def _step_order(entry: dict[str, Any]) -> float:
    step = entry.get("step")
    return step if isinstance(step, int) and not isinstance(step, bool) else math.inf


def _actions_taken(responses: list[SOPResponseRecord]) -> list[str]:
    actions: list[str] = []
    for response in responses:
        for entry in sorted(response.completed_steps, key=_step_order):
            action = entry.get("action")
            if not action:
                continue
            notes = entry.get("notes")
            actions.append(f"{action}: {notes}" if notes else str(action))
    return actions


def _staff_ids(events: list[AlertEventRecord], responses: list[SOPResponseRecord]) -> list[str]:
    """Distinct staff ids in order of first appearance: timeline first, then SOP responses."""
    ids = [event.staff_id for event in events] + [response.staff_id for response in responses]
    return list(dict.fromkeys(staff_id for staff_id in ids if staff_id))


class IncidentDrafter:
    """Builds and persists MUI/UI incident drafts."""

    def __init__(
        self,
        alerts: AlertDataSource,
        incidents: IncidentStore,
        *,
        tag_analysis: TagAnalysisService | None = None,
        engine: ValidatorEngine | None = None,
        config: IncidentConfig | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self.alerts = alerts
        self.incidents = incidents
        self.tag_analysis = tag_analysis
        self.engine = engine or ValidatorEngine()
        self.config = config or IncidentConfig()
        self.id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self.logger = logger.bind(component="incident_drafter")

    async def generate_draft(
        self,
        alert_id: str,
        options: DraftOptions | None = None,
        *,
        now: datetime | None = None,
    ) -> MUIDraftData:
        """
        Assemble the draft for an alert without writing anything.

        Raises:
            AlertNotFoundError: the alert does not exist.
        """
        options = options or DraftOptions()
        now = now or utc_now()

        alert = await self.alerts.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)

        responses = await self.alerts.list_sop_responses(alert_id)
        events = await self.alerts.list_timeline(alert_id)
        staff_names = await self.alerts.get_staff_names(_staff_ids(events, responses))

        analysis: AlertAnalysis | None = None
        if options.include_ai_analysis and self.tag_analysis is not None:
            analysis = await self.tag_analysis.analyze(alert_id)
        tags = analysis.tags if analysis else []
        transcript = analysis.transcript if analysis else None

        occurred_at = _as_utc(alert.created_at)
        draft = MUIDraftData(
            incident_type=determine_incident_type(tags, alert.alert_type, alert.detection_type),
            incident_date=occurred_at.strftime("%Y-%m-%d"),
            incident_time=occurred_at.strftime("%H:%M:%S"),
            location=alert.detection_location or alert.location or UNKNOWN_LOCATION,
            client=ClientRef(id=alert.client_id, name=alert.client_name or "Unknown"),
            description=self._description(alert, transcript, analysis),
            staff=[
                StaffMember(id=staff_id, name=staff_names[staff_id])
                for staff_id in _staff_ids(events, responses)
                if staff_id in staff_names
            ],
            actions_taken=_actions_taken(responses),
            timeline=self._timeline(events, staff_names) if options.include_timeline else [],
            sop_responses=[self._summarize_response(response) for response in responses],
            metadata={
                "alert_id": alert_id,
                "detection_type": alert.detection_type,
                "severity": alert.severity,
            },
        )

        if analysis is not None and analysis.tags:
            draft.ai_analysis = AIAnalysisBlock(
                risk_level=analysis.risk_level,
                summary=analysis.summary,
                critical_tags=critical_tags(analysis.tags),
                escalation_level=analysis.escalation_level,
            )

        if options.include_validation:
            draft.validation_results = self._validate_responses(alert, responses, now)

        self.logger.debug(
            "draft_generated",
            alert_id=alert_id,
            incident_type=draft.incident_type.value,
            sop_responses=len(responses),
            timeline_events=len(draft.timeline),
        )
        return draft

    async def generate_and_persist(
        self,
        alert_id: str,
        created_by: str,
        options: DraftOptions | None = None,
        *,
        now: datetime | None = None,
    ) -> Result[DraftOutcome, LifecycleError]:
        """
        Generate the draft and write it to the alert's single draft incident.

        Inserts a new incident when the alert has none, otherwise rewrites the
        existing one while it is still a draft. An incident that has moved on
        to review, finalized or locked is left untouched and reported.

        Raises:
            AlertNotFoundError: the alert does not exist.
        """
        now = now or utc_now()
        draft = await self.generate_draft(alert_id, options, now=now)

        existing = await self.incidents.find_for_alert(alert_id)
        if existing is None:
            incident = Incident(
                id=self.id_factory(),
                alert_id=alert_id,
                client_id=draft.client.id,
                incident_type=draft.incident_type,
                status=IncidentStatus.DRAFT,
                draft_data=draft,
                created_by=created_by,
                created_at=now,
                updated_at=now,
            )
            created = await self.incidents.create_draft(incident)
            if created is not None:
                self.logger.info(
                    "incident_draft_created",
                    incident_id=created.id,
                    alert_id=alert_id,
                    incident_type=created.incident_type.value,
                    created_by=created_by,
                )
                return Result.ok(DraftOutcome(incident=created, draft_data=draft, created=True))

            # Another writer created the incident first; regenerate onto theirs.
            existing = await self.incidents.find_for_alert(alert_id)
            if existing is None:
                return Result.err(
                    LifecycleError(
                        LifecycleErrorCode.PRECONDITION_FAILED,
                        "Incident for this alert could not be created",
                    )
                )

        if existing.status != IncidentStatus.DRAFT:
            return Result.err(self._not_regenerable(existing))

        updated = await self.incidents.update_where_status(
            existing.id,
            {IncidentStatus.DRAFT},
            IncidentUpdate(incident_type=draft.incident_type, draft_data=draft, updated_at=now),
            expected_updated_at=existing.updated_at,
        )
        if updated is None:
            self.logger.warning(
                "draft_regeneration_conflict", incident_id=existing.id, alert_id=alert_id
            )
            return Result.err(
                LifecycleError(
                    LifecycleErrorCode.PRECONDITION_FAILED,
                    "Incident changed while the draft was being regenerated",
                    incident_id=existing.id,
                )
            )

        self.logger.info("incident_draft_updated", incident_id=updated.id, alert_id=alert_id)
        return Result.ok(DraftOutcome(incident=updated, draft_data=draft, created=False))

    # --- assembly ---------------------------------------------------------

    def _description(
        self, alert: AlertRecord, transcript: str | None, analysis: AlertAnalysis | None
    ) -> str:
        lines = [f"Incident occurred: {alert.message}"]
        if alert.detection_type:
            lines.append(f"Detection Type: {alert.detection_type.replace('_', ' ')}")
        if transcript:
            limit = self.config.transcript_excerpt_length
            excerpt = transcript[:limit] + "..." if len(transcript) > limit else transcript
            lines += ["", "Transcript Excerpt:", excerpt]
        if analysis is not None and analysis.tags:
            lines += ["", f"AI Analysis: {analysis.summary}"]
        return "\n".join(lines).strip()

    @staticmethod
    def _timeline(
        events: list[AlertEventRecord], staff_names: dict[str, str]
    ) -> list[TimelineEntry]:
        return [
            TimelineEntry(
                timestamp=_as_utc(event.created_at).isoformat(),
                event=event.event_type.replace("_", " "),
                staff=staff_names.get(event.staff_id or "", "Unknown"),
                message=event.message,
            )
            for event in events
        ]

    @staticmethod
    def _summarize_response(response: SOPResponseRecord) -> SOPResponseSummary:
        completed = len(response.completed_steps)
        total = len(response.steps) if response.steps is not None else completed
        return SOPResponseSummary(
            id=response.id,
            sop_name=response.sop_name or "Unknown SOP",
            status=response.status,
            completed_steps=completed,
            total_steps=total,
        )

    def _validate_responses(
        self, alert: AlertRecord, responses: list[SOPResponseRecord], now: datetime
    ) -> ValidationSummary:
        """Re-run the SOP validator on each response whose SOP steps are known."""
        errors = warnings = 0
        for response in responses:
            if response.steps is None:
                continue
            context = ValidationContext(
                client_id=alert.client_id,
                alert_id=alert.id,
                sop_response_id=response.id,
            )
            result = self.engine.validate(
                ValidatorType.SOP,
                {"steps": response.steps, "completed_steps": response.completed_steps},
                context,
                now=now,
            )
            errors += len(result.errors)
            warnings += len(result.warnings)
        return ValidationSummary(is_valid=errors == 0, errors=errors, warnings=warnings)

    @staticmethod
    def _not_regenerable(incident: Incident) -> LifecycleError:
        if incident.status == IncidentStatus.LOCKED:
            code = LifecycleErrorCode.LOCKED
        elif incident.status == IncidentStatus.FINALIZED:
            code = LifecycleErrorCode.ALREADY_FINALIZED
        else:
            code = LifecycleErrorCode.PRECONDITION_FAILED
        return LifecycleError(
            code,
            f"Incident is in '{incident.status.value}' status and its draft can no longer be "
            "regenerated",
            incident_id=incident.id,
            status=incident.status.value,
        )
