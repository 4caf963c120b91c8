"""
Incident domain models.

An Incident row is the single source of truth for an MUI/UI report. Its
`draft_data` stays editable until finalization; `finalized_data` holds the
sealed packet and is written exactly once.

Draft payload models accept unknown keys (`extra="allow"`) so that anything a
reviewer adds survives storage and is covered by the checksum.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class IncidentType(str, Enum):
    """Major Unusual Incident vs Unusual Incident."""

    MUI = "MUI"
    UI = "UI"


class IncidentStatus(str, Enum):
    DRAFT = "draft"
    REVIEW = "review"
    FINALIZED = "finalized"
    LOCKED = "locked"


# Every legal edge of the incident lifecycle. Anything else is an error.
ALLOWED_TRANSITIONS: dict[IncidentStatus, frozenset[IncidentStatus]] = {
    IncidentStatus.DRAFT: frozenset({IncidentStatus.REVIEW, IncidentStatus.FINALIZED}),
    IncidentStatus.REVIEW: frozenset({IncidentStatus.DRAFT, IncidentStatus.FINALIZED}),
    IncidentStatus.FINALIZED: frozenset({IncidentStatus.LOCKED}),
    IncidentStatus.LOCKED: frozenset(),
}

EDITABLE_STATUSES = frozenset({IncidentStatus.DRAFT, IncidentStatus.REVIEW})


def can_transition(current: IncidentStatus, target: IncidentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class _DraftPart(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, alias_generator=to_camel)


class ClientRef(_DraftPart):
    id: str | None = None
    name: str = "Unknown"


class StaffMember(_DraftPart):
    id: str
    name: str


class TimelineEntry(_DraftPart):
    timestamp: str
    event: str
    staff: str = "Unknown"
    message: str | None = None


class SOPResponseSummary(_DraftPart):
    id: str
    sop_name: str = "Unknown SOP"
    status: str
    completed_steps: int = Field(ge=0)
    total_steps: int = Field(ge=0)


class AIAnalysisBlock(_DraftPart):
    risk_level: str
    summary: str
    critical_tags: list[str] = Field(default_factory=list)
    escalation_level: str | None = None


class ValidationSummary(_DraftPart):
    is_valid: bool
    errors: int = Field(ge=0)
    warnings: int = Field(ge=0)


class MUIDraftData(_DraftPart):
    """The structured report body assembled by the drafter."""

    incident_type: IncidentType
    incident_date: str = Field(description="YYYY-MM-DD")
    incident_time: str = Field(description="HH:MM:SS")
    location: str
    client: ClientRef
    description: str
    staff: list[StaffMember] = Field(default_factory=list)
    actions_taken: list[str] = Field(default_factory=list)
    timeline: list[TimelineEntry] = Field(default_factory=list)
    sop_responses: list[SOPResponseSummary] = Field(default_factory=list)
    ai_analysis: AIAnalysisBlock | None = None
    validation_results: ValidationSummary | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ReviewHistoryEntry(BaseModel):
    reviewed_by: str
    reviewed_at: datetime
    status: IncidentStatus


class PacketMetadata(BaseModel):
    original_draft_created_at: datetime
    original_draft_created_by: str
    review_history: list[ReviewHistoryEntry] | None = None
    validation_status: ValidationSummary | None = None


class FinalizedIncidentPacket(BaseModel):
    """
    Sealed snapshot of an incident.

    `checksum` is computed once over the canonical form of `data` using
    `checksum_algorithm`, and never recomputed for this packet.
    """

    model_config = ConfigDict(frozen=True)

    incident_id: str
    finalized_at: datetime
    finalized_by: str
    data: MUIDraftData
    checksum: str
    checksum_algorithm: str
    version: str
    metadata: PacketMetadata


class Incident(BaseModel):
    id: str
    alert_id: str
    client_id: str | None = None
    incident_type: IncidentType
    status: IncidentStatus = IncidentStatus.DRAFT
    draft_data: MUIDraftData
    finalized_data: FinalizedIncidentPacket | None = None
    created_by: str
    reviewed_by: str | None = None
    finalized_by: str | None = None
    finalized_at: datetime | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_locked(self) -> bool:
        return self.status == IncidentStatus.LOCKED


class IncidentUpdate(BaseModel):
    """
    Column changes for a conditional update.

    Only fields explicitly set are written, so `reviewed_by=None` clears the
    column while an unset `reviewed_by` leaves it alone.
    """

    status: IncidentStatus | None = None
    incident_type: IncidentType | None = None
    draft_data: MUIDraftData | None = None
    finalized_data: FinalizedIncidentPacket | None = None
    reviewed_by: str | None = None
    finalized_by: str | None = None
    finalized_at: datetime | None = None
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def changes(self) -> dict[str, Any]:
        changed = {name: getattr(self, name) for name in self.model_fields_set}
        changed["updated_at"] = self.updated_at
        return changed


class IntegrityReport(BaseModel):
    valid: bool
    error: str | None = None
    reason: Literal["not_found", "not_finalized", "tampered", "unsupported_algorithm"] | None = None
    checksum_algorithm: str | None = None


# --- drafting inputs ------------------------------------------------------------


class AlertRecord(BaseModel):
    """An alert joined with its detection and client."""

    id: str
    client_id: str | None = None
    client_name: str | None = None
    message: str = ""
    alert_type: str | None = None
    detection_type: str | None = None
    detection_location: str | None = None
    location: str | None = None
    severity: str | None = None
    created_at: datetime


class SOPResponseRecord(BaseModel):
    """An SOP response for an alert, with the declared steps of its SOP."""

    id: str
    sop_id: str | None = None
    sop_name: str | None = None
    status: str = "in_progress"
    staff_id: str | None = None
    steps: list[dict[str, Any]] | None = None
    completed_steps: list[dict[str, Any]] = Field(default_factory=list)
    started_at: datetime | None = None


class AlertEventRecord(BaseModel):
    id: str
    event_type: str
    staff_id: str | None = None
    message: str | None = None
    created_at: datetime


class Tag(BaseModel):
    """An AI tag on an alert's recording."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    tag_type: str
    tag_value: str
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class DraftOptions(BaseModel):
    include_ai_analysis: bool = True
    include_validation: bool = True
    include_timeline: bool = True


class DraftOutcome(BaseModel):
    incident: Incident
    draft_data: MUIDraftData
    created: bool = Field(description="True when a new draft row was inserted")
