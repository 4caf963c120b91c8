"""
In-memory storage adapter for tests, demos and local runs.

Each conditional write checks and applies within a single synchronous block
with no await in between, so on one event loop it is as atomic as the SQL
adapter's single statement. Stored models are copied on the way in and out;
callers never share mutable state with the store.
"""

from collections.abc import Collection, Sequence
from datetime import datetime

from compliance_core.domain.incidents import (
    AlertEventRecord,
    AlertRecord,
    Incident,
    IncidentStatus,
    IncidentUpdate,
    SOPResponseRecord,
    Tag,
)


class InMemoryIncidentStore:
    def __init__(self, incidents: Collection[Incident] = ()) -> None:
        self._incidents: dict[str, Incident] = {
            incident.id: incident.model_copy(deep=True) for incident in incidents
        }
        self.writes = 0

    async def get(self, incident_id: str) -> Incident | None:
        incident = self._incidents.get(incident_id)
        return incident.model_copy(deep=True) if incident else None

    async def find_for_alert(self, alert_id: str) -> Incident | None:
        matches = [i for i in self._incidents.values() if i.alert_id == alert_id]
        if not matches:
            return None
        return min(matches, key=lambda i: i.created_at).model_copy(deep=True)

    async def create_draft(self, incident: Incident) -> Incident | None:
        if any(existing.alert_id == incident.alert_id for existing in self._incidents.values()):
            return None
        self._incidents[incident.id] = incident.model_copy(deep=True)
        self.writes += 1
        return incident.model_copy(deep=True)

    async def update_where_status(
        self,
        incident_id: str,
        expected: Collection[IncidentStatus],
        update: IncidentUpdate,
        *,
        expected_updated_at: datetime | None = None,
    ) -> Incident | None:
        current = self._incidents.get(incident_id)
        if current is None or current.status not in expected:
            return None
        if expected_updated_at is not None and current.updated_at != expected_updated_at:
            return None
        updated = current.model_copy(update=update.changes(), deep=True)
        self._incidents[incident_id] = updated
        self.writes += 1
        return updated.model_copy(deep=True)

    def put(self, incident: Incident) -> None:
        """Store an incident as-is, bypassing every precondition."""
        self._incidents[incident.id] = incident.model_copy(deep=True)

    def all(self) -> list[Incident]:
        return [incident.model_copy(deep=True) for incident in self._incidents.values()]


class InMemoryAlertDataSource:
    def __init__(self) -> None:
        self.alerts: dict[str, AlertRecord] = {}
        self.sop_responses: dict[str, list[SOPResponseRecord]] = {}
        self.events: dict[str, list[AlertEventRecord]] = {}
        self.staff: dict[str, str] = {}
        self.staff_lookups: list[list[str]] = []

    def add_alert(self, alert: AlertRecord) -> None:
        self.alerts[alert.id] = alert

    def add_sop_response(self, alert_id: str, response: SOPResponseRecord) -> None:
        self.sop_responses.setdefault(alert_id, []).append(response)

    def add_event(self, alert_id: str, event: AlertEventRecord) -> None:
        self.events.setdefault(alert_id, []).append(event)

    def add_staff(self, staff_id: str, name: str) -> None:
        self.staff[staff_id] = name

    async def get_alert(self, alert_id: str) -> AlertRecord | None:
        return self.alerts.get(alert_id)

    async def list_sop_responses(self, alert_id: str) -> list[SOPResponseRecord]:
        # newest first, matching the SQL adapter
        responses = self.sop_responses.get(alert_id, [])
        started = [r for r in responses if r.started_at is not None]
        unstarted = [r for r in responses if r.started_at is None]
        return sorted(started, key=lambda r: r.started_at, reverse=True) + unstarted

    async def list_timeline(self, alert_id: str) -> list[AlertEventRecord]:
        return sorted(self.events.get(alert_id, []), key=lambda e: e.created_at)

    async def get_staff_names(self, staff_ids: Sequence[str]) -> dict[str, str]:
        self.staff_lookups.append(list(staff_ids))
        return {staff_id: self.staff[staff_id] for staff_id in staff_ids if staff_id in self.staff}


class InMemoryTagSource:
    def __init__(self) -> None:
        self.tags: dict[str, list[Tag]] = {}
        self.transcripts: dict[str, str] = {}

    def set_recording(
        self, alert_id: str, tags: Sequence[Tag], transcript: str | None = None
    ) -> None:
        self.tags[alert_id] = list(tags)
        if transcript is not None:
            self.transcripts[alert_id] = transcript

    async def get_tags(self, alert_id: str) -> list[Tag]:
        return list(self.tags.get(alert_id, []))

    async def get_transcript(self, alert_id: str) -> str | None:
        return self.transcripts.get(alert_id)
