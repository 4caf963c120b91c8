"""
Storage contracts used by the drafter and finalizer.

Following the same protocol-based injection as the rest of the services: the
core never imports a database driver. Adapters live in `adapters.postgres`
(SQL through a `QueryExecutor`) and `adapters.memory` (tests and demos).

Every incident write is conditional. `create_draft` inserts only when the
alert has no incident yet, and `update_where_status` applies only while the
row is still in one of the expected statuses and, when given, still carries
the `updated_at` the caller read. Both return None when their precondition no
longer holds, so two racing writers can never both win.
"""

from collections.abc import Collection, Sequence
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from compliance_core.domain.incidents import (
    AlertEventRecord,
    AlertRecord,
    Incident,
    IncidentStatus,
    IncidentUpdate,
    SOPResponseRecord,
    Tag,
)


@runtime_checkable
class QueryExecutor(Protocol):
    """Parameterized SQL in, rows out. Raises on failure."""

    async def fetch(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]: ...


class IncidentStore(Protocol):
    async def get(self, incident_id: str) -> Incident | None: ...

    async def find_for_alert(self, alert_id: str) -> Incident | None: ...

    async def create_draft(self, incident: Incident) -> Incident | None:
        """Insert unless any incident already exists for `incident.alert_id`."""
        ...

    async def update_where_status(
        self,
        incident_id: str,
        expected: Collection[IncidentStatus],
        update: IncidentUpdate,
        *,
        expected_updated_at: datetime | None = None,
    ) -> Incident | None:
        """
        Apply `update` only if the row's status is in `expected`.

        With `expected_updated_at`, the row must also be unchanged since it was
        read: any other write in between moves `updated_at` and the update is
        refused.
        """
        ...


class AlertDataSource(Protocol):
    """Read side of alerts, SOP responses, alert events and staff."""

    async def get_alert(self, alert_id: str) -> AlertRecord | None: ...

    async def list_sop_responses(self, alert_id: str) -> list[SOPResponseRecord]: ...

    async def list_timeline(self, alert_id: str) -> list[AlertEventRecord]: ...

    async def get_staff_names(self, staff_ids: Sequence[str]) -> dict[str, str]:
        """Resolve many staff ids in one round trip. Unknown ids are omitted."""
        ...


class TagSource(Protocol):
    """Output of the external tagging/transcription service for an alert's latest recording."""

    async def get_tags(self, alert_id: str) -> list[Tag]: ...

    async def get_transcript(self, alert_id: str) -> str | None: ...
