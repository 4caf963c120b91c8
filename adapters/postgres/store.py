"""
PostgreSQL storage adapter.

Speaks to the existing schema ("Incident", "Alert", "SOPResponse", ...) with
quoted camelCase columns, through any `QueryExecutor` that takes `$n`
positional parameters and returns rows as dicts. JSONB columns are written as
JSON text and accepted back either decoded or as text.

Incident writes carry their precondition in the statement itself:
- conditional insert: `INSERT ... SELECT ... WHERE NOT EXISTS (...)`
- conditional update: `UPDATE ... WHERE id = $n AND status = ANY($m)
  [AND "updatedAt" = $k] RETURNING *`
An empty result means the precondition failed and nothing was written. A
unique index on "Incident"("alertId") makes the insert guard airtight under
concurrent transactions; without it two inserts may still both pass the check.
"""

import json
from collections.abc import Collection, Sequence
from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from compliance_core.domain.incidents import (
    AlertEventRecord,
    AlertRecord,
    Incident,
    IncidentStatus,
    IncidentUpdate,
    SOPResponseRecord,
    Tag,
)
from compliance_core.errors import StoreError
from compliance_core.services.store import QueryExecutor

logger = structlog.get_logger(__name__)

# IncidentUpdate field -> "Incident" column
INCIDENT_COLUMNS = {
    "status": "status",
    "incident_type": '"incidentType"',
    "draft_data": '"draftData"',
    "finalized_data": '"finalizedData"',
    "reviewed_by": '"reviewedBy"',
    "finalized_by": '"finalizedBy"',
    "finalized_at": '"finalizedAt"',
    "updated_at": '"updatedAt"',
}
JSON_COLUMNS = frozenset({"draft_data", "finalized_data"})

LATEST_RECORDING_SQL = (
    'SELECT id FROM "Recording" WHERE "alertId" = $1 ORDER BY "createdAt" DESC LIMIT 1'
)


def _decode_json(value: Any) -> Any:
    return json.loads(value) if isinstance(value, (str, bytes)) else value


def _encode_value(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump_json(by_alias=True)
    if isinstance(value, Enum):
        return value.value
    return value


def incident_from_row(row: dict[str, Any]) -> Incident:
    """Map an "Incident" row onto the domain model."""
    try:
        return Incident(
            id=row["id"],
            alert_id=row["alertId"],
            client_id=row.get("clientId"),
            incident_type=row["incidentType"],
            status=row.get("status") or IncidentStatus.DRAFT,
            draft_data=_decode_json(row["draftData"]),
            finalized_data=_decode_json(row.get("finalizedData")),
            created_by=row["createdBy"],
            reviewed_by=row.get("reviewedBy"),
            finalized_by=row.get("finalizedBy"),
            finalized_at=row.get("finalizedAt"),
            created_at=row["createdAt"],
            updated_at=row["updatedAt"],
        )
    except (KeyError, ValidationError, json.JSONDecodeError) as e:
        raise StoreError(f"Malformed incident row {row.get('id')!r}: {e}") from e


class PostgresIncidentStore:
    """`IncidentStore` over the "Incident" table."""

    def __init__(self, executor: QueryExecutor) -> None:
        self.executor = executor
        self.logger = logger.bind(component="postgres_incident_store")

    async def get(self, incident_id: str) -> Incident | None:
        rows = await self.executor.fetch('SELECT * FROM "Incident" WHERE id = $1', [incident_id])
        return incident_from_row(rows[0]) if rows else None

    async def find_for_alert(self, alert_id: str) -> Incident | None:
        rows = await self.executor.fetch(
            'SELECT * FROM "Incident" WHERE "alertId" = $1 ORDER BY "createdAt" ASC LIMIT 1',
            [alert_id],
        )
        return incident_from_row(rows[0]) if rows else None

    async def create_draft(self, incident: Incident) -> Incident | None:
        sql = """
            INSERT INTO "Incident" (
                id, "alertId", "clientId", "incidentType", status, "draftData",
                "createdBy", "createdAt", "updatedAt"
            )
            SELECT $1, $2, $3, $4, $5, $6::jsonb, $7, $8, $9
            WHERE NOT EXISTS (SELECT 1 FROM "Incident" WHERE "alertId" = $2)
            RETURNING *
        """
        params = [
            incident.id,
            incident.alert_id,
            incident.client_id,
            incident.incident_type.value,
            incident.status.value,
            incident.draft_data.model_dump_json(by_alias=True),
            incident.created_by,
            incident.created_at,
            incident.updated_at,
        ]
        rows = await self.executor.fetch(sql, params)
        if not rows:
            self.logger.info("incident_insert_skipped", alert_id=incident.alert_id)
            return None
        return incident_from_row(rows[0])

    async def update_where_status(
        self,
        incident_id: str,
        expected: Collection[IncidentStatus],
        update: IncidentUpdate,
        *,
        expected_updated_at: datetime | None = None,
    ) -> Incident | None:
        changes = update.changes()
        assignments: list[str] = []
        params: list[Any] = []
        for field, column in INCIDENT_COLUMNS.items():
            if field not in changes:
                continue
            params.append(_encode_value(changes[field]))
            cast = "::jsonb" if field in JSON_COLUMNS else ""
            assignments.append(f"{column} = ${len(params)}{cast}")

        params.append(incident_id)
        id_param = len(params)
        params.append(sorted(status.value for status in expected))
        status_param = len(params)
        conditions = [f"id = ${id_param}", f"status = ANY(${status_param}::text[])"]
        if expected_updated_at is not None:
            params.append(expected_updated_at)
            conditions.append(f'"updatedAt" = ${len(params)}')

        sql = (
            f'UPDATE "Incident" SET {", ".join(assignments)} '
            f"WHERE {' AND '.join(conditions)} RETURNING *"
        )
        rows = await self.executor.fetch(sql, params)
        if not rows:
            self.logger.info(
                "incident_update_precondition_failed",
                incident_id=incident_id,
                expected=params[status_param - 1],
                expected_updated_at=expected_updated_at,
            )
            return None
        return incident_from_row(rows[0])


class PostgresAlertDataSource:
    """`AlertDataSource` over "Alert", "SOPResponse", "AlertEvent" and "User"."""

    def __init__(self, executor: QueryExecutor) -> None:
        self.executor = executor

    async def get_alert(self, alert_id: str) -> AlertRecord | None:
        sql = """
            SELECT
                a.*,
                d."detectionType",
                d.location AS "detectionLocation",
                d.severity,
                c.name AS "clientName"
            FROM "Alert" a
            LEFT JOIN "Detection" d ON a."detectionId" = d.id
            LEFT JOIN "Client" c ON a."clientId" = c.id
            WHERE a.id = $1
        """
        rows = await self.executor.fetch(sql, [alert_id])
        if not rows:
            return None
        row = rows[0]
        return AlertRecord(
            id=row["id"],
            client_id=row.get("clientId"),
            client_name=row.get("clientName"),
            message=row.get("message") or "",
            alert_type=row.get("type"),
            detection_type=row.get("detectionType"),
            detection_location=row.get("detectionLocation"),
            location=row.get("location"),
            severity=row.get("severity"),
            created_at=row["createdAt"],
        )

    async def list_sop_responses(self, alert_id: str) -> list[SOPResponseRecord]:
        sql = """
            SELECT
                sr.id,
                sr."sopId",
                sr.status,
                sr."staffId",
                sr."completedSteps",
                sr."startedAt",
                s.name AS "sopName",
                CASE WHEN s.id IS NULL THEN NULL ELSE COALESCE(s.steps, '[]'::jsonb) END
                    AS "sopSteps"
            FROM "SOPResponse" sr
            LEFT JOIN "SOP" s ON sr."sopId" = s.id
            WHERE sr."alertId" = $1
            ORDER BY sr."startedAt" DESC
        """
        rows = await self.executor.fetch(sql, [alert_id])
        return [
            SOPResponseRecord(
                id=row["id"],
                sop_id=row.get("sopId"),
                sop_name=row.get("sopName"),
                status=row.get("status") or "in_progress",
                staff_id=row.get("staffId"),
                steps=_decode_json(row.get("sopSteps")),
                completed_steps=_decode_json(row.get("completedSteps")) or [],
                started_at=row.get("startedAt"),
            )
            for row in rows
        ]

    async def list_timeline(self, alert_id: str) -> list[AlertEventRecord]:
        rows = await self.executor.fetch(
            'SELECT id, "eventType", "staffId", message, "createdAt" FROM "AlertEvent" '
            'WHERE "alertId" = $1 ORDER BY "createdAt" ASC',
            [alert_id],
        )
        return [
            AlertEventRecord(
                id=row["id"],
                event_type=row["eventType"],
                staff_id=row.get("staffId"),
                message=row.get("message"),
                created_at=row["createdAt"],
            )
            for row in rows
        ]

    async def get_staff_names(self, staff_ids: Sequence[str]) -> dict[str, str]:
        if not staff_ids:
            return {}
        rows = await self.executor.fetch(
            'SELECT id, name FROM "User" WHERE id = ANY($1::text[])', [list(staff_ids)]
        )
        return {row["id"]: row["name"] for row in rows if row.get("name")}


class PostgresTagSource:
    """`TagSource` over the latest "Recording" of an alert."""

    def __init__(self, executor: QueryExecutor) -> None:
        self.executor = executor

    async def get_tags(self, alert_id: str) -> list[Tag]:
        sql = f"""
            SELECT t."tagType", t."tagValue", t.confidence
            FROM "NotationTag" t
            WHERE t."recordingId" = ({LATEST_RECORDING_SQL})
            ORDER BY t."timestamp" NULLS LAST, t."createdAt"
        """
        rows = await self.executor.fetch(sql, [alert_id])
        return [Tag.model_validate(row) for row in rows]

    async def get_transcript(self, alert_id: str) -> str | None:
        sql = f"""
            SELECT "transcriptText"
            FROM "Transcript"
            WHERE "recordingId" = ({LATEST_RECORDING_SQL})
            ORDER BY "createdAt" DESC
            LIMIT 1
        """
        rows = await self.executor.fetch(sql, [alert_id])
        return rows[0]["transcriptText"] if rows else None
