"""
Tests for the PostgreSQL adapter.

Covers:
- Row mapping for incidents, alerts, SOP responses, timeline and tags
- JSONB columns accepted decoded or as text; malformed rows raise StoreError
- Conditional insert and conditional update statements and their parameters
- Empty results reported as a failed precondition (None)

A recording executor stands in for the database driver: it captures every
statement and returns queued rows.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import timedelta
from typing import Any

import pytest

from adapters.postgres import (
    PostgresAlertDataSource,
    PostgresIncidentStore,
    PostgresTagSource,
    incident_from_row,
)
from compliance_core.domain.incidents import Incident, IncidentStatus, IncidentUpdate
from compliance_core.errors import StoreError
from tests.factories import NOW, make_draft, make_incident


class RecordingExecutor:
    def __init__(self, *results: list[dict[str, Any]]) -> None:
        self.results = list(results)
        self.calls: list[tuple[str, list[Any]]] = []

    async def fetch(self, sql: str, params: Sequence[Any] = ()) -> list[dict[str, Any]]:
        self.calls.append((sql, list(params)))
        return self.results.pop(0) if self.results else []


def incident_row(incident: Incident, *, as_text: bool = True) -> dict[str, Any]:
    draft = incident.draft_data.model_dump_json(by_alias=True)
    return {
        "id": incident.id,
        "alertId": incident.alert_id,
        "clientId": incident.client_id,
        "incidentType": incident.incident_type.value,
        "status": incident.status.value,
        "draftData": draft if as_text else json.loads(draft),
        "finalizedData": None,
        "createdBy": incident.created_by,
        "reviewedBy": incident.reviewed_by,
        "finalizedBy": None,
        "finalizedAt": None,
        "createdAt": incident.created_at,
        "updatedAt": incident.updated_at,
    }


class TestIncidentRows:
    @pytest.mark.parametrize("as_text", [True, False])
    def test_round_trip(self, as_text: bool) -> None:
        incident = make_incident(IncidentStatus.REVIEW, reviewed_by="lead-1")
        assert incident_from_row(incident_row(incident, as_text=as_text)) == incident

    def test_missing_status_defaults_to_draft(self) -> None:
        row = incident_row(make_incident())
        row["status"] = None
        assert incident_from_row(row).status == IncidentStatus.DRAFT

    @pytest.mark.parametrize(
        "change",
        [
            {"draftData": "{not json"},
            {"incidentType": "OTHER"},
            {"createdBy": None},
        ],
    )
    def test_malformed_row(self, change: dict[str, Any]) -> None:
        row = incident_row(make_incident()) | change
        with pytest.raises(StoreError, match="incident-1"):
            incident_from_row(row)

    def test_missing_column(self) -> None:
        row = incident_row(make_incident())
        del row["alertId"]
        with pytest.raises(StoreError):
            incident_from_row(row)


class TestPostgresIncidentStore:
    @pytest.mark.asyncio
    async def test_get(self) -> None:
        incident = make_incident()
        executor = RecordingExecutor([incident_row(incident)])

        assert await PostgresIncidentStore(executor).get("incident-1") == incident
        assert executor.calls == [('SELECT * FROM "Incident" WHERE id = $1', ["incident-1"])]

    @pytest.mark.asyncio
    async def test_get_missing(self) -> None:
        assert await PostgresIncidentStore(RecordingExecutor()).get("missing") is None

    @pytest.mark.asyncio
    async def test_find_for_alert_takes_oldest(self) -> None:
        executor = RecordingExecutor([incident_row(make_incident())])

        found = await PostgresIncidentStore(executor).find_for_alert("alert-1")

        assert found is not None
        sql, params = executor.calls[0]
        assert 'ORDER BY "createdAt" ASC LIMIT 1' in sql
        assert params == ["alert-1"]

    @pytest.mark.asyncio
    async def test_create_draft_is_guarded(self) -> None:
        incident = make_incident()
        executor = RecordingExecutor([incident_row(incident)])

        created = await PostgresIncidentStore(executor).create_draft(incident)

        assert created == incident
        sql, params = executor.calls[0]
        assert 'WHERE NOT EXISTS (SELECT 1 FROM "Incident" WHERE "alertId" = $2)' in sql
        assert "$6::jsonb" in sql
        assert params[:5] == ["incident-1", "alert-1", "client-1", "UI", "draft"]
        assert json.loads(params[5])["incidentType"] == "UI"
        assert params[6:] == ["staff-1", incident.created_at, incident.updated_at]

    @pytest.mark.asyncio
    async def test_create_draft_loses_race(self) -> None:
        created = await PostgresIncidentStore(RecordingExecutor([])).create_draft(make_incident())
        assert created is None

    @pytest.mark.asyncio
    async def test_update_where_status(self) -> None:
        finalized = make_incident(IncidentStatus.FINALIZED, finalized_by="director-1")
        executor = RecordingExecutor([incident_row(finalized)])
        update = IncidentUpdate(
            status=IncidentStatus.FINALIZED,
            draft_data=make_draft(),
            reviewed_by=None,
            finalized_by="director-1",
            updated_at=NOW,
        )

        result = await PostgresIncidentStore(executor).update_where_status(
            "incident-1", {IncidentStatus.REVIEW, IncidentStatus.DRAFT}, update
        )

        assert result is not None
        assert result.status == IncidentStatus.FINALIZED
        sql, params = executor.calls[0]
        assert sql == (
            'UPDATE "Incident" SET status = $1, "draftData" = $2::jsonb, "reviewedBy" = $3, '
            '"finalizedBy" = $4, "updatedAt" = $5 '
            "WHERE id = $6 AND status = ANY($7::text[]) RETURNING *"
        )
        assert params[0] == "finalized"
        assert json.loads(params[1])["location"] == "Living room"
        assert params[2:] == [None, "director-1", NOW, "incident-1", ["draft", "review"]]

    @pytest.mark.asyncio
    async def test_update_guarded_by_observed_updated_at(self) -> None:
        observed = NOW - timedelta(hours=1)
        executor = RecordingExecutor([])

        result = await PostgresIncidentStore(executor).update_where_status(
            "incident-1",
            {IncidentStatus.DRAFT},
            IncidentUpdate(status=IncidentStatus.FINALIZED, updated_at=NOW),
            expected_updated_at=observed,
        )

        assert result is None
        sql, params = executor.calls[0]
        assert sql == (
            'UPDATE "Incident" SET status = $1, "updatedAt" = $2 '
            'WHERE id = $3 AND status = ANY($4::text[]) AND "updatedAt" = $5 RETURNING *'
        )
        assert params == ["finalized", NOW, "incident-1", ["draft"], observed]

    @pytest.mark.asyncio
    async def test_update_precondition_failed(self) -> None:
        store = PostgresIncidentStore(RecordingExecutor([]))

        result = await store.update_where_status(
            "incident-1", {IncidentStatus.FINALIZED}, IncidentUpdate(status=IncidentStatus.LOCKED)
        )

        assert result is None


class TestPostgresAlertDataSource:
    @pytest.mark.asyncio
    async def test_get_alert(self) -> None:
        executor = RecordingExecutor(
            [
                {
                    "id": "alert-1",
                    "clientId": "client-1",
                    "clientName": "Jordan Client",
                    "message": None,
                    "type": "behavior",
                    "detectionType": "fall",
                    "detectionLocation": "Hallway",
                    "location": None,
                    "severity": "high",
                    "createdAt": NOW,
                }
            ]
        )

        alert = await PostgresAlertDataSource(executor).get_alert("alert-1")

        assert alert is not None
        assert alert.message == ""
        assert alert.alert_type == "behavior"
        assert alert.detection_type == "fall"
        assert alert.detection_location == "Hallway"
        assert alert.client_name == "Jordan Client"

    @pytest.mark.asyncio
    async def test_get_alert_missing(self) -> None:
        assert await PostgresAlertDataSource(RecordingExecutor()).get_alert("alert-9") is None

    @pytest.mark.asyncio
    async def test_list_sop_responses(self) -> None:
        executor = RecordingExecutor(
            [
                {
                    "id": "sop-response-1",
                    "sopId": "sop-1",
                    "sopName": "Fall Response",
                    "status": None,
                    "staffId": "staff-1",
                    "sopSteps": '[{"step": 1, "action": "Check for injury"}]',
                    "completedSteps": None,
                    "startedAt": NOW,
                },
                {
                    "id": "sop-response-2",
                    "sopId": None,
                    "sopName": None,
                    "status": "completed",
                    "staffId": None,
                    "sopSteps": None,
                    "completedSteps": [{"step": 1}],
                    "startedAt": None,
                },
            ]
        )

        first, second = await PostgresAlertDataSource(executor).list_sop_responses("alert-1")

        assert first.status == "in_progress"
        assert first.steps == [{"step": 1, "action": "Check for injury"}]
        assert first.completed_steps == []
        assert second.steps is None
        assert second.completed_steps == [{"step": 1}]

    @pytest.mark.asyncio
    async def test_list_timeline(self) -> None:
        executor = RecordingExecutor(
            [
                {
                    "id": "event-1",
                    "eventType": "acknowledged",
                    "staffId": "staff-1",
                    "message": None,
                    "createdAt": NOW,
                }
            ]
        )

        [event] = await PostgresAlertDataSource(executor).list_timeline("alert-1")

        assert event.event_type == "acknowledged"
        assert event.staff_id == "staff-1"

    @pytest.mark.asyncio
    async def test_staff_names(self) -> None:
        executor = RecordingExecutor(
            [{"id": "staff-1", "name": "Sam Staff"}, {"id": "staff-2", "name": None}]
        )
        source = PostgresAlertDataSource(executor)

        names = await source.get_staff_names(("staff-1", "staff-2"))

        assert names == {"staff-1": "Sam Staff"}
        assert executor.calls[0][1] == [["staff-1", "staff-2"]]

    @pytest.mark.asyncio
    async def test_no_staff_no_query(self) -> None:
        executor = RecordingExecutor()
        assert await PostgresAlertDataSource(executor).get_staff_names([]) == {}
        assert executor.calls == []


class TestPostgresTagSource:
    @pytest.mark.asyncio
    async def test_tags_from_latest_recording(self) -> None:
        executor = RecordingExecutor(
            [
                {"tagType": "motion", "tagValue": "fall", "confidence": 0.9},
                {"tagType": "tone", "tagValue": "distressed", "confidence": None},
            ]
        )

        tags = await PostgresTagSource(executor).get_tags("alert-1")

        assert [(t.tag_type, t.tag_value, t.confidence) for t in tags] == [
            ("motion", "fall", 0.9),
            ("tone", "distressed", None),
        ]
        sql, params = executor.calls[0]
        assert 'ORDER BY "createdAt" DESC LIMIT 1' in sql
        assert params == ["alert-1"]

    @pytest.mark.asyncio
    async def test_transcript(self) -> None:
        source = PostgresTagSource(RecordingExecutor([{"transcriptText": "I fell"}], []))

        assert await source.get_transcript("alert-1") == "I fell"
        assert await source.get_transcript("alert-1") is None
