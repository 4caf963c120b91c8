"""
Tests for the incident drafter.

Covers:
- Incident type inference (MUI keywords outrank UI keywords)
- Draft assembly from alert, SOP responses, timeline and staff names
- AI analysis block and transcript excerpt when tags exist
- SOP validation summary folded into the draft
- Persistence: insert, regenerate in place, refusal once out of draft, lost insert race,
  and refusal when the incident changed after it was read
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime, timedelta

import pytest

from adapters.memory import InMemoryAlertDataSource, InMemoryIncidentStore, InMemoryTagSource
from compliance_core.config import IncidentConfig
from compliance_core.domain.incidents import (
    AlertRecord,
    DraftOptions,
    Incident,
    IncidentStatus,
    IncidentType,
    IncidentUpdate,
    SOPResponseRecord,
    Tag,
)
from compliance_core.errors import AlertNotFoundError, LifecycleErrorCode
from compliance_core.services.incident_drafter import (
    UNKNOWN_LOCATION,
    IncidentDrafter,
    determine_incident_type,
)
from compliance_core.services.tag_analysis import TagAnalysisService
from tests.factories import NOW, completed_step, make_draft, make_incident


def tags(*values: str) -> list[Tag]:
    return [Tag(tag_type="tone", tag_value=value) for value in values]


@pytest.fixture
def drafter(
    alert_source: InMemoryAlertDataSource,
    incident_store: InMemoryIncidentStore,
    tag_source: InMemoryTagSource,
) -> IncidentDrafter:
    ids = iter(f"incident-{n}" for n in range(1, 100))
    return IncidentDrafter(
        alert_source,
        incident_store,
        tag_analysis=TagAnalysisService(tag_source),
        id_factory=lambda: next(ids),
    )


class TestDetermineIncidentType:
    def test_mui_keyword_outranks_ui_keyword(self) -> None:
        assert determine_incident_type(tags("agitated"), detection_type="fall") == IncidentType.MUI
        assert determine_incident_type(tags("fall", "agitated")) == IncidentType.MUI
        assert determine_incident_type(tags("agitated", "fall")) == IncidentType.MUI

    def test_ui_keywords(self) -> None:
        assert determine_incident_type(tags("agitated")) == IncidentType.UI
        assert determine_incident_type([], alert_type="behavioral") == IncidentType.UI

    def test_defaults_to_ui(self) -> None:
        assert determine_incident_type([]) == IncidentType.UI
        assert determine_incident_type(tags("calm"), "check_in", "door_open") == IncidentType.UI

    def test_case_insensitive(self) -> None:
        assert determine_incident_type([], alert_type="MEDICAL EMERGENCY") == IncidentType.MUI


class TestGenerateDraft:
    @pytest.mark.asyncio
    async def test_assembles_draft(
        self, drafter: IncidentDrafter, alert_source: InMemoryAlertDataSource
    ) -> None:
        draft = await drafter.generate_draft("alert-1", now=NOW)

        assert draft.incident_type == IncidentType.UI
        assert draft.incident_date == "2025-03-14"
        assert draft.incident_time == "12:30:00"
        assert draft.location == "Living room"
        assert draft.client.id == "client-1"
        assert draft.client.name == "Jordan Client"
        assert draft.description == (
            "Incident occurred: Client became agitated in the living room\n"
            "Detection Type: raised voice"
        )
        assert [(member.id, member.name) for member in draft.staff] == [
            ("staff-1", "Sam Staff"),
            ("staff-2", "Riley Staff"),
        ]
        assert draft.actions_taken == [
            "Approached calmly: Spoke softly",
            "Offered a quiet space: Moved to bedroom",
        ]
        assert draft.metadata == {
            "alert_id": "alert-1",
            "detection_type": "raised_voice",
            "severity": "medium",
        }
        assert draft.ai_analysis is None
        assert alert_source.staff_lookups == [["staff-1", "staff-2"]]

    @pytest.mark.asyncio
    async def test_timeline(self, drafter: IncidentDrafter) -> None:
        draft = await drafter.generate_draft("alert-1", now=NOW)

        first, second = draft.timeline
        assert first.timestamp == "2025-03-14T12:31:00+00:00"
        assert first.event == "acknowledged"
        assert first.staff == "Sam Staff"
        assert first.message == "On my way"
        assert second.event == "notes added"
        assert second.staff == "Riley Staff"

    @pytest.mark.asyncio
    async def test_timeline_can_be_omitted(self, drafter: IncidentDrafter) -> None:
        draft = await drafter.generate_draft(
            "alert-1", DraftOptions(include_timeline=False), now=NOW
        )
        assert draft.timeline == []

    @pytest.mark.asyncio
    async def test_sop_summary_and_validation(self, drafter: IncidentDrafter) -> None:
        draft = await drafter.generate_draft("alert-1", now=NOW)

        [summary] = draft.sop_responses
        assert summary.id == "sop-response-1"
        assert summary.sop_name == "Behavioral De-escalation"
        assert (summary.completed_steps, summary.total_steps) == (2, 2)
        assert draft.validation_results is not None
        assert draft.validation_results.model_dump() == {
            "is_valid": True,
            "errors": 0,
            "warnings": 0,
        }

    @pytest.mark.asyncio
    async def test_incomplete_sop_counted(
        self, drafter: IncidentDrafter, alert_source: InMemoryAlertDataSource
    ) -> None:
        alert_source.add_sop_response(
            "alert-1",
            SOPResponseRecord(
                id="sop-response-2",
                sop_id="sop-2",
                sop_name="Fall Response",
                staff_id="staff-3",
                steps=[{"step": 1, "action": "Check for injury"}, {"step": 2, "action": "Call"}],
                completed_steps=[completed_step(1, completed_at=None)],
                started_at=NOW - timedelta(hours=1),
            ),
        )

        draft = await drafter.generate_draft("alert-1", now=NOW)

        assert draft.validation_results is not None
        assert draft.validation_results.is_valid is False
        assert draft.validation_results.errors == 2
        assert [s.id for s in draft.sop_responses] == ["sop-response-2", "sop-response-1"]

    @pytest.mark.asyncio
    async def test_response_without_sop_steps(
        self, drafter: IncidentDrafter, alert_source: InMemoryAlertDataSource
    ) -> None:
        alert_source.add_sop_response(
            "alert-1",
            SOPResponseRecord(
                id="orphan", steps=None, completed_steps=[completed_step(1, action="")]
            ),
        )

        draft = await drafter.generate_draft("alert-1", now=NOW)

        orphan = next(s for s in draft.sop_responses if s.id == "orphan")
        assert orphan.sop_name == "Unknown SOP"
        assert (orphan.completed_steps, orphan.total_steps) == (1, 1)
        assert draft.validation_results is not None
        assert draft.validation_results.errors == 0

    @pytest.mark.asyncio
    async def test_validation_can_be_skipped(self, drafter: IncidentDrafter) -> None:
        draft = await drafter.generate_draft(
            "alert-1", DraftOptions(include_validation=False), now=NOW
        )
        assert draft.validation_results is None

    @pytest.mark.asyncio
    async def test_ai_analysis_from_tags(
        self, drafter: IncidentDrafter, tag_source: InMemoryTagSource
    ) -> None:
        transcript = "Staff: are you okay? " * 20
        tag_source.set_recording(
            "alert-1",
            [Tag(tag_type="tone", tag_value="agitated"), Tag(tag_type="motion", tag_value="fall")],
            transcript,
        )

        draft = await drafter.generate_draft("alert-1", now=NOW)

        assert draft.incident_type == IncidentType.MUI
        assert draft.ai_analysis is not None
        assert draft.ai_analysis.risk_level == "high"
        assert draft.ai_analysis.critical_tags == ["agitated", "fall"]
        assert draft.ai_analysis.escalation_level == "high"
        assert "Transcript Excerpt:\n" + transcript[:300] + "..." in draft.description
        assert draft.description.endswith(f"AI Analysis: {draft.ai_analysis.summary}")

    @pytest.mark.asyncio
    async def test_transcript_without_tags(
        self, drafter: IncidentDrafter, tag_source: InMemoryTagSource
    ) -> None:
        tag_source.set_recording("alert-1", [], "Everything is fine now")

        draft = await drafter.generate_draft("alert-1", now=NOW)

        assert draft.ai_analysis is None
        assert draft.description.endswith("Transcript Excerpt:\nEverything is fine now")

    @pytest.mark.asyncio
    async def test_ai_analysis_can_be_skipped(
        self, drafter: IncidentDrafter, tag_source: InMemoryTagSource
    ) -> None:
        tag_source.set_recording("alert-1", [Tag(tag_type="motion", tag_value="fall")])

        draft = await drafter.generate_draft(
            "alert-1", DraftOptions(include_ai_analysis=False), now=NOW
        )

        assert draft.ai_analysis is None
        assert draft.incident_type == IncidentType.UI

    @pytest.mark.asyncio
    async def test_excerpt_length_configurable(
        self,
        alert_source: InMemoryAlertDataSource,
        incident_store: InMemoryIncidentStore,
        tag_source: InMemoryTagSource,
    ) -> None:
        tag_source.set_recording("alert-1", [], "abcdefghij")
        drafter = IncidentDrafter(
            alert_source,
            incident_store,
            tag_analysis=TagAnalysisService(tag_source),
            config=IncidentConfig(transcript_excerpt_length=4),
        )

        draft = await drafter.generate_draft("alert-1", now=NOW)

        assert draft.description.endswith("Transcript Excerpt:\nabcd...")

    @pytest.mark.asyncio
    async def test_sparse_alert(self, incident_store: InMemoryIncidentStore) -> None:
        source = InMemoryAlertDataSource()
        source.add_alert(AlertRecord(id="alert-9", created_at=NOW, message="Door opened"))
        drafter = IncidentDrafter(source, incident_store)

        draft = await drafter.generate_draft("alert-9", now=NOW)

        assert draft.location == UNKNOWN_LOCATION
        assert draft.client.name == "Unknown"
        assert draft.client.id is None
        assert draft.staff == []
        assert draft.description == "Incident occurred: Door opened"
        assert draft.validation_results is not None
        assert draft.validation_results.is_valid is True

    @pytest.mark.asyncio
    async def test_alert_location_fallback(self, incident_store: InMemoryIncidentStore) -> None:
        source = InMemoryAlertDataSource()
        source.add_alert(AlertRecord(id="alert-9", created_at=NOW, location="Bedroom"))

        draft = await IncidentDrafter(source, incident_store).generate_draft("alert-9", now=NOW)

        assert draft.location == "Bedroom"

    @pytest.mark.asyncio
    async def test_unresolved_staff_left_out(
        self, drafter: IncidentDrafter, alert_source: InMemoryAlertDataSource
    ) -> None:
        del alert_source.staff["staff-2"]

        draft = await drafter.generate_draft("alert-1", now=NOW)

        assert [member.id for member in draft.staff] == ["staff-1"]
        assert draft.timeline[1].staff == "Unknown"

    @pytest.mark.asyncio
    async def test_missing_alert(self, drafter: IncidentDrafter) -> None:
        with pytest.raises(AlertNotFoundError, match="Alert not found: nope"):
            await drafter.generate_draft("nope", now=NOW)

    @pytest.mark.asyncio
    async def test_same_state_same_draft(self, drafter: IncidentDrafter) -> None:
        first = await drafter.generate_draft("alert-1", now=NOW)
        second = await drafter.generate_draft("alert-1", now=NOW)
        assert first == second


class TestGenerateAndPersist:
    @pytest.mark.asyncio
    async def test_creates_draft_incident(
        self, drafter: IncidentDrafter, incident_store: InMemoryIncidentStore
    ) -> None:
        result = await drafter.generate_and_persist("alert-1", "staff-1", now=NOW)

        outcome = result.unwrap()
        assert outcome.created is True
        assert outcome.incident.id == "incident-1"
        assert outcome.incident.status == IncidentStatus.DRAFT
        assert outcome.incident.client_id == "client-1"
        assert outcome.incident.created_by == "staff-1"
        assert outcome.incident.created_at == NOW
        assert outcome.incident.draft_data == outcome.draft_data
        assert len(incident_store.all()) == 1

    @pytest.mark.asyncio
    async def test_regenerates_existing_draft(
        self,
        drafter: IncidentDrafter,
        incident_store: InMemoryIncidentStore,
        tag_source: InMemoryTagSource,
    ) -> None:
        await drafter.generate_and_persist("alert-1", "staff-1", now=NOW)
        tag_source.set_recording("alert-1", [Tag(tag_type="motion", tag_value="fall")])
        later = NOW + timedelta(minutes=5)

        outcome = (await drafter.generate_and_persist("alert-1", "staff-2", now=later)).unwrap()

        assert outcome.created is False
        assert outcome.incident.id == "incident-1"
        assert outcome.incident.incident_type == IncidentType.MUI
        assert outcome.incident.created_by == "staff-1"
        assert outcome.incident.updated_at == later
        assert len(incident_store.all()) == 1

    @pytest.mark.parametrize(
        ("status", "code"),
        [
            (IncidentStatus.REVIEW, LifecycleErrorCode.PRECONDITION_FAILED),
            (IncidentStatus.FINALIZED, LifecycleErrorCode.ALREADY_FINALIZED),
            (IncidentStatus.LOCKED, LifecycleErrorCode.LOCKED),
        ],
    )
    @pytest.mark.asyncio
    async def test_refuses_once_out_of_draft(
        self,
        drafter: IncidentDrafter,
        incident_store: InMemoryIncidentStore,
        status: IncidentStatus,
        code: LifecycleErrorCode,
    ) -> None:
        original = make_incident(status)
        incident_store.put(original)

        result = await drafter.generate_and_persist("alert-1", "staff-1", now=NOW)

        assert result.is_err()
        assert result.unwrap_err().code == code
        assert result.unwrap_err().incident_id == "incident-1"
        assert await incident_store.get("incident-1") == original
        assert incident_store.writes == 0

    @pytest.mark.asyncio
    async def test_regeneration_refused_when_incident_changed_after_read(
        self, alert_source: InMemoryAlertDataSource
    ) -> None:
        class EditedStore(InMemoryIncidentStore):
            """A reviewer's edit lands between our read and our conditional write."""

            async def update_where_status(
                self,
                incident_id: str,
                expected: Collection[IncidentStatus],
                update: IncidentUpdate,
                *,
                expected_updated_at: datetime | None = None,
            ) -> Incident | None:
                edited = make_draft(location="Back porch")
                self.put(make_incident(draft_data=edited, updated_at=NOW))
                return await super().update_where_status(
                    incident_id, expected, update, expected_updated_at=expected_updated_at
                )

        store = EditedStore([make_incident()])
        drafter = IncidentDrafter(alert_source, store)

        result = await drafter.generate_and_persist(
            "alert-1", "staff-1", now=NOW + timedelta(minutes=5)
        )

        error = result.unwrap_err()
        assert error.code == LifecycleErrorCode.PRECONDITION_FAILED
        assert error.message == "Incident changed while the draft was being regenerated"
        stored = await store.get("incident-1")
        assert stored is not None
        assert stored.draft_data.location == "Back porch"

    @pytest.mark.asyncio
    async def test_lost_insert_race_regenerates_winner(
        self, alert_source: InMemoryAlertDataSource
    ) -> None:
        class RacingStore(InMemoryIncidentStore):
            """Another writer inserts the alert's incident just before we do."""

            async def create_draft(self, incident: Incident) -> Incident | None:
                self.put(make_incident(id="winner"))
                return await super().create_draft(incident)

        store = RacingStore()
        drafter = IncidentDrafter(alert_source, store)

        outcome = (await drafter.generate_and_persist("alert-1", "staff-1", now=NOW)).unwrap()

        assert outcome.created is False
        assert outcome.incident.id == "winner"
        assert [incident.id for incident in store.all()] == ["winner"]

    @pytest.mark.asyncio
    async def test_missing_alert_writes_nothing(
        self, drafter: IncidentDrafter, incident_store: InMemoryIncidentStore
    ) -> None:
        with pytest.raises(AlertNotFoundError):
            await drafter.generate_and_persist("nope", "staff-1", now=NOW)
        assert incident_store.all() == []
