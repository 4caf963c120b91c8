"""
Shared fixtures.

Time is frozen by passing `now` explicitly; see `tests.factories`.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from adapters.memory import InMemoryAlertDataSource, InMemoryIncidentStore, InMemoryTagSource
from compliance_core.domain.incidents import AlertEventRecord, AlertRecord, SOPResponseRecord
from tests.factories import NOW, completed_step


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def incident_store() -> InMemoryIncidentStore:
    return InMemoryIncidentStore()


@pytest.fixture
def tag_source() -> InMemoryTagSource:
    return InMemoryTagSource()


@pytest.fixture
def alert_source() -> InMemoryAlertDataSource:
    """One alert with two timeline events and one SOP response."""
    source = InMemoryAlertDataSource()
    source.add_alert(
        AlertRecord(
            id="alert-1",
            client_id="client-1",
            client_name="Jordan Client",
            message="Client became agitated in the living room",
            alert_type="behavior",
            detection_type="raised_voice",
            detection_location="Living room",
            severity="medium",
            created_at=NOW - timedelta(hours=3),
        )
    )
    source.add_event(
        "alert-1",
        AlertEventRecord(
            id="event-1",
            event_type="acknowledged",
            staff_id="staff-1",
            message="On my way",
            created_at=NOW - timedelta(hours=3) + timedelta(minutes=1),
        ),
    )
    source.add_event(
        "alert-1",
        AlertEventRecord(
            id="event-2",
            event_type="notes_added",
            staff_id="staff-2",
            message="Client settled",
            created_at=NOW - timedelta(hours=3) + timedelta(minutes=20),
        ),
    )
    source.add_sop_response(
        "alert-1",
        SOPResponseRecord(
            id="sop-response-1",
            sop_id="sop-1",
            sop_name="Behavioral De-escalation",
            status="completed",
            staff_id="staff-1",
            steps=[
                {"step": 1, "action": "Approach calmly"},
                {"step": 2, "action": "Offer a quiet space"},
            ],
            completed_steps=[
                completed_step(2, action="Offered a quiet space", notes="Moved to bedroom"),
                completed_step(1, action="Approached calmly", notes="Spoke softly"),
            ],
            started_at=NOW - timedelta(hours=3),
        ),
    )
    source.add_staff("staff-1", "Sam Staff")
    source.add_staff("staff-2", "Riley Staff")
    return source
