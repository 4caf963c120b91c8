"""
Tests for the OAC 5123 compliance validator.

Covers:
- Documentation requirements reported once under 0412
- Rule-driven severity and blocking (0417/0418/0419 never block)
- Incident reporting requirements (0416)
- SOP completion and notes checks
- Structural rejection of malformed payloads
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from adapters.oac import rules as oac
from compliance_core.domain.models import IssueSeverity, ValidatorType
from compliance_core.validators import ComplianceValidator
from tests.factories import NOW, iso, record_payload, sop_payload


@pytest.fixture
def validator() -> ComplianceValidator:
    return ComplianceValidator()


def test_compliant_record(validator: ComplianceValidator) -> None:
    result = validator.validate({"record": record_payload()}, now=NOW)

    assert result.validator_type == ValidatorType.COMPLIANCE
    assert result.is_valid is True
    assert result.summary == "Compliance validation passed - all OAC 5123 requirements met"
    assert result.metadata == {"record_type": "service"}


def test_messages_cite_rule(validator: ComplianceValidator) -> None:
    result = validator.validate({"record": record_payload(staff_id=None)}, now=NOW)

    [issue] = result.errors
    assert issue.code == "staff_id.missing"
    assert issue.rule_ref == oac.DOCUMENTATION
    assert issue.message.endswith("(OAC 5123.0412)")


def test_presence_checks_reported_once(validator: ComplianceValidator) -> None:
    record = {"service_description": "", "location": "Kitchen"}

    result = validator.validate({"record": record}, now=NOW)

    assert [issue.code for issue in result.errors] == [
        "staff_id.missing",
        "timestamp.missing",
        "description.missing",
    ]
    assert {issue.rule_ref for issue in result.errors} == {oac.DOCUMENTATION}
    assert result.summary == (
        "Compliance validation failed with 3 blocking violation(s). Submission blocked."
    )


def test_location_is_non_blocking(validator: ComplianceValidator) -> None:
    result = validator.validate({"record": record_payload(location=None)}, now=NOW)

    assert result.can_submit is True
    [warning] = result.warnings
    assert warning.code == "location.missing"
    assert warning.severity == IssueSeverity.WARNING
    assert warning.rule_ref == oac.LOCATION
    assert result.summary == (
        "Compliance validation passed with 1 warning(s). Submission allowed."
    )


def test_location_not_expected_for_other_records(validator: ComplianceValidator) -> None:
    data = {"record": record_payload(location=None), "record_type": "note"}
    assert validator.validate(data, now=NOW).is_valid is True


def test_requires_location_flag(validator: ComplianceValidator) -> None:
    data = {
        "record": record_payload(location=None),
        "recordType": "note",
        "context": {"requiresLocation": True},
    }
    result = validator.validate(data, now=NOW)
    assert [issue.code for issue in result.warnings] == ["location.missing"]


def test_invalid_timestamp_blocks_under_0413(validator: ComplianceValidator) -> None:
    result = validator.validate({"record": record_payload(timestamp="soon")}, now=NOW)

    [issue] = result.errors
    assert issue.code == "timestamp.invalid"
    assert issue.rule_ref == oac.TIMESTAMP
    assert issue.blocking is True


def test_timeline_drift_only_warns(validator: ComplianceValidator) -> None:
    future = validator.validate(
        {"record": record_payload(timestamp=iso(NOW + timedelta(minutes=5)))}, now=NOW
    )
    stale = validator.validate(
        {"record": record_payload(timestamp=iso(NOW - timedelta(days=500)))}, now=NOW
    )

    assert [issue.code for issue in future.warnings] == ["timestamp.future"]
    assert [issue.code for issue in stale.warnings] == ["timestamp.stale"]
    assert future.can_submit and stale.can_submit
    assert future.warnings[0].rule_ref == oac.TIMELINE_ACCURACY


def test_staff_format_under_0414(validator: ComplianceValidator) -> None:
    result = validator.validate({"record": record_payload(staff_id="   ")}, now=NOW)

    [issue] = result.errors
    assert issue.code == "staff_id.invalid"
    assert issue.rule_ref == oac.STAFF_QUALIFICATION


def test_description_length_rules(validator: ComplianceValidator) -> None:
    short = validator.validate({"record": record_payload(service_description="Ate lunch")}, now=NOW)
    medium = validator.validate(
        {"record": record_payload(service_description="Client ate lunch with assistance")},
        now=NOW,
    )

    assert [issue.code for issue in short.errors] == ["description.too_short"]
    assert short.errors[0].rule_ref == oac.SERVICE_DESCRIPTION
    assert medium.errors == []
    assert [issue.code for issue in medium.warnings] == ["description.short"]
    assert medium.warnings[0].rule_ref == oac.DESCRIPTION_COMPLETENESS


class TestIncidentReporting:
    def test_incident_needs_location_and_detail(self, validator: ComplianceValidator) -> None:
        data = {
            "record": record_payload(
                location=None, service_description="Client fell in the hallway"
            ),
            "record_type": "incident",
        }
        result = validator.validate(data, now=NOW)

        assert [issue.code for issue in result.errors] == [
            "incident.location_missing",
            "incident.description_short",
        ]
        assert {issue.rule_ref for issue in result.errors} == {oac.INCIDENT_REPORTING}
        assert result.can_submit is False
        assert result.metadata == {"record_type": "incident"}

    def test_is_incident_flag(self, validator: ComplianceValidator) -> None:
        data = {"record": record_payload(location=None), "context": {"is_incident": True}}
        result = validator.validate(data, now=NOW)
        assert [issue.code for issue in result.errors] == ["incident.location_missing"]

    def test_detailed_incident_passes(self, validator: ComplianceValidator) -> None:
        data = {"record": record_payload(record_type="incident"), "record_type": "incident"}
        assert validator.validate(data, now=NOW).is_valid is True


class TestSOPCompliance:
    def test_incomplete_sop(self, validator: ComplianceValidator) -> None:
        result = validator.validate({"sop_response": sop_payload(3, completed=1)}, now=NOW)

        [issue] = result.errors
        assert issue.code == "sop.incomplete"
        assert issue.field == "sop_completion"
        assert issue.metadata == {"total_steps": 3, "completed_steps": 1}
        assert issue.suggestion == "Complete all 3 steps in the SOP"

    def test_steps_without_notes(self, validator: ComplianceValidator) -> None:
        sop = sop_payload(2)
        sop["completed_steps"][1]["notes"] = " "

        result = validator.validate({"sopResponse": sop}, now=NOW)

        assert result.errors == []
        [warning] = result.warnings
        assert warning.code == "sop.notes_missing"
        assert warning.metadata == {"steps": [2]}

    def test_malformed_sop_is_structural(self, validator: ComplianceValidator) -> None:
        result = validator.validate({"sop_response": {"steps": "none"}}, now=NOW)

        [issue] = result.errors
        assert issue.code == "structure.invalid"
        assert issue.field == "sop_response"


@pytest.mark.parametrize("data", [None, [], "record"])
def test_non_mapping_is_structural(validator: ComplianceValidator, data: object) -> None:
    result = validator.validate(data, now=NOW)
    assert [issue.code for issue in result.errors] == ["structure.invalid"]


def test_wrongly_typed_record_is_structural(validator: ComplianceValidator) -> None:
    result = validator.validate({"record": "not a record"}, now=NOW)
    assert [issue.code for issue in result.errors] == ["structure.invalid"]


def test_empty_payload_passes(validator: ComplianceValidator) -> None:
    assert validator.validate({}, now=NOW).is_valid is True
