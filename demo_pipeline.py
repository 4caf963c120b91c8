"""
End-to-end walkthrough of the compliance pipeline on in-memory data.

This script demonstrates:
1. Configuration loading
2. Record, SOP and combined compliance validation
3. Auto-fix with revalidation
4. Incident draft generation from an alert
5. Review, finalization, locking and integrity verification

Run with: uv run python demo_pipeline.py
"""

import asyncio
from datetime import UTC, datetime, timedelta

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.memory import InMemoryAlertDataSource, InMemoryIncidentStore, InMemoryTagSource
from compliance_core.config import get_config, print_config_summary
from compliance_core.domain.incidents import (
    AlertEventRecord,
    AlertRecord,
    SOPResponseRecord,
    Tag,
)
from compliance_core.domain.models import ValidationContext, ValidationResult, ValidatorType
from compliance_core.log import configure_logging
from compliance_core.services.compliance_service import ComplianceService

console = Console()

NOW = datetime.now(UTC)


def seed_alert_data() -> tuple[InMemoryAlertDataSource, InMemoryTagSource]:
    """A fall alert with an acknowledged event, one SOP response and tagged audio."""
    alerts = InMemoryAlertDataSource()
    alerts.add_alert(
        AlertRecord(
            id="alert-100",
            client_id="client-7",
            client_name="Avery Client",
            message="Possible fall detected in the hallway",
            alert_type="safety",
            detection_type="fall",
            detection_location="Hallway",
            severity="high",
            created_at=NOW - timedelta(minutes=40),
        )
    )
    alerts.add_event(
        "alert-100",
        AlertEventRecord(
            id="event-100",
            event_type="acknowledged",
            staff_id="staff-3",
            message="Responding now",
            created_at=NOW - timedelta(minutes=39),
        ),
    )
    alerts.add_sop_response(
        "alert-100",
        SOPResponseRecord(
            id="sop-response-100",
            sop_name="Fall Response",
            status="completed",
            staff_id="staff-3",
            steps=[
                {"step": 1, "action": "Check for injury"},
                {"step": 2, "action": "Notify nurse"},
            ],
            completed_steps=[
                {
                    "step": 1,
                    "action": "Checked for injury",
                    "completed_at": (NOW - timedelta(minutes=35)).isoformat(),
                    "notes": "Small bruise on left arm",
                },
                {
                    "step": 2,
                    "action": "Notified nurse",
                    "completed_at": (NOW - timedelta(minutes=30)).isoformat(),
                    "notes": "Nurse assessed and cleared",
                },
            ],
            started_at=NOW - timedelta(minutes=38),
        ),
    )
    alerts.add_staff("staff-3", "Morgan Staff")

    tags = InMemoryTagSource()
    tags.set_recording(
        "alert-100",
        [
            Tag(tag_type="motion", tag_value="fall", confidence=0.92),
            Tag(tag_type="tone", tag_value="distressed", confidence=0.7),
        ],
        transcript="I slipped near the bathroom door and my arm hurts",
    )
    return alerts, tags


def print_validation(title: str, result: ValidationResult) -> None:
    table = Table(title=title)
    table.add_column("Kind", style="cyan")
    table.add_column("Field", style="white")
    table.add_column("Message", style="white")
    table.add_column("Rule", style="magenta")

    for issue in result.errors:
        kind = "BLOCKING" if issue.blocking else "error"
        table.add_row(kind, issue.field, issue.message, issue.rule_ref or "")
    for issue in result.warnings:
        table.add_row("warning", issue.field, issue.message, issue.rule_ref or "")

    console.print(table)
    style = "green" if result.can_submit else "red"
    console.print(f"{result.summary} (can submit: {result.can_submit})", style=style)


async def demo_configuration() -> bool:
    console.print(Panel("Configuration", style="blue"))
    print_config_summary()
    return True


async def demo_validation(service: ComplianceService) -> bool:
    console.print(Panel("Validation", style="blue"))

    record = {
        "staff_id": "staff-3",
        "timestamp": (NOW - timedelta(hours=1)).isoformat(),
        "service_description": "Helped with lunch",
        "location": "Kitchen",
        "record_type": "service",
    }
    print_validation("Service record", service.validate(ValidatorType.RECORD, record))

    sop = {
        "steps": [{"step": 1, "action": "Check for injury"}, {"step": 2, "action": "Notify"}],
        "completed_steps": [
            {
                "step": 1,
                "action": "Checked for injury",
                "completed_at": (NOW - timedelta(minutes=5)).isoformat(),
                "notes": "No visible injury",
            }
        ],
    }
    result = service.validate(ValidatorType.SOP, sop)
    print_validation("SOP response", result)
    # step 2 was never completed, so submission must be blocked
    return not result.can_submit


async def demo_auto_fix(service: ComplianceService) -> bool:
    console.print(Panel("Auto-Fix", style="blue"))

    record = {
        "timestamp": (NOW - timedelta(hours=2)).strftime("%m/%d/%Y %H:%M"),
        "service_description": "Assisted the client with a community outing to the library",
        "record_type": "service",
    }
    context = ValidationContext(user_id="staff-3", client_id="client-7")
    outcome = service.auto_fix(ValidatorType.RECORD, record, context)

    print_validation("Before", outcome.original_validation)
    if outcome.fix_result is not None:
        fixes = Table(title="Applied fixes")
        fixes.add_column("Field", style="cyan")
        fixes.add_column("Old", style="red")
        fixes.add_column("New", style="green")
        for fix in outcome.fix_result.applied_fixes:
            fixes.add_row(fix.field, str(fix.old_value), str(fix.new_value))
        console.print(fixes)
        for warning in outcome.fix_result.warnings:
            console.print(f"! {warning}", style="yellow")
    if outcome.revalidation_result is not None:
        print_validation("After", outcome.revalidation_result)

    console.print(outcome.message)
    return outcome.revalidation_result is not None and outcome.revalidation_result.can_submit


async def demo_incident_lifecycle(service: ComplianceService) -> bool:
    console.print(Panel("Incident Lifecycle", style="blue"))

    drafted = await service.generate_draft("alert-100", "staff-3")
    if drafted.is_err():
        console.print(f"Draft failed: {drafted.unwrap_err().message}", style="red")
        return False
    incident = drafted.unwrap().incident
    draft = incident.draft_data

    console.print(f"Incident {incident.id} drafted as {draft.incident_type.value}")
    console.print(draft.description, style="dim")

    steps = [
        ("review", await service.review_transition(incident.id, "review", "lead-1")),
        ("finalize", await service.finalize(incident.id, "director-1")),
        ("lock", await service.lock(incident.id, "admin-1")),
        ("finalize again", await service.finalize(incident.id, "director-1")),
    ]

    table = Table(title="Transitions")
    table.add_column("Action", style="cyan")
    table.add_column("Outcome", style="white")
    for action, result in steps:
        if result.is_ok():
            table.add_row(action, f"status={result.unwrap().status.value}")
        else:
            error = result.unwrap_err()
            table.add_row(action, f"refused: {error.code.value} ({error.message})")
    console.print(table)

    report = await service.verify_integrity(incident.id)
    style = "green" if report.valid else "red"
    console.print(f"Integrity valid: {report.valid} ({report.checksum_algorithm})", style=style)
    return report.valid


async def run_demo() -> None:
    config = get_config()
    configure_logging(config.logging)

    console.print(Panel("Care Compliance Core - Pipeline Demo", style="bold blue"))

    alerts, tags = seed_alert_data()
    service = ComplianceService.from_config(
        alerts, InMemoryIncidentStore(), tag_source=tags, config=config
    )

    demos = [
        ("Configuration", demo_configuration()),
        ("Validation", demo_validation(service)),
        ("Auto-Fix", demo_auto_fix(service)),
        ("Incident Lifecycle", demo_incident_lifecycle(service)),
    ]

    results = []
    for name, demo in demos:
        console.print(f"\n{'=' * 60}")
        try:
            results.append((name, await demo))
        except Exception as e:
            console.print(f"{name} failed with exception: {e}", style="red")
            results.append((name, False))

    console.print(f"\n{'=' * 60}")
    summary = Table(title="Demo Summary")
    summary.add_column("Step", style="cyan")
    summary.add_column("Result", style="white")
    for name, ok in results:
        summary.add_row(name, "OK" if ok else "FAILED")
    console.print(summary)


if __name__ == "__main__":
    try:
        asyncio.run(run_demo())
    except KeyboardInterrupt:
        console.print("\nDemo stopped by user", style="yellow")
