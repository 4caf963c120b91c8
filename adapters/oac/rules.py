"""
OAC 5123 rule catalogue.

Ohio Administrative Code chapter 5123 governs documentation of services for
people with developmental disabilities. Validators cite these references on
every issue so a reviewer can trace a finding back to the rule text.

Key concepts:
- Blocking rules: a violation prevents submission
- Non-blocking rules: recommendations, raised as warnings
- Category: groups rules by the part of a record they govern
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict

from compliance_core.domain.models import IssueSeverity


class RuleCategory(str, Enum):
    DOCUMENTATION = "documentation"
    TIMESTAMP = "timestamp"
    STAFF_QUALIFICATION = "staff_qualification"
    SERVICE_DESCRIPTION = "service_description"
    INCIDENT_REPORTING = "incident_reporting"


class OACRule(BaseModel):
    """A single OAC 5123 requirement."""

    model_config = ConfigDict(frozen=True)

    reference: str
    title: str
    description: str
    category: RuleCategory
    blocking: bool
    severity: IssueSeverity


DOCUMENTATION = "OAC 5123.0412"
TIMESTAMP = "OAC 5123.0413"
STAFF_QUALIFICATION = "OAC 5123.0414"
SERVICE_DESCRIPTION = "OAC 5123.0415"
INCIDENT_REPORTING = "OAC 5123.0416"
LOCATION = "OAC 5123.0417"
DESCRIPTION_COMPLETENESS = "OAC 5123.0418"
TIMELINE_ACCURACY = "OAC 5123.0419"


def _rule(
    reference: str,
    title: str,
    description: str,
    category: RuleCategory,
    blocking: bool,
) -> OACRule:
    return OACRule(
        reference=reference,
        title=title,
        description=description,
        category=category,
        blocking=blocking,
        severity=IssueSeverity.ERROR if blocking else IssueSeverity.WARNING,
    )


OAC_RULES: dict[str, OACRule] = {
    rule.reference: rule
    for rule in (
        _rule(
            DOCUMENTATION,
            "Documentation Requirements",
            "Service records must carry staff ID, timestamp, service description "
            "and location where applicable.",
            RuleCategory.DOCUMENTATION,
            blocking=True,
        ),
        _rule(
            TIMESTAMP,
            "Timestamp Requirements",
            "Records must have valid timestamps that are not in the future and "
            "fall within a reasonable timeframe.",
            RuleCategory.TIMESTAMP,
            blocking=True,
        ),
        _rule(
            STAFF_QUALIFICATION,
            "Staff Qualification Requirements",
            "Service records must identify the qualified staff member who performed "
            "the service.",
            RuleCategory.STAFF_QUALIFICATION,
            blocking=True,
        ),
        _rule(
            SERVICE_DESCRIPTION,
            "Service Description Requirements",
            "Service descriptions must be complete and accurately describe the "
            "service provided. Minimum length requirements apply.",
            RuleCategory.SERVICE_DESCRIPTION,
            blocking=True,
        ),
        _rule(
            INCIDENT_REPORTING,
            "Incident Reporting Requirements",
            "Incidents must be reported with complete documentation including "
            "type, location, involved parties and actions taken.",
            RuleCategory.INCIDENT_REPORTING,
            blocking=True,
        ),
        _rule(
            LOCATION,
            "Location Documentation",
            "Location is recommended for all service records and required for "
            "incident reports.",
            RuleCategory.DOCUMENTATION,
            blocking=False,
        ),
        _rule(
            DESCRIPTION_COMPLETENESS,
            "Service Description Completeness",
            "Service descriptions should be comprehensive, at least 50 characters "
            "recommended, for audit purposes.",
            RuleCategory.SERVICE_DESCRIPTION,
            blocking=False,
        ),
        _rule(
            TIMELINE_ACCURACY,
            "Timeline Accuracy",
            "Future timestamps or timestamps more than one year old should be verified.",
            RuleCategory.TIMESTAMP,
            blocking=False,
        ),
    )
}


def get_rule(reference: str) -> OACRule | None:
    return OAC_RULES.get(reference)


def all_rules() -> list[OACRule]:
    return list(OAC_RULES.values())


def rules_by_category(category: RuleCategory | str) -> list[OACRule]:
    category = RuleCategory(category)
    return [rule for rule in OAC_RULES.values() if rule.category == category]


def blocking_rules() -> list[OACRule]:
    return [rule for rule in OAC_RULES.values() if rule.blocking]


def non_blocking_rules() -> list[OACRule]:
    return [rule for rule in OAC_RULES.values() if not rule.blocking]
