"""
Core services.

Validation dispatch and auto-fix, tag analysis, incident drafting and the
incident lifecycle, plus the facade that ties them together.
"""

from .auto_fix import AutoFixOptions, AutoFixResult, AutoFixService
from .checksum import canonicalize, generate_checksum, verify_checksum
from .compliance_service import ComplianceService, FixOutcome
from .incident_drafter import IncidentDrafter, determine_incident_type
from .incident_finalizer import IncidentFinalizer
from .store import AlertDataSource, IncidentStore, QueryExecutor, TagSource
from .tag_analysis import RuleBasedTagAnalyzer, TagAnalysisService
from .validator_engine import ValidatorEngine

__all__ = [
    "AlertDataSource",
    "AutoFixOptions",
    "AutoFixResult",
    "AutoFixService",
    "ComplianceService",
    "FixOutcome",
    "IncidentDrafter",
    "IncidentFinalizer",
    "IncidentStore",
    "QueryExecutor",
    "RuleBasedTagAnalyzer",
    "TagAnalysisService",
    "TagSource",
    "ValidatorEngine",
    "canonicalize",
    "determine_incident_type",
    "generate_checksum",
    "verify_checksum",
]
