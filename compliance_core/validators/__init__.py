from compliance_core.validators.base import Validator
from compliance_core.validators.compliance import ComplianceValidator
from compliance_core.validators.record import RecordValidator
from compliance_core.validators.sop import SOPValidator

__all__ = ["ComplianceValidator", "RecordValidator", "SOPValidator", "Validator"]
