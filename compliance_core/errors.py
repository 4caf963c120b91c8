"""
Error taxonomy.

Bad input data is never an exception: validators encode it as issues. What is
left falls into three groups:
- LifecycleError: an illegal incident transition, returned in a Result
- AlertNotFoundError / UnsupportedChecksumAlgorithmError: caller mistakes, raised
- StoreError: infrastructure failure, propagated to the caller unchanged
"""

from enum import Enum


class ComplianceCoreError(Exception):
    """Base class for errors raised by this package."""


class LifecycleErrorCode(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    ALREADY_FINALIZED = "already_finalized"
    LOCKED = "locked"
    PRECONDITION_FAILED = "precondition_failed"


class LifecycleError(ComplianceCoreError):
    """An incident state change that is not allowed from the current state."""

    def __init__(
        self,
        code: LifecycleErrorCode,
        message: str,
        *,
        incident_id: str | None = None,
        status: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.incident_id = incident_id
        self.status = status

    def __repr__(self) -> str:
        return f"LifecycleError({self.code.value!r}, {self.message!r})"


class AlertNotFoundError(ComplianceCoreError):
    def __init__(self, alert_id: str) -> None:
        super().__init__(f"Alert not found: {alert_id}")
        self.alert_id = alert_id


class UnsupportedChecksumAlgorithmError(ComplianceCoreError):
    def __init__(self, algorithm: str) -> None:
        super().__init__(f"Unsupported checksum algorithm: {algorithm}")
        self.algorithm = algorithm


class StoreError(ComplianceCoreError):
    """A storage adapter could not complete a read or write."""
