"""
Incident finalizer: the review lifecycle and the sealed incident packet.

    draft --> review --> finalized --> locked
      ^         |
      +---------+   (reject)
    draft -----------> finalized

Every transition is checked against the current status and then written as a
conditional update on that same status and the `updated_at` that was read. If
another writer moved or edited the incident in between, the store applies
nothing and the caller gets a PRECONDITION_FAILED error instead of a silent
overwrite or a stale snapshot. Lifecycle problems come back as `Result.err`;
store failures propagate.
"""

from collections.abc import Callable
from datetime import datetime

import structlog

from compliance_core.config import IncidentConfig
from compliance_core.domain.incidents import (
    EDITABLE_STATUSES,
    FinalizedIncidentPacket,
    Incident,
    IncidentStatus,
    IncidentUpdate,
    IntegrityReport,
    MUIDraftData,
    PacketMetadata,
    ReviewHistoryEntry,
    can_transition,
)
from compliance_core.domain.result import Result
from compliance_core.errors import LifecycleError, LifecycleErrorCode
from compliance_core.services.checksum import (
    SUPPORTED_ALGORITHMS,
    generate_checksum,
    verify_checksum,
)
from compliance_core.services.store import IncidentStore
from compliance_core.validators.base import utc_now

logger = structlog.get_logger(__name__)

TAMPERED_MESSAGE = "Checksum verification failed. Data may have been tampered with."

TRANSITION_EVENTS = {
    IncidentStatus.REVIEW: "incident_submitted_for_review",
    IncidentStatus.DRAFT: "incident_rejected",
    IncidentStatus.FINALIZED: "incident_finalized",
    IncidentStatus.LOCKED: "incident_locked",
}


def build_packet(
    incident: Incident,
    finalized_by: str,
    finalized_at: datetime,
    config: IncidentConfig,
) -> FinalizedIncidentPacket:
    """Snapshot the incident's draft and seal it with a checksum."""
    data = incident.draft_data.model_copy(deep=True)

    review_history = None
    if incident.reviewed_by:
        review_history = [
            ReviewHistoryEntry(
                reviewed_by=incident.reviewed_by,
                reviewed_at=incident.updated_at,
                status=IncidentStatus.REVIEW,
            )
        ]

    return FinalizedIncidentPacket(
        incident_id=incident.id,
        finalized_at=finalized_at,
        finalized_by=finalized_by,
        data=data,
        checksum=generate_checksum(data, config.checksum_algorithm),
        checksum_algorithm=config.checksum_algorithm,
        version=config.packet_version,
        metadata=PacketMetadata(
            original_draft_created_at=incident.created_at,
            original_draft_created_by=incident.created_by,
            review_history=review_history,
            validation_status=data.validation_results,
        ),
    )


class IncidentFinalizer:
    """Moves incidents through review, finalization and locking."""

    def __init__(self, store: IncidentStore, config: IncidentConfig | None = None) -> None:
        self.store = store
        self.config = config or IncidentConfig()
        self.logger = logger.bind(component="incident_finalizer")

    async def submit_for_review(
        self, incident_id: str, reviewer: str, *, now: datetime | None = None
    ) -> Result[Incident, LifecycleError]:
        """draft -> review, recording the reviewer."""
        return await self._transition(
            incident_id,
            IncidentStatus.REVIEW,
            lambda incident, at: IncidentUpdate(
                status=IncidentStatus.REVIEW, reviewed_by=reviewer, updated_at=at
            ),
            actor=reviewer,
            now=now,
        )

    async def reject(
        self, incident_id: str, actor: str, *, now: datetime | None = None
    ) -> Result[Incident, LifecycleError]:
        """review -> draft, clearing the reviewer."""
        return await self._transition(
            incident_id,
            IncidentStatus.DRAFT,
            lambda incident, at: IncidentUpdate(
                status=IncidentStatus.DRAFT, reviewed_by=None, updated_at=at
            ),
            actor=actor,
            now=now,
        )

    async def finalize(
        self, incident_id: str, finalized_by: str, *, now: datetime | None = None
    ) -> Result[Incident, LifecycleError]:
        """
        draft|review -> finalized.

        Stores the sealed packet in `finalized_data`. Fails with
        ALREADY_FINALIZED for an incident that is finalized or locked, leaving
        its packet untouched.
        """

        def seal(incident: Incident, at: datetime) -> IncidentUpdate:
            packet = build_packet(incident, finalized_by, at, self.config)
            return IncidentUpdate(
                status=IncidentStatus.FINALIZED,
                finalized_data=packet,
                finalized_by=finalized_by,
                finalized_at=at,
                updated_at=at,
            )

        return await self._transition(
            incident_id, IncidentStatus.FINALIZED, seal, actor=finalized_by, now=now
        )

    async def lock(
        self, incident_id: str, locked_by: str, *, now: datetime | None = None
    ) -> Result[Incident, LifecycleError]:
        """finalized -> locked. One way: nothing can change a locked incident."""
        return await self._transition(
            incident_id,
            IncidentStatus.LOCKED,
            lambda incident, at: IncidentUpdate(status=IncidentStatus.LOCKED, updated_at=at),
            actor=locked_by,
            now=now,
        )

    async def update_draft(
        self,
        incident_id: str,
        draft_data: MUIDraftData,
        *,
        actor: str | None = None,
        now: datetime | None = None,
    ) -> Result[Incident, LifecycleError]:
        """Replace the draft content of an incident still in draft or review."""
        now = now or utc_now()
        incident = await self.store.get(incident_id)
        if incident is None:
            return Result.err(self._not_found(incident_id))

        if incident.status not in EDITABLE_STATUSES:
            code = (
                LifecycleErrorCode.LOCKED
                if incident.is_locked
                else LifecycleErrorCode.ALREADY_FINALIZED
            )
            return Result.err(
                LifecycleError(
                    code,
                    f"Incident is {incident.status.value} and its draft can no longer be edited",
                    incident_id=incident_id,
                    status=incident.status.value,
                )
            )

        updated = await self.store.update_where_status(
            incident_id,
            {incident.status},
            IncidentUpdate(
                draft_data=draft_data, incident_type=draft_data.incident_type, updated_at=now
            ),
            expected_updated_at=incident.updated_at,
        )
        if updated is None:
            return Result.err(await self._conflict(incident))

        self.logger.info(
            "incident_draft_edited",
            incident_id=incident_id,
            status=updated.status.value,
            actor=actor,
        )
        return Result.ok(updated)

    async def review_transition(
        self,
        incident_id: str,
        target_status: IncidentStatus | str,
        actor: str,
        comment: str | None = None,
        *,
        now: datetime | None = None,
    ) -> Result[Incident, LifecycleError]:
        """Dispatch a reviewer's requested status change to the matching operation."""
        try:
            target = IncidentStatus(target_status)
        except ValueError:
            return Result.err(
                LifecycleError(
                    LifecycleErrorCode.INVALID_TRANSITION,
                    f"Unknown incident status '{target_status}'",
                    incident_id=incident_id,
                )
            )

        self.logger.info(
            "incident_review_transition_requested",
            incident_id=incident_id,
            target_status=target.value,
            actor=actor,
            comment=comment,
        )
        if target == IncidentStatus.REVIEW:
            return await self.submit_for_review(incident_id, actor, now=now)
        if target == IncidentStatus.DRAFT:
            return await self.reject(incident_id, actor, now=now)
        if target == IncidentStatus.FINALIZED:
            return await self.finalize(incident_id, actor, now=now)
        return await self.lock(incident_id, actor, now=now)

    async def verify_integrity(self, incident_id: str) -> IntegrityReport:
        """Recompute the stored packet's checksum. Problems are reported, never repaired."""
        incident = await self.store.get(incident_id)
        if incident is None:
            return IntegrityReport(valid=False, error="Incident not found", reason="not_found")

        packet = incident.finalized_data
        if packet is None:
            return IntegrityReport(
                valid=False, error="Incident has no finalized data", reason="not_finalized"
            )

        algorithm = packet.checksum_algorithm or "sha256"
        if algorithm not in SUPPORTED_ALGORITHMS:
            self.logger.warning(
                "incident_integrity_failed",
                incident_id=incident_id,
                reason="unsupported_algorithm",
                checksum_algorithm=algorithm,
            )
            return IntegrityReport(
                valid=False,
                error=f"Unsupported checksum algorithm: {algorithm}",
                reason="unsupported_algorithm",
                checksum_algorithm=algorithm,
            )

        if not verify_checksum(packet.data, packet.checksum, algorithm):
            self.logger.warning(
                "incident_integrity_failed",
                incident_id=incident_id,
                reason="tampered",
                checksum_algorithm=algorithm,
            )
            return IntegrityReport(
                valid=False, error=TAMPERED_MESSAGE, reason="tampered", checksum_algorithm=algorithm
            )

        return IntegrityReport(valid=True, checksum_algorithm=algorithm)

    # --- internals --------------------------------------------------------

    async def _transition(
        self,
        incident_id: str,
        target: IncidentStatus,
        build_update: Callable[[Incident, datetime], IncidentUpdate],
        *,
        actor: str,
        now: datetime | None,
    ) -> Result[Incident, LifecycleError]:
        now = now or utc_now()
        incident = await self.store.get(incident_id)
        if incident is None:
            return Result.err(self._not_found(incident_id))

        refusal = self._refusal(incident, target)
        if refusal is not None:
            self.logger.info(
                "incident_transition_rejected",
                incident_id=incident_id,
                status=incident.status.value,
                target_status=target.value,
                code=refusal.code.value,
            )
            return Result.err(refusal)

        update = build_update(incident, now)
        updated = await self.store.update_where_status(
            incident_id, {incident.status}, update, expected_updated_at=incident.updated_at
        )
        if updated is None:
            return Result.err(await self._conflict(incident))

        self.logger.info(
            TRANSITION_EVENTS[target],
            incident_id=incident_id,
            from_status=incident.status.value,
            actor=actor,
        )
        return Result.ok(updated)

    @staticmethod
    def _refusal(incident: Incident, target: IncidentStatus) -> LifecycleError | None:
        current = incident.status

        if target == IncidentStatus.FINALIZED and current in (
            IncidentStatus.FINALIZED,
            IncidentStatus.LOCKED,
        ):
            code, message = (
                LifecycleErrorCode.ALREADY_FINALIZED,
                "Incident is already finalized or locked",
            )
        elif current == IncidentStatus.LOCKED:
            message = (
                "Incident is already locked"
                if target == IncidentStatus.LOCKED
                else "Incident is locked and cannot be modified"
            )
            code = LifecycleErrorCode.LOCKED
        elif target == IncidentStatus.LOCKED and current != IncidentStatus.FINALIZED:
            code, message = (
                LifecycleErrorCode.INVALID_TRANSITION,
                "Incident must be finalized before it can be locked",
            )
        elif not can_transition(current, target):
            code, message = (
                LifecycleErrorCode.INVALID_TRANSITION,
                f"Cannot move incident from '{current.value}' to '{target.value}'",
            )
        else:
            return None

        return LifecycleError(code, message, incident_id=incident.id, status=current.value)

    @staticmethod
    def _not_found(incident_id: str) -> LifecycleError:
        return LifecycleError(
            LifecycleErrorCode.NOT_FOUND, "Incident not found", incident_id=incident_id
        )

    async def _conflict(self, incident: Incident) -> LifecycleError:
        current = await self.store.get(incident.id)
        if current is not None and current.status == incident.status:
            message = "Incident was changed by another writer after it was read"
        else:
            message = f"Incident is no longer in '{incident.status.value}' status"
        self.logger.warning(
            "incident_transition_conflict",
            incident_id=incident.id,
            expected_status=incident.status.value,
            current_status=current.status.value if current else None,
        )
        return LifecycleError(
            LifecycleErrorCode.PRECONDITION_FAILED,
            message,
            incident_id=incident.id,
            status=incident.status.value,
        )
