"""
Approval gate for deployments.

Each deployment attempt gets one approval record:

    AwaitingApproval -> Approved -> (consumed by the orchestrator)
    AwaitingApproval -> Rejected

Required approvals come from the environment policy (dev=0, staging=1,
prod=2); a dev record is approved the moment it is opened. Approver
identities are a set, so the same approver counts once.

Writes are optimistic: every transition reads the current record, builds
the next one and stores it with a version compare-and-set, retrying on
conflict. Two concurrent approvals can never both be the one that
crosses the threshold.
"""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

import structlog

from tenantops.core.environments import Environment, get_environment_policy
from tenantops.core.errors import ApprovalPending, ApprovalRejected, ApprovalStateError

logger = structlog.get_logger()


class ApprovalState(Enum):
    """Approval lifecycle states."""

    AWAITING = "AwaitingApproval"
    APPROVED = "Approved"
    REJECTED = "Rejected"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ApprovalRecord:
    """Immutable snapshot of one deployment's approval state."""

    deployment_id: str
    environment: str
    required_approvals: int
    received_approvals: frozenset[str] = frozenset()
    state: ApprovalState = ApprovalState.AWAITING
    version: int = 0
    consumed: bool = False
    rejected_by: str | None = None
    reason: str | None = None
    updated_at: datetime = dataclasses.field(default_factory=_utcnow)

    @property
    def is_approved(self) -> bool:
        return self.state is ApprovalState.APPROVED

    @property
    def is_terminal(self) -> bool:
        return self.state is not ApprovalState.AWAITING

    @property
    def outstanding(self) -> int:
        """Approvals still needed."""
        return max(self.required_approvals - len(self.received_approvals), 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "deployment_id": self.deployment_id,
            "environment": self.environment,
            "required_approvals": self.required_approvals,
            "received_approvals": sorted(self.received_approvals),
            "state": self.state.value,
            "version": self.version,
            "consumed": self.consumed,
            "rejected_by": self.rejected_by,
            "reason": self.reason,
            "updated_at": self.updated_at.isoformat(),
        }


class ApprovalStore:
    """Versioned in-memory approval records with compare-and-set writes."""

    def __init__(self) -> None:
        self._records: dict[str, ApprovalRecord] = {}
        # guards the check-and-write pair only; callers never hold it
        self._cas_lock = threading.Lock()

    def get(self, deployment_id: str) -> ApprovalRecord | None:
        return self._records.get(deployment_id)

    def insert(self, record: ApprovalRecord) -> bool:
        """Store a new record at version 1; False if one already exists."""
        with self._cas_lock:
            if record.deployment_id in self._records:
                return False
            self._records[record.deployment_id] = dataclasses.replace(record, version=1)
            return True

    def compare_and_set(self, expected_version: int, record: ApprovalRecord) -> bool:
        """Replace the record only if its stored version is still ``expected_version``."""
        with self._cas_lock:
            current = self._records.get(record.deployment_id)
            if current is None or current.version != expected_version:
                return False
            self._records[record.deployment_id] = dataclasses.replace(
                record, version=expected_version + 1, updated_at=_utcnow()
            )
            return True


def _normalize_identity(approver: str) -> str:
    identity = approver.strip().lower()
    if not identity:
        raise ValueError("Approver identity must not be empty")
    return identity


class ApprovalGate:
    """State machine gating a planned deployment's progression to apply."""

    MAX_WRITE_ATTEMPTS = 64

    def __init__(self, store: ApprovalStore | None = None) -> None:
        self.store = store or ApprovalStore()

    def open(self, deployment_id: str, environment: str | Environment) -> ApprovalRecord:
        """Create the approval record for a deployment attempt."""
        policy = get_environment_policy(environment)
        auto_approved = policy.required_approvals == 0
        record = ApprovalRecord(
            deployment_id=deployment_id,
            environment=policy.name,
            required_approvals=policy.required_approvals,
            state=ApprovalState.APPROVED if auto_approved else ApprovalState.AWAITING,
        )
        if not self.store.insert(record):
            raise ApprovalStateError(
                f"Approval already opened for {deployment_id}", {"deployment_id": deployment_id}
            )

        logger.info(
            "approval_opened",
            deployment_id=deployment_id,
            environment=policy.name,
            required_approvals=policy.required_approvals,
            state=record.state.value,
        )
        return self.get(deployment_id)

    def get(self, deployment_id: str) -> ApprovalRecord:
        record = self.store.get(deployment_id)
        if record is None:
            raise ApprovalPending(
                f"No approval record for {deployment_id}", {"deployment_id": deployment_id}
            )
        return record

    def approve(self, deployment_id: str, approver: str) -> ApprovalRecord:
        """
        Record an approval from an already-authenticated identity.

        Raises:
            ApprovalRejected: The attempt was rejected
            ApprovalStateError: The record is already approved by others
        """
        identity = _normalize_identity(approver)

        def transition(current: ApprovalRecord) -> ApprovalRecord:
            if current.state is ApprovalState.REJECTED:
                raise ApprovalRejected(
                    f"Deployment {deployment_id} was rejected by {current.rejected_by}",
                    {"deployment_id": deployment_id},
                )
            if identity in current.received_approvals:
                return current
            if current.state is ApprovalState.APPROVED:
                raise ApprovalStateError(
                    f"Deployment {deployment_id} is already approved",
                    {"deployment_id": deployment_id},
                )
            received = current.received_approvals | {identity}
            crossed = len(received) >= current.required_approvals
            return dataclasses.replace(
                current,
                received_approvals=received,
                state=ApprovalState.APPROVED if crossed else ApprovalState.AWAITING,
            )

        record = self._write(deployment_id, transition)
        logger.info(
            "approval_recorded",
            deployment_id=deployment_id,
            approver=identity,
            received=len(record.received_approvals),
            required=record.required_approvals,
            state=record.state.value,
        )
        return record

    def reject(self, deployment_id: str, approver: str, reason: str = "") -> ApprovalRecord:
        identity = _normalize_identity(approver)

        def transition(current: ApprovalRecord) -> ApprovalRecord:
            if current.is_terminal:
                raise ApprovalStateError(
                    f"Deployment {deployment_id} is already {current.state.value}",
                    {"deployment_id": deployment_id},
                )
            return dataclasses.replace(
                current, state=ApprovalState.REJECTED, rejected_by=identity, reason=reason
            )

        record = self._write(deployment_id, transition)
        logger.warning(
            "approval_rejected", deployment_id=deployment_id, approver=identity, reason=reason
        )
        return record

    def consume(self, deployment_id: str) -> ApprovalRecord:
        """
        Hand an approved record to the orchestrator; succeeds exactly once.

        Raises:
            ApprovalPending: Not enough approvals yet
            ApprovalRejected: The attempt was rejected
            ApprovalStateError: Already consumed
        """

        def transition(current: ApprovalRecord) -> ApprovalRecord:
            if current.state is ApprovalState.REJECTED:
                raise ApprovalRejected(
                    f"Deployment {deployment_id} was rejected by {current.rejected_by}",
                    {"deployment_id": deployment_id, "reason": current.reason or ""},
                )
            if current.state is ApprovalState.AWAITING:
                raise ApprovalPending(
                    f"Deployment {deployment_id} needs {current.outstanding} more approval(s)",
                    {
                        "deployment_id": deployment_id,
                        "received": len(current.received_approvals),
                        "required": current.required_approvals,
                    },
                )
            if current.consumed:
                raise ApprovalStateError(
                    f"Approval for {deployment_id} was already used",
                    {"deployment_id": deployment_id},
                )
            return dataclasses.replace(current, consumed=True)

        return self._write(deployment_id, transition)

    def _write(
        self, deployment_id: str, transition: Callable[[ApprovalRecord], ApprovalRecord]
    ) -> ApprovalRecord:
        for _ in range(self.MAX_WRITE_ATTEMPTS):
            current = self.get(deployment_id)
            updated = transition(current)
            if updated is current:
                return current
            if self.store.compare_and_set(current.version, updated):
                return self.get(deployment_id)
            logger.debug("approval_write_conflict", deployment_id=deployment_id)
        raise ApprovalStateError(
            f"Too many concurrent updates to approval {deployment_id}",
            {"deployment_id": deployment_id},
        )
