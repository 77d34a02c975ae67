"""Approval gate: per-environment approval state machine."""

from tenantops.approvals.gate import ApprovalGate, ApprovalRecord, ApprovalState, ApprovalStore

__all__ = [
    "ApprovalGate",
    "ApprovalRecord",
    "ApprovalState",
    "ApprovalStore",
]
