"""Governance backends that gate publication behind threshold approval."""

from .base import GovernanceBackend, Proposal, ProposalState, ProposalStatus  # noqa: F401
from .safe import SafeGovernanceClient, queue_url, safe_tx_hash  # noqa: F401

__all__ = [
    "GovernanceBackend",
    "Proposal",
    "ProposalState",
    "ProposalStatus",
    "SafeGovernanceClient",
    "queue_url",
    "safe_tx_hash",
]
