"""Abstract interface for threshold-approval governance backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from ..config import Operation


class ProposalState(Enum):
    AWAITING_THRESHOLD = "awaiting-threshold"
    READY_TO_EXECUTE = "ready-to-execute"
    EXECUTED = "executed"
    FAILED = "failed"
    # The account's nonce moved past the proposal: rejected or superseded.
    REPLACED = "replaced"


@dataclass(frozen=True)
class Proposal:
    """Reference to a proposal accepted by the backend."""

    proposal_id: str
    safe_address: str
    nonce: int
    operations: Sequence[Operation]
    required_approvals: int
    current_approvals: int
    batched: bool
    duplicate: bool = False


@dataclass(frozen=True)
class ProposalStatus:
    proposal_id: str
    state: ProposalState
    approvals: int
    required: int
    nonce: int
    batched: bool
    executed: bool = False
    successful: Optional[bool] = None
    transaction_hash: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self.state in (ProposalState.AWAITING_THRESHOLD, ProposalState.READY_TO_EXECUTE)

    @property
    def ready(self) -> bool:
        return self.state is ProposalState.READY_TO_EXECUTE


class GovernanceBackend(ABC):
    """Base class for backends that gate operations behind threshold approval."""

    @abstractmethod
    def check_signer(self) -> None:
        """Raise :class:`AuthorizationError` unless the signer may propose."""

    @abstractmethod
    def propose(self, operations: Sequence[Operation], *, origin: Optional[str] = None) -> Proposal:
        """Submit ``operations`` as one proposal; the submitter's signature counts."""

    @abstractmethod
    def status(self, proposal_id: str) -> ProposalStatus:
        """Return the current approval/execution state of ``proposal_id``."""

    @abstractmethod
    def approve(self, proposal_id: str) -> ProposalStatus:
        """Add the configured signer's approval to ``proposal_id``."""

    @abstractmethod
    def execute(self, proposal_id: str) -> str:
        """Execute a proposal that reached its threshold; return the tx hash."""
