"""Configuration and value objects for the publication pipeline.

These dataclasses carry no loader logic: the CLI builds a
:class:`PublishConfig` from YAML/env/flags and hands it to the driver, which
never reads ambient state itself.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

# 2050-01-01T00:00:00Z.  The NameWrapper clamps it to the parent's expiry.
FAR_FUTURE_EXPIRY = 2524608000


class DeploymentMode(Enum):
    """Who controls the parent name, and therefore how the plan executes."""

    GOVERNANCE_OWNS_PARENT = "governance-owns-parent"
    INDIVIDUAL_OWNS_PARENT = "individual-owns-parent"


class DeploymentState(Enum):
    START = "start"
    MODE_DETECTED = "mode-detected"
    BUILD_BATCH = "build-batch"
    SUBMIT_BATCH_PROPOSAL = "submit-batch-proposal"
    EXECUTE_DIRECT_CREATE = "execute-direct-create"
    PROPOSE_CONTENT_SET = "propose-content-set"
    AWAITING_THRESHOLD = "awaiting-threshold"
    READY_TO_EXECUTE = "ready-to-execute"
    TERMINAL = "terminal"
    REJECTED = "rejected"
    PARTIAL = "partial"


@dataclass(frozen=True)
class NetworkProfile:
    """Per-chain contract addresses and service endpoints."""

    name: str
    chain_id: int
    name_wrapper: str
    ens_registry: str
    public_resolver: str
    multisend: str
    safe_service_url: str
    safe_app_prefix: str


NETWORKS: Dict[str, NetworkProfile] = {
    "mainnet": NetworkProfile(
        name="mainnet",
        chain_id=1,
        name_wrapper="0xd4416b13d2b3a9abae7acd5d6c2bbdbe25686401",
        ens_registry="0x00000000000c2e074ec69a0dfb2997ba6c7d2e1e",
        public_resolver="0x231b0ee14048e9dccd1d247744d114a4eb5e8e63",
        multisend="0x40a2accbd92bca938b02010e17a5b8929b49130d",
        safe_service_url="https://api.safe.global/tx-service/eth",
        safe_app_prefix="eth",
    ),
    "sepolia": NetworkProfile(
        name="sepolia",
        chain_id=11155111,
        name_wrapper="0x0635513f179d50a207757e05759cbd106d7dfce8",
        ens_registry="0x00000000000c2e074ec69a0dfb2997ba6c7d2e1e",
        public_resolver="0x8fade66b79cc9f707ab26799354482eb93a5b7dd",
        multisend="0x40a2accbd92bca938b02010e17a5b8929b49130d",
        safe_service_url="https://api.safe.global/tx-service/sep",
        safe_app_prefix="sep",
    ),
}


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for retryable boundary errors."""

    attempts: int = 3
    base_delay: float = 1.0
    factor: float = 2.0
    jitter: float = 0.25

    def delay(self, attempt: int) -> float:
        """Base delay before retry number ``attempt`` (1-based), without jitter."""

        return self.base_delay * (self.factor ** max(0, attempt - 1))


@dataclass(frozen=True)
class PublishConfig:
    """Everything the driver needs, passed explicitly at construction."""

    network: NetworkProfile
    parent_name: str
    governance_address: str
    expiry: int = FAR_FUTURE_EXPIRY
    max_versions: int = 200
    lookahead: int = 1
    retry: RetryPolicy = field(default_factory=RetryPolicy)


@dataclass(frozen=True)
class Operation:
    """One contract call that governance (or the parent owner) will send."""

    to: str
    data: bytes
    value: int = 0
    description: str = ""


@dataclass(frozen=True)
class DeploymentPlan:
    """Immutable description of a single deployment attempt."""

    mode: DeploymentMode
    parent_name: str
    version_slot: int
    label: str
    full_name: str
    content_id: str
    content_pointer: bytes
    owner: str
    resolver: str
    fuses: int
    expiry: int
    create_operation: Operation
    set_content_operation: Operation

    def operations(self) -> List[Operation]:
        """Operations that must go through governance for this plan's mode."""

        if self.mode is DeploymentMode.GOVERNANCE_OWNS_PARENT:
            return [self.create_operation, self.set_content_operation]
        elif self.mode is DeploymentMode.INDIVIDUAL_OWNS_PARENT:
            return [self.set_content_operation]
        else:
            raise ValueError(f"unhandled deployment mode {self.mode!r}")


@dataclass
class DeploymentResult:
    """Terminal report of :meth:`PublicationDriver.deploy`."""

    mode: DeploymentMode
    version_slot: int
    full_name: str
    content_id: str
    state: DeploymentState
    proposal_id: Optional[str] = None
    transaction_hash: Optional[str] = None
    existing_versions: Sequence[str] = ()
    history: List[DeploymentState] = field(default_factory=list)
