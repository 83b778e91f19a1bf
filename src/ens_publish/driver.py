"""Publication orchestrator.

The driver sequences version resolution, mode detection, plan construction
and governance submission for one deployment, and answers follow-up queries
about the resulting proposal.  All inputs come from the :class:`PublishConfig`
and collaborators given at construction.

Two execution paths exist:

* governance owns the parent: create-child and set-contenthash go out as one
  atomic proposal, so a rejection leaves no trace on-chain;
* an individual owns the parent: the individual creates the child directly and
  governance approves only the contenthash.  A rejected proposal then leaves
  an empty, permanently locked version behind (:class:`PartialDeployment`).
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass
from threading import Event
from typing import Callable, Optional, TypeVar

from . import contenthash
from .config import DeploymentMode, DeploymentPlan, DeploymentResult, DeploymentState, PublishConfig
from .contenthash import ContentPointer
from .errors import (
    AuthorizationError,
    ConfigError,
    DeploymentCancelled,
    FuseError,
    PartialDeployment,
    PublishError,
    VersionSlotConflict,
    WriteUnconfirmed,
)
from .fuses import Fuse
from .governance.base import GovernanceBackend, Proposal, ProposalState, ProposalStatus
from .names import same_account
from .ownership import ParentCheck, check_parent, detect_mode
from .plan import PlanBuilder
from .registry import NameRegistry, NodeData
from .versions import VersionResolver, VersionScan

LOG = logging.getLogger(__name__)

T = TypeVar("T")


def _origin(
    plan: DeploymentPlan,
    origin: Optional[str],
    origin_for: Optional[Callable[[str], str]],
) -> Optional[str]:
    if origin is None and origin_for is not None:
        return origin_for(plan.full_name)
    return origin


@dataclass(frozen=True)
class NameReport:
    """Registry view of a single published name."""

    node: NodeData
    pointer: ContentPointer


class PublicationDriver:
    """Run the versioned immutable publication protocol."""

    def __init__(
        self,
        config: PublishConfig,
        registry: NameRegistry,
        governance: GovernanceBackend,
        *,
        signer_address: Optional[str] = None,
        cancel_event: Optional[Event] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._registry = registry
        self._governance = governance
        self._signer = signer_address
        self._cancel = cancel_event
        self._sleep = sleep
        self._resolver = VersionResolver(
            registry, max_versions=config.max_versions, lookahead=config.lookahead
        )
        self._builder = PlanBuilder(config.network, expiry=config.expiry)

    # ------------------------------------------------------------------
    # Step helpers
    # ------------------------------------------------------------------
    def _checkpoint(self) -> None:
        if self._cancel is not None and self._cancel.is_set():
            raise DeploymentCancelled("deployment cancelled before the next step")

    def _retry(self, what: str, func: Callable[..., T], *args, **kwargs) -> T:
        policy = self._config.retry
        attempt = 1
        while True:
            try:
                return func(*args, **kwargs)
            except PublishError as exc:
                if not exc.retryable or isinstance(exc, VersionSlotConflict):
                    raise
                if attempt >= policy.attempts:
                    LOG.error("%s failed after %d attempts: %s", what, attempt, exc)
                    raise
                delay = policy.delay(attempt) + random.uniform(0.0, policy.jitter)
                LOG.warning(
                    "%s failed (%s); retrying in %.1fs (attempt %d/%d)",
                    what,
                    exc,
                    delay,
                    attempt + 1,
                    policy.attempts,
                )
                self._checkpoint()
                self._sleep(delay)
                attempt += 1

    @staticmethod
    def _advance(result: DeploymentResult, state: DeploymentState) -> None:
        result.state = state
        result.history.append(state)
        LOG.debug("%s -> %s", result.full_name, state.value)

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------
    def scan(self) -> VersionScan:
        return self._retry("version scan", self._resolver.resolve, self._config.parent_name)

    def detect_mode(self) -> DeploymentMode:
        return self._retry(
            "ownership check",
            detect_mode,
            self._config.parent_name,
            self._config.governance_address,
            self._registry,
        )

    def check_parent(self) -> ParentCheck:
        return self._retry("parent check", check_parent, self._config.parent_name, self._registry)

    def describe(self, name: str) -> NameReport:
        node = self._retry("name lookup", self._registry.get_data, name)
        raw = self._retry("contenthash lookup", self._registry.content_pointer, name)
        return NameReport(node=node, pointer=contenthash.inspect(raw))

    def prepare(self, content_id: str) -> DeploymentPlan:
        """Resolve, detect and build without writing anything."""

        contenthash.parse_cid(content_id)
        scan = self.scan()
        mode = self.detect_mode()
        return self._builder.build(
            mode,
            self._config.parent_name,
            scan.next,
            content_id,
            self._config.governance_address,
        )

    # ------------------------------------------------------------------
    # Parent preparation
    # ------------------------------------------------------------------
    def ensure_parent_ready(self, mode: DeploymentMode, *, burn: bool = False) -> ParentCheck:
        """Make sure children of the parent can be locked.

        ``PARENT_CANNOT_CONTROL`` is only accepted on a child when the parent
        has ``CANNOT_UNWRAP`` burned.  Only the individual owner can burn it
        here; a governance-owned parent needs its own Safe transaction.
        """

        parent = self.check_parent()
        if not parent.wrapped:
            raise ConfigError(
                f"{parent.name} is not wrapped in the NameWrapper",
                hint="Wrap the parent name in the ENS manager app first.",
            )
        if not parent.needs_unwrap_burn:
            return parent

        if mode is DeploymentMode.GOVERNANCE_OWNS_PARENT:
            raise FuseError(
                f"{parent.name} needs CANNOT_UNWRAP burned before versions can be locked",
                hint=(
                    "Propose NameWrapper.setFuses(namehash(parent), 1) from the Safe, "
                    "or burn it in the ENS manager app."
                ),
            )
        elif mode is DeploymentMode.INDIVIDUAL_OWNS_PARENT:
            if not burn:
                raise FuseError(
                    f"{parent.name} needs CANNOT_UNWRAP burned before versions can be locked",
                    hint="Re-run with --burn-parent-fuses (permanent and irreversible).",
                )
            self._require_parent_owner(parent.owner)
            self._checkpoint()
            tx_hash = self._registry.set_fuses(parent.name, Fuse.CANNOT_UNWRAP)
            LOG.warning("Burned CANNOT_UNWRAP on %s in %s", parent.name, tx_hash)
            return self.check_parent()
        else:
            raise ValueError(f"unhandled deployment mode {mode!r}")

    def _require_parent_owner(self, owner: str) -> None:
        if not same_account(self._signer, owner):
            raise AuthorizationError(
                f"signer {self._signer} does not own {self._config.parent_name} (owner {owner})"
            )

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------
    def deploy(
        self,
        content_id: str,
        *,
        origin: Optional[str] = None,
        origin_for: Optional[Callable[[str], str]] = None,
        burn_parent_fuses: bool = False,
    ) -> DeploymentResult:
        """Run one deployment attempt and return where it ended up.

        ``origin_for`` is called with the full name actually proposed, after
        any version race retry, when no fixed ``origin`` is given.
        """

        contenthash.parse_cid(content_id)
        self._checkpoint()
        scan = self.scan()
        mode = self.detect_mode()

        result = DeploymentResult(
            mode=mode,
            version_slot=scan.next,
            full_name=f"{scan.label}.{self._config.parent_name}",
            content_id=content_id,
            state=DeploymentState.START,
            existing_versions=tuple(scan.existing),
            history=[DeploymentState.START],
        )
        self._advance(result, DeploymentState.MODE_DETECTED)
        LOG.info(
            "Deploying %s as %s (%s, existing: %s)",
            content_id,
            result.full_name,
            mode.value,
            ", ".join(scan.existing[-3:]) or "none",
        )

        self.ensure_parent_ready(mode, burn=burn_parent_fuses)
        self._retry("signer check", self._governance.check_signer)
        self._checkpoint()

        if mode is DeploymentMode.GOVERNANCE_OWNS_PARENT:
            self._deploy_batch(result, scan, origin, origin_for)
        elif mode is DeploymentMode.INDIVIDUAL_OWNS_PARENT:
            self._deploy_two_step(result, scan, origin, origin_for)
        else:
            raise ValueError(f"unhandled deployment mode {mode!r}")
        return result

    def _build(self, result: DeploymentResult, slot: int) -> DeploymentPlan:
        plan = self._builder.build(
            result.mode,
            self._config.parent_name,
            slot,
            result.content_id,
            self._config.governance_address,
        )
        result.version_slot = plan.version_slot
        result.full_name = plan.full_name
        return plan

    def _deploy_batch(
        self,
        result: DeploymentResult,
        scan: VersionScan,
        origin: Optional[str],
        origin_for: Optional[Callable[[str], str]],
    ) -> None:
        plan = self._build(result, scan.next)
        self._advance(result, DeploymentState.BUILD_BATCH)
        self._checkpoint()

        proposal = self._retry(
            "batch proposal",
            self._governance.propose,
            plan.operations(),
            origin=_origin(plan, origin, origin_for),
        )
        self._advance(result, DeploymentState.SUBMIT_BATCH_PROPOSAL)
        self._settle(result, proposal)

    def _deploy_two_step(
        self,
        result: DeploymentResult,
        scan: VersionScan,
        origin: Optional[str],
        origin_for: Optional[Callable[[str], str]],
    ) -> None:
        owner = self._retry("parent owner", self._registry.owner_of, self._config.parent_name)
        self._require_parent_owner(owner)

        slot = scan.next
        for attempt in (1, 2):
            plan = self._build(result, slot)
            self._advance(result, DeploymentState.EXECUTE_DIRECT_CREATE)
            self._checkpoint()
            try:
                result.transaction_hash = self._registry.create_child(
                    plan.parent_name,
                    plan.label,
                    plan.owner,
                    plan.resolver,
                    0,
                    plan.fuses,
                    plan.expiry,
                )
                break
            except WriteUnconfirmed as exc:
                self._confirm_create(plan, exc)
                break
            except VersionSlotConflict:
                if attempt == 2:
                    raise
                LOG.warning("%s was claimed concurrently; rescanning versions", plan.full_name)
                rescan = self.scan()
                slot = rescan.next
                result.existing_versions = tuple(rescan.existing)

        LOG.info("Created %s in %s", plan.full_name, result.transaction_hash)

        # No checkpoint here: the new slot stays empty until the proposal exists.
        self._advance(result, DeploymentState.PROPOSE_CONTENT_SET)
        try:
            proposal = self._retry(
                "contenthash proposal",
                self._governance.propose,
                plan.operations(),
                origin=_origin(plan, origin, origin_for),
            )
        except PublishError as exc:
            raise PartialDeployment(plan.full_name, reason=str(exc)) from exc
        self._settle(result, proposal)

    def _confirm_create(self, plan: DeploymentPlan, exc: WriteUnconfirmed) -> None:
        """Continue only if the unconfirmed create is visibly owned by governance."""

        try:
            owner = self._retry("created name owner", self._registry.owner_of, plan.full_name)
        except PublishError as read_exc:
            LOG.error("Could not read back %s: %s", plan.full_name, read_exc)
            owner = None
        if not same_account(owner, plan.owner):
            raise PartialDeployment(
                plan.full_name,
                reason=str(exc),
                hint=f"Run 'ens-publish status --name {plan.full_name}'; if it exists, publish a new version.",
                confirmed=False,
            ) from exc
        LOG.warning("%s exists although its create was not confirmed (%s)", plan.full_name, exc)

    def _settle(self, result: DeploymentResult, proposal: Proposal) -> None:
        result.proposal_id = proposal.proposal_id
        self._advance(result, DeploymentState.AWAITING_THRESHOLD)
        if proposal.current_approvals >= proposal.required_approvals:
            self._advance(result, DeploymentState.READY_TO_EXECUTE)
        LOG.info(
            "Proposal %s for %s has %d/%d approvals%s",
            proposal.proposal_id,
            result.full_name,
            proposal.current_approvals,
            proposal.required_approvals,
            " (reused pending duplicate)" if proposal.duplicate else "",
        )

    # ------------------------------------------------------------------
    # Proposal lifecycle
    # ------------------------------------------------------------------
    def proposal_status(self, proposal_id: str, *, name: Optional[str] = None) -> ProposalStatus:
        """Return the proposal's status; a dead content-only proposal is partial."""

        status = self._retry("proposal status", self._governance.status, proposal_id)
        if status.state in (ProposalState.REPLACED, ProposalState.FAILED) and not status.batched:
            raise PartialDeployment(name or f"version under {self._config.parent_name}", proposal_id)
        return status

    def wait_for_threshold(
        self,
        proposal_id: str,
        *,
        poll_interval: float = 15.0,
        timeout: Optional[float] = None,
        name: Optional[str] = None,
    ) -> ProposalStatus:
        """Poll until the proposal can execute or has finished.

        Timeout and cancellation return the last status; the proposal stays
        live in the backend and can be queried again by id.
        """

        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            status = self.proposal_status(proposal_id, name=name)
            if status.state is not ProposalState.AWAITING_THRESHOLD:
                return status
            if self._cancel is not None and self._cancel.is_set():
                LOG.info("Stopped waiting for %s; it remains pending", proposal_id)
                return status
            if deadline is not None and time.monotonic() >= deadline:
                LOG.info(
                    "Proposal %s still awaiting approvals (%d/%d)",
                    proposal_id,
                    status.approvals,
                    status.required,
                )
                return status
            if self._cancel is not None:
                self._cancel.wait(poll_interval)
            else:
                self._sleep(poll_interval)

    def track(self, result: DeploymentResult, status: ProposalStatus) -> DeploymentResult:
        """Fold a later proposal status into ``result``'s state history."""

        if status.state is ProposalState.EXECUTED:
            result.transaction_hash = status.transaction_hash or result.transaction_hash
            self._advance(result, DeploymentState.TERMINAL)
        elif status.state in (ProposalState.REPLACED, ProposalState.FAILED):
            # Only batches get here; proposal_status raises for content-only ones.
            self._advance(result, DeploymentState.REJECTED)
        elif status.ready and result.state is not DeploymentState.READY_TO_EXECUTE:
            self._advance(result, DeploymentState.READY_TO_EXECUTE)
        return result

    def approve(self, proposal_id: str) -> ProposalStatus:
        return self._governance.approve(proposal_id)

    def execute(self, proposal_id: str) -> str:
        self._checkpoint()
        return self._governance.execute(proposal_id)
