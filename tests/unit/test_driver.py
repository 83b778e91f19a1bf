from threading import Event

import pytest

from ens_publish import contenthash
from ens_publish.config import (
    NETWORKS,
    DeploymentMode,
    DeploymentState,
    PublishConfig,
    RetryPolicy,
)
from ens_publish.driver import PublicationDriver
from ens_publish.errors import (
    AuthorizationError,
    ConfigError,
    DeploymentCancelled,
    FuseError,
    GovernanceUnavailable,
    InvalidContentIdentifier,
    PartialDeployment,
    ProposalNotFound,
    RegistryReadError,
    VersionSlotConflict,
    WriteUnconfirmed,
)
from ens_publish.fuses import PERMANENT_PUBLICATION, Fuse
from ens_publish.governance import ProposalState

from fakes import GOVERNANCE, INDIVIDUAL, PARENT, FakeGovernance, FakeRegistry, unavailable, wrapped_parent

CID = "bafybeigdyrzt5sfp7udm7hu76uh7y26nf3efuylqabf3oclgtqy55fbzdi"


def build_driver(parent_owner=GOVERNANCE, *, signer=None, versions=(), cancel_event=None, **kwargs):
    registry = FakeRegistry()
    wrapped_parent(registry, parent_owner, fuses=kwargs.pop("parent_fuses", int(Fuse.CANNOT_UNWRAP)))
    registry.add_versions(PARENT, versions)
    governance = FakeGovernance(registry)
    sleeps = []
    config = PublishConfig(
        network=NETWORKS["sepolia"],
        parent_name=PARENT,
        governance_address=GOVERNANCE,
        retry=RetryPolicy(attempts=3, base_delay=1.0, factor=2.0, jitter=0.0),
        **kwargs,
    )
    driver = PublicationDriver(
        config,
        registry,
        governance,
        signer_address=signer,
        cancel_event=cancel_event,
        sleep=sleeps.append,
    )
    return driver, registry, governance, sleeps


# ----------------------------------------------------------------------
# Governance owns the parent: one atomic batch
# ----------------------------------------------------------------------
def test_governance_deploy_end_to_end():
    driver, registry, governance, _ = build_driver(versions=[0, 1, 2])

    result = driver.deploy(CID, origin="Deploy v3.site.eth")

    assert result.mode is DeploymentMode.GOVERNANCE_OWNS_PARENT
    assert result.full_name == "v3.site.eth"
    assert result.state is DeploymentState.AWAITING_THRESHOLD
    assert result.history == [
        DeploymentState.START,
        DeploymentState.MODE_DETECTED,
        DeploymentState.BUILD_BATCH,
        DeploymentState.SUBMIT_BATCH_PROPOSAL,
        DeploymentState.AWAITING_THRESHOLD,
    ]
    assert list(result.existing_versions) == ["v0", "v1", "v2"]
    # Nothing happens on-chain until governance executes.
    assert "v3.site.eth" not in registry.nodes
    assert governance.proposals[result.proposal_id].origin == "Deploy v3.site.eth"

    governance.approve(result.proposal_id)
    status = driver.wait_for_threshold(result.proposal_id, poll_interval=0)
    assert status.state is ProposalState.READY_TO_EXECUTE

    driver.execute(result.proposal_id)
    driver.track(result, driver.proposal_status(result.proposal_id))

    node = registry.nodes["v3.site.eth"]
    assert node.owner.lower() == GOVERNANCE
    assert node.fuses == PERMANENT_PUBLICATION
    assert contenthash.decode(node.content) == CID
    assert result.state is DeploymentState.TERMINAL


def test_rejected_batch_leaves_nothing_behind():
    driver, registry, governance, _ = build_driver()

    result = driver.deploy(CID)
    governance.reject(result.proposal_id)

    status = driver.proposal_status(result.proposal_id)
    driver.track(result, status)

    assert status.state is ProposalState.REPLACED
    assert result.state is DeploymentState.REJECTED
    assert set(registry.nodes) == {PARENT}
    assert driver.scan().next == 0


def test_threshold_of_one_is_ready_immediately():
    driver, _, governance, _ = build_driver()
    governance.threshold = 1

    result = driver.deploy(CID)

    assert result.state is DeploymentState.READY_TO_EXECUTE


def test_invalid_cid_aborts_before_any_call():
    driver, registry, governance, _ = build_driver()

    with pytest.raises(InvalidContentIdentifier):
        driver.deploy("definitely not a cid")

    assert registry.reads == []
    assert governance.proposals == {}


def test_unauthorized_signer_is_fatal():
    driver, _, governance, _ = build_driver()
    governance.authorized = False

    with pytest.raises(AuthorizationError):
        driver.deploy(CID)

    assert governance.proposals == {}


def test_prepare_writes_nothing():
    driver, registry, governance, _ = build_driver(versions=[0])

    plan = driver.prepare(CID)

    assert plan.full_name == "v1.site.eth"
    assert plan.mode is DeploymentMode.GOVERNANCE_OWNS_PARENT
    assert registry.writes == []
    assert governance.proposals == {}


# ----------------------------------------------------------------------
# Individual owns the parent: direct create, proposed contenthash
# ----------------------------------------------------------------------
def test_individual_deploy_creates_then_proposes():
    driver, registry, governance, _ = build_driver(INDIVIDUAL, signer=INDIVIDUAL, versions=[0])

    result = driver.deploy(CID)

    assert result.mode is DeploymentMode.INDIVIDUAL_OWNS_PARENT
    assert result.history == [
        DeploymentState.START,
        DeploymentState.MODE_DETECTED,
        DeploymentState.EXECUTE_DIRECT_CREATE,
        DeploymentState.PROPOSE_CONTENT_SET,
        DeploymentState.AWAITING_THRESHOLD,
    ]
    assert registry.writes == ["create:v1.site.eth"]
    node = registry.nodes["v1.site.eth"]
    assert node.owner.lower() == GOVERNANCE
    assert node.fuses == PERMANENT_PUBLICATION
    assert node.content == b""

    proposal = governance.proposals[result.proposal_id]
    assert len(proposal.operations) == 1

    governance.approve(result.proposal_id)
    driver.execute(result.proposal_id)
    assert contenthash.decode(registry.nodes["v1.site.eth"].content) == CID


def test_individual_deploy_requires_parent_owner():
    driver, registry, _, _ = build_driver(INDIVIDUAL, signer=GOVERNANCE.replace("5afe", "beef"))

    with pytest.raises(AuthorizationError):
        driver.deploy(CID)

    assert registry.writes == []


def test_rejected_content_proposal_is_partial():
    driver, registry, governance, _ = build_driver(INDIVIDUAL, signer=INDIVIDUAL)

    result = driver.deploy(CID)
    governance.reject(result.proposal_id)

    with pytest.raises(PartialDeployment) as excinfo:
        driver.proposal_status(result.proposal_id, name=result.full_name)

    assert excinfo.value.name == "v0.site.eth"
    assert excinfo.value.proposal_id == result.proposal_id
    # The wasted slot is never reused.
    assert "v0.site.eth" in registry.nodes
    assert driver.scan().next == 1


def test_failed_proposal_submission_after_create_is_partial():
    driver, registry, governance, sleeps = build_driver(INDIVIDUAL, signer=INDIVIDUAL)
    governance.propose_failures = [unavailable(), unavailable(), unavailable()]

    with pytest.raises(PartialDeployment) as excinfo:
        driver.deploy(CID)

    assert excinfo.value.proposal_id is None
    assert isinstance(excinfo.value.__cause__, GovernanceUnavailable)
    assert registry.writes == ["create:v0.site.eth"]
    assert sleeps == [1.0, 2.0]


def test_version_race_retries_once_with_fresh_scan():
    driver, registry, _, _ = build_driver(INDIVIDUAL, signer=INDIVIDUAL, versions=[0])
    registry.steal_on_create.add("v1.site.eth")

    result = driver.deploy(CID)

    assert result.full_name == "v2.site.eth"
    assert result.version_slot == 2
    assert registry.writes == ["create:v2.site.eth"]


def test_version_race_lost_twice_is_reported():
    driver, registry, _, _ = build_driver(INDIVIDUAL, signer=INDIVIDUAL)
    registry.steal_on_create.update({"v0.site.eth", "v1.site.eth"})

    with pytest.raises(VersionSlotConflict):
        driver.deploy(CID)


# ----------------------------------------------------------------------
# Parent fuses
# ----------------------------------------------------------------------
def test_unwrapped_parent_is_config_error():
    driver, registry, _, _ = build_driver()
    del registry.nodes[PARENT]

    with pytest.raises(ConfigError):
        driver.deploy(CID)


def test_governance_parent_without_cannot_unwrap_needs_manual_burn():
    driver, registry, governance, _ = build_driver(parent_fuses=0)

    with pytest.raises(FuseError) as excinfo:
        driver.deploy(CID, burn_parent_fuses=True)

    assert "setFuses" in excinfo.value.hint
    assert registry.writes == []
    assert governance.proposals == {}


def test_individual_parent_burn_requires_flag():
    driver, registry, _, _ = build_driver(INDIVIDUAL, signer=INDIVIDUAL, parent_fuses=0)

    with pytest.raises(FuseError):
        driver.deploy(CID)

    assert registry.writes == []


def test_individual_parent_burns_cannot_unwrap_when_asked():
    driver, registry, _, _ = build_driver(INDIVIDUAL, signer=INDIVIDUAL, parent_fuses=0)

    driver.deploy(CID, burn_parent_fuses=True)

    assert registry.writes[0] == f"fuses:{PARENT}:1"
    assert registry.nodes[PARENT].fuses & Fuse.CANNOT_UNWRAP


# ----------------------------------------------------------------------
# Retry and cancellation
# ----------------------------------------------------------------------
def test_retryable_read_errors_back_off_then_succeed():
    driver, registry, _, sleeps = build_driver()
    calls = {"n": 0}
    original = registry.owner_of

    def flaky(name):
        if name == "v0.site.eth" and calls["n"] < 2:
            calls["n"] += 1
            raise RegistryReadError("timeout")
        return original(name)

    registry.owner_of = flaky

    assert driver.scan().next == 0
    assert sleeps == [1.0, 2.0]


def test_retry_attempts_exhausted_reraises():
    driver, registry, _, sleeps = build_driver()
    registry.failing_reads.add("v0.site.eth")

    with pytest.raises(RegistryReadError):
        driver.scan()

    assert len(sleeps) == 2


def test_fatal_errors_are_not_retried():
    driver, _, governance, sleeps = build_driver()
    governance.status_failures = [ProposalNotFound("gone")]

    with pytest.raises(ProposalNotFound):
        driver.proposal_status("0x01")

    assert sleeps == []


def test_cancel_before_start():
    cancel = Event()
    cancel.set()
    driver, registry, _, _ = build_driver(cancel_event=cancel)

    with pytest.raises(DeploymentCancelled):
        driver.deploy(CID)

    assert registry.reads == []


def test_cancel_does_not_interrupt_two_step_after_create():
    cancel = Event()
    driver, registry, governance, _ = build_driver(INDIVIDUAL, signer=INDIVIDUAL, cancel_event=cancel)
    original = registry.create_child

    def create_then_cancel(*args):
        tx = original(*args)
        cancel.set()
        return tx

    registry.create_child = create_then_cancel

    result = driver.deploy(CID)

    assert result.proposal_id in governance.proposals


def test_wait_times_out_with_last_status():
    driver, _, _, _ = build_driver()
    result = driver.deploy(CID)

    status = driver.wait_for_threshold(result.proposal_id, poll_interval=0, timeout=0)

    assert status.state is ProposalState.AWAITING_THRESHOLD
    assert status.approvals == 1


def test_wait_stops_when_cancelled():
    cancel = Event()
    driver, _, _, _ = build_driver(cancel_event=cancel)
    result = driver.deploy(CID)
    cancel.set()

    status = driver.wait_for_threshold(result.proposal_id, poll_interval=0)

    assert status.pending


def test_describe_reports_content():
    driver, _, governance, _ = build_driver()
    governance.threshold = 1
    result = driver.deploy(CID)
    driver.execute(result.proposal_id)

    report = driver.describe(result.full_name)

    assert report.node.exists
    assert report.pointer.kind == "ipfs"
    assert report.pointer.content_id == CID


# ----------------------------------------------------------------------
# Unconfirmed direct create
# ----------------------------------------------------------------------
def test_unconfirmed_create_that_landed_continues_to_proposal():
    driver, registry, governance, _ = build_driver(INDIVIDUAL, signer=INDIVIDUAL)
    original = registry.create_child

    def mined_late(*args):
        original(*args)
        raise WriteUnconfirmed("creating v0.site.eth was not confirmed: receipt timeout")

    registry.create_child = mined_late

    result = driver.deploy(CID)

    assert result.full_name == "v0.site.eth"
    assert result.state is DeploymentState.AWAITING_THRESHOLD
    assert result.proposal_id in governance.proposals


def test_unconfirmed_create_that_is_missing_is_partial():
    driver, registry, governance, _ = build_driver(INDIVIDUAL, signer=INDIVIDUAL)

    def never_seen(*args):
        raise WriteUnconfirmed("creating v0.site.eth was not confirmed: receipt timeout")

    registry.create_child = never_seen

    with pytest.raises(PartialDeployment) as excinfo:
        driver.deploy(CID)

    assert excinfo.value.name == "v0.site.eth"
    assert "not confirmed" in str(excinfo.value)
    assert "status --name v0.site.eth" in excinfo.value.hint
    assert governance.proposals == {}


# ----------------------------------------------------------------------
# Proposal origin
# ----------------------------------------------------------------------
def test_origin_names_the_version_actually_proposed():
    driver, registry, governance, _ = build_driver(INDIVIDUAL, signer=INDIVIDUAL, versions=[0])
    registry.steal_on_create.add("v1.site.eth")

    result = driver.deploy(CID, origin_for=lambda name: f"Deploy {name}")

    assert result.full_name == "v2.site.eth"
    assert governance.proposals[result.proposal_id].origin == "Deploy v2.site.eth"


def test_fixed_origin_wins_over_builder():
    driver, _, governance, _ = build_driver()

    result = driver.deploy(CID, origin="fixed", origin_for=lambda name: "built")

    assert governance.proposals[result.proposal_id].origin == "fixed"
