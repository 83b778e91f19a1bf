"""Entry point for the ``ens-publish`` command."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from datetime import datetime, timezone
from pathlib import Path
from threading import Event
from typing import Any, Callable, Dict, Optional, Tuple

from ens_publish import contenthash
from ens_publish.chain import connect
from ens_publish.config import DeploymentState
from ens_publish.driver import PublicationDriver
from ens_publish.errors import DeploymentCancelled, PartialDeployment, PublishError
from ens_publish.fuses import names_of
from ens_publish.governance import ProposalState, SafeGovernanceClient, queue_url
from ens_publish.registry import NameWrapperRegistry

from . import metadata
from .config import DEFAULT_CONFIG_PATH, CliConfig, load_config, write_template
from .storage import build_uploader

LOG = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_RETRYABLE = 2
EXIT_AWAITING = 3
EXIT_CANCELLED = 130


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--config", type=Path, default=None, help="Path to the YAML configuration")
    parser.add_argument("--network", help="Network profile (mainnet, sepolia)")
    parser.add_argument("--rpc-url", help="Ethereum JSON-RPC endpoint")
    parser.add_argument("--ens-domain", help="Parent ENS name, e.g. site.eth")
    parser.add_argument("--safe-address", help="Governance Safe address")
    parser.add_argument("--safe-api-key", help="Safe Transaction Service API key")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ens-publish",
        description="Publish immutable, versioned ENS subnames behind a Safe multisig",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    deploy = sub.add_parser("deploy", help="Upload a directory and propose a new version")
    deploy.add_argument("directory", type=Path, help="Build output to publish")
    deploy.add_argument("--dry-run", action="store_true", help="Upload and plan, but write nothing on-chain")
    deploy.add_argument("--wait", action="store_true", help="Poll until the proposal reaches its threshold")
    deploy.add_argument("--timeout", type=float, default=None, help="Seconds to wait with --wait")
    deploy.add_argument("--execute", action="store_true", help="Execute the proposal once it is ready")
    deploy.add_argument(
        "--burn-parent-fuses",
        action="store_true",
        help="Burn CANNOT_UNWRAP on the parent if needed (permanent)",
    )
    deploy.add_argument("--skip-git-check", action="store_true", help="Do not warn about uncommitted changes")
    _add_common(deploy)

    status = sub.add_parser("status", help="Show versions, a name or a proposal")
    status.add_argument("--name", help="Show registry details of a single name")
    status.add_argument("--proposal", help="Show the state of a proposal by Safe tx hash")
    _add_common(status)

    approve = sub.add_parser("approve", help="Add the signer's approval to a proposal")
    approve.add_argument("proposal", help="Safe transaction hash")
    _add_common(approve)

    execute = sub.add_parser("execute", help="Execute a proposal that reached its threshold")
    execute.add_argument("proposal", help="Safe transaction hash")
    _add_common(execute)

    init = sub.add_parser("init", help="Write a configuration template")
    init.add_argument("--path", type=Path, default=DEFAULT_CONFIG_PATH, help="Where to write the template")
    init.add_argument("--force", action="store_true", help="Overwrite an existing file")
    init.add_argument("--verbose", action="store_true", help="Enable debug logging")
    return parser


def _load(args: argparse.Namespace) -> CliConfig:
    overrides: Dict[str, Any] = {
        "network.name": args.network,
        "network.rpc_url": args.rpc_url,
        "ens.domain": args.ens_domain,
        "governance.safe_address": args.safe_address,
        "governance.api_key": args.safe_api_key,
    }
    return load_config(args.config, overrides=overrides)


def _runtime(
    config: CliConfig,
    stop_event: Event,
    *,
    signer: bool,
) -> Tuple[PublicationDriver, SafeGovernanceClient]:
    config.require("network.rpc_url", "ens.domain", "governance.safe_address")
    if signer:
        config.require("signer.private_key")
    account = config.signer.account() if config.signer.private_key else None

    profile = config.network.profile
    web3 = connect(config.network.rpc_url, timeout=config.network.timeout)
    registry = NameWrapperRegistry(
        web3, profile, account=account, receipt_timeout=config.network.receipt_timeout
    )
    governance = SafeGovernanceClient(
        config.governance.safe_address,
        profile,
        account=account,
        web3=web3,
        service_url=config.governance.service_url,
        api_key=config.governance.api_key,
        timeout=config.governance.timeout,
        receipt_timeout=config.network.receipt_timeout,
    )
    driver = PublicationDriver(
        config.to_publish_config(),
        registry,
        governance,
        signer_address=account.address if account else None,
        cancel_event=stop_event,
    )
    return driver, governance


# ----------------------------------------------------------------------
# Commands
# ----------------------------------------------------------------------
def _cmd_deploy(args: argparse.Namespace, config: CliConfig, stop_event: Event) -> int:
    directory: Path = args.directory
    if not directory.is_dir():
        raise PublishError(f"build directory {directory} does not exist", hint="Build the site first.")
    driver, governance = _runtime(config, stop_event, signer=not args.dry_run)

    build = metadata.build_hash(directory)
    LOG.info(
        "Build hash %s... (%d files, %s)",
        build.short,
        build.file_count,
        metadata.format_size(build.total_size),
    )
    commit = metadata.commit_info(Path.cwd())
    if commit is not None:
        LOG.info("Commit %s %s", commit.short_hash, commit.subject)
        if not args.skip_git_check and not metadata.is_clean(Path.cwd()):
            LOG.warning("Working tree has uncommitted changes (use --skip-git-check to silence)")

    upload = build_uploader(config.storage).upload(directory)
    LOG.info("Uploaded %s (%s)", upload.content_id, metadata.format_size(upload.size))

    if args.dry_run:
        plan = driver.prepare(upload.content_id)
        print(f"Dry run: {plan.mode.value}")
        print(f"  name:        {plan.full_name}")
        print(f"  cid:         {plan.content_id}")
        print(f"  contenthash: {contenthash.to_hex(plan.content_pointer)}")
        print(f"  fuses:       {', '.join(names_of(plan.fuses))}")
        print(f"  expiry:      {datetime.fromtimestamp(plan.expiry, timezone.utc).isoformat()}")
        for op in plan.operations():
            print(f"  proposal op: {op.description}")
        print(metadata.describe(plan.full_name, plan.content_id, commit=commit, build=build))
        return EXIT_OK

    result = driver.deploy(
        upload.content_id,
        origin_for=lambda name: metadata.origin(name, upload.content_id, commit=commit, build=build),
        burn_parent_fuses=args.burn_parent_fuses,
    )
    print(f"Proposed {result.full_name} ({result.mode.value})")
    if result.transaction_hash:
        print(f"  created in tx {result.transaction_hash}")
    print(f"  proposal: {result.proposal_id}")
    print(f"  review:   {queue_url(config.network.profile, governance.safe_address, result.proposal_id)}")
    for url in metadata.gateway_urls(result.content_id, result.full_name):
        print(f"  {url}")

    if not (args.wait or args.execute):
        return EXIT_OK

    status = driver.wait_for_threshold(
        result.proposal_id,
        poll_interval=config.governance.poll_interval,
        timeout=args.timeout,
        name=result.full_name,
    )
    driver.track(result, status)
    if stop_event.is_set():
        raise DeploymentCancelled("stopped waiting; the proposal remains pending")
    if result.state is DeploymentState.REJECTED:
        print(f"Proposal {result.proposal_id} was {status.state.value}; nothing was created")
        return EXIT_FATAL
    if not status.ready and status.state is not ProposalState.EXECUTED:
        print(f"Proposal still awaiting approvals ({status.approvals}/{status.required})")
        return EXIT_AWAITING

    if args.execute and status.ready:
        tx_hash = driver.execute(result.proposal_id)
        print(f"Executed {result.proposal_id} in {tx_hash}")
        driver.track(result, driver.proposal_status(result.proposal_id, name=result.full_name))
    return EXIT_OK


def _cmd_status(args: argparse.Namespace, config: CliConfig, stop_event: Event) -> int:
    driver, _ = _runtime(config, stop_event, signer=False)
    domain = config.ens.domain

    if args.proposal:
        status = driver.proposal_status(args.proposal, name=args.name)
        print(f"Proposal {status.proposal_id}")
        print(f"  state:     {status.state.value}")
        print(f"  approvals: {status.approvals}/{status.required}")
        print(f"  nonce:     {status.nonce}")
        print(f"  batched:   {status.batched}")
        if status.transaction_hash:
            print(f"  tx:        {status.transaction_hash}")
        return EXIT_OK

    if args.name:
        report = driver.describe(args.name)
        if not report.node.exists:
            print(f"{args.name} does not exist or is not wrapped")
            return EXIT_FATAL
        print(args.name)
        print(f"  owner:   {report.node.owner}")
        print(f"  fuses:   {', '.join(names_of(report.node.fuses)) or 'none'}")
        print(f"  expiry:  {datetime.fromtimestamp(report.node.expiry, timezone.utc).isoformat()}")
        print(f"  content: {report.pointer.kind} {report.pointer.content_id or ''}".rstrip())
        return EXIT_OK

    scan = driver.scan()
    print(f"{domain} on {config.network.name}")
    if not scan.existing:
        print("  no versions deployed yet")
    else:
        print(f"  versions: {len(scan.existing)}")
        print(f"  latest:   {scan.latest}.{domain}")
        for label in scan.existing[-10:]:
            print(f"    {label}.{domain}")
    print(f"  next:     {scan.label}.{domain}")
    return EXIT_OK


def _cmd_approve(args: argparse.Namespace, config: CliConfig, stop_event: Event) -> int:
    driver, _ = _runtime(config, stop_event, signer=True)
    status = driver.approve(args.proposal)
    print(f"Approved {args.proposal}: {status.approvals}/{status.required} ({status.state.value})")
    return EXIT_OK


def _cmd_execute(args: argparse.Namespace, config: CliConfig, stop_event: Event) -> int:
    driver, _ = _runtime(config, stop_event, signer=True)
    tx_hash = driver.execute(args.proposal)
    print(f"Executed {args.proposal} in {tx_hash}")
    return EXIT_OK


COMMANDS: Dict[str, Callable[[argparse.Namespace, CliConfig, Event], int]] = {
    "deploy": _cmd_deploy,
    "status": _cmd_status,
    "approve": _cmd_approve,
    "execute": _cmd_execute,
}


def _report(exc: PublishError) -> None:
    print(f"[{exc.code}] {exc}", file=sys.stderr)
    if exc.hint:
        print(f"  -> {exc.hint}", file=sys.stderr)


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _setup_logging(args.verbose)

    if args.command == "init":
        try:
            path = write_template(args.path, force=args.force)
        except PublishError as exc:
            _report(exc)
            return EXIT_FATAL
        print(f"Wrote {path}; edit it or export the matching environment variables")
        return EXIT_OK

    stop_event = Event()

    def _shutdown(signum, frame):  # pragma: no cover - signal handler
        LOG.info("received signal %s, stopping after the current step", signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    try:
        config = _load(args)
        return COMMANDS[args.command](args, config, stop_event)
    except DeploymentCancelled as exc:
        _report(exc)
        return EXIT_CANCELLED
    except PartialDeployment as exc:
        _report(exc)
        return EXIT_AWAITING
    except PublishError as exc:
        _report(exc)
        return EXIT_RETRYABLE if exc.retryable else EXIT_FATAL
    except KeyboardInterrupt:  # pragma: no cover - fallback if signal not set
        return EXIT_CANCELLED


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
