#!/usr/bin/env python3
"""Dump the NameWrapper record and contenthash of an ENS name as JSON."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict

REPO_ROOT = Path(__file__).resolve().parents[2]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

from ens_publish import contenthash  # noqa: E402
from ens_publish.chain import connect  # noqa: E402
from ens_publish.config import NETWORKS  # noqa: E402
from ens_publish.errors import PublishError  # noqa: E402
from ens_publish.fuses import names_of  # noqa: E402
from ens_publish.names import namehash  # noqa: E402
from ens_publish.registry import NameWrapperRegistry  # noqa: E402


LOG = logging.getLogger(__name__)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("name", help="ENS name to inspect, e.g. v3.site.eth")
    parser.add_argument("--rpc-url", required=True, help="Ethereum JSON-RPC endpoint")
    parser.add_argument(
        "--network",
        choices=sorted(NETWORKS),
        default="sepolia",
        help="Network profile providing the contract addresses",
    )
    parser.add_argument("--timeout", type=float, default=30.0, help="RPC timeout in seconds")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    return parser.parse_args()


def inspect_name(registry: NameWrapperRegistry, name: str) -> Dict[str, Any]:
    node = registry.get_data(name)
    pointer = contenthash.inspect(registry.content_pointer(name))
    return {
        "name": name,
        "namehash": "0x" + namehash(name).hex(),
        "exists": node.exists,
        "owner": node.owner,
        "fuses": node.fuses,
        "fuse_names": names_of(node.fuses),
        "expiry": node.expiry,
        "resolver": registry.resolver_of(name),
        "contenthash": {
            "kind": pointer.kind,
            "content_id": pointer.content_id,
            "raw": contenthash.to_hex(pointer.raw),
        },
    }


def main() -> int:
    args = parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )
    LOG.debug("Inspecting %s on %s via %s", args.name, args.network, args.rpc_url)
    registry = NameWrapperRegistry(connect(args.rpc_url, timeout=args.timeout), NETWORKS[args.network])
    try:
        report = inspect_name(registry, args.name)
    except PublishError as exc:
        print(f"[inspect_name] ERROR: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(report, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
