"""Version slot resolution.

Versions are published as ``v0.<parent>``, ``v1.<parent>``, ... and slots are
never reused, so the next version is the first label whose owner is still the
zero address.  The scan walks the slots linearly from zero on every deployment;
at a few deployments a day that is cheaper to reason about than any index.

Parameters
----------
max_versions:
    Ceiling for the scan.  A registry that reports every slot as occupied
    (misbehaving or adversarial) must not keep us scanning forever.
lookahead:
    Number of slots read concurrently per round.  The results are reconciled in
    slot order so the answer is identical to the sequential scan.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Optional

from .errors import VersionLimitReached
from .names import child_name, is_zero_address, version_label
from .registry import NameRegistry

LOG = logging.getLogger(__name__)

DEFAULT_MAX_VERSIONS = 200


@dataclass(frozen=True)
class VersionScan:
    """Outcome of a scan: the free slot and the labels found before it."""

    next: int
    existing: List[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return version_label(self.next)

    @property
    def latest(self) -> Optional[str]:
        return self.existing[-1] if self.existing else None


class VersionResolver:
    """Find the next free ``v<N>`` label under a parent name."""

    def __init__(
        self,
        registry: NameRegistry,
        max_versions: int = DEFAULT_MAX_VERSIONS,
        lookahead: int = 1,
    ) -> None:
        if max_versions < 1:
            raise ValueError("max_versions must be >= 1")
        if lookahead < 1:
            raise ValueError("lookahead must be >= 1")
        self._registry = registry
        self._max_versions = max_versions
        self._lookahead = lookahead

    def _is_occupied(self, parent: str, slot: int) -> bool:
        # RegistryReadError propagates: a failed read is neither free nor taken.
        owner = self._registry.owner_of(child_name(version_label(slot), parent))
        return not is_zero_address(owner)

    def _occupied(self, parent: str, slots: List[int]) -> List[bool]:
        if len(slots) == 1:
            return [self._is_occupied(parent, slots[0])]
        with ThreadPoolExecutor(max_workers=len(slots)) as pool:
            return list(pool.map(lambda slot: self._is_occupied(parent, slot), slots))

    def resolve(self, parent: str) -> VersionScan:
        existing: List[str] = []
        slot = 0
        while slot < self._max_versions:
            batch = list(range(slot, min(slot + self._lookahead, self._max_versions)))
            results = self._occupied(parent, batch)
            for index, (candidate, occupied) in enumerate(zip(batch, results)):
                if occupied:
                    existing.append(version_label(candidate))
                    continue
                later = [version_label(s) for s, o in zip(batch[index + 1:], results[index + 1:]) if o]
                if later:
                    LOG.warning(
                        "Version gap under %s: %s free but %s occupied",
                        parent,
                        version_label(candidate),
                        ", ".join(later),
                    )
                LOG.debug("Next free version under %s is %s", parent, version_label(candidate))
                return VersionScan(next=candidate, existing=existing)
            slot = batch[-1] + 1

        raise VersionLimitReached(
            f"all {self._max_versions} version slots under {parent} are occupied"
        )


def resolve_next_version(
    parent: str,
    registry: NameRegistry,
    max_versions: int = DEFAULT_MAX_VERSIONS,
) -> VersionScan:
    """Functional shorthand for :meth:`VersionResolver.resolve`."""

    return VersionResolver(registry, max_versions=max_versions).resolve(parent)
