"""Parent-name ownership checks that select the deployment mode."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .config import DeploymentMode
from .fuses import Fuse, is_set
from .names import is_zero_address, same_account
from .registry import NameRegistry

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ParentCheck:
    """Parent state relevant before creating locked children."""

    name: str
    owner: str
    fuses: int
    expiry: int

    @property
    def wrapped(self) -> bool:
        return not is_zero_address(self.owner)

    @property
    def needs_unwrap_burn(self) -> bool:
        # PARENT_CANNOT_CONTROL on a child requires CANNOT_UNWRAP on the parent.
        return not is_set(self.fuses, Fuse.CANNOT_UNWRAP)


def detect_mode(
    parent: str,
    governance_address: str,
    registry: NameRegistry,
) -> DeploymentMode:
    """Classify who controls ``parent``.  Always reads fresh from the registry."""

    owner = registry.owner_of(parent)
    if same_account(owner, governance_address):
        mode = DeploymentMode.GOVERNANCE_OWNS_PARENT
    else:
        mode = DeploymentMode.INDIVIDUAL_OWNS_PARENT
    LOG.debug("Parent %s owned by %s -> %s", parent, owner, mode.value)
    return mode


def check_parent(parent: str, registry: NameRegistry) -> ParentCheck:
    data = registry.get_data(parent)
    return ParentCheck(name=parent, owner=data.owner, fuses=data.fuses, expiry=data.expiry)
