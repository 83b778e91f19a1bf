"""Deployment plan construction.

The builder turns (mode, parent, slot, CID) into the exact calls that will hit
the chain.  The child is created with the permanent-publication fuses already
burned, so there is no window in which the version is mutable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from . import calls, contenthash
from .config import FAR_FUTURE_EXPIRY, DeploymentMode, DeploymentPlan, NetworkProfile, Operation
from .fuses import PERMANENT_PUBLICATION, check_burn
from .names import checksum, child_name, namehash, version_label

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class BundledCall:
    """A single Safe transaction covering one or more operations."""

    to: str
    value: int
    data: bytes
    operation: int
    operations: Sequence[Operation]

    @property
    def batched(self) -> bool:
        return self.operation == calls.DELEGATE_CALL


def bundle(operations: Sequence[Operation], multisend: str) -> BundledCall:
    """Wrap ``operations`` so that they execute atomically.

    A single operation is sent as a plain call.  Several operations become one
    ``DELEGATECALL`` to MultiSendCallOnly: either all apply or none does.
    """

    if not operations:
        raise ValueError("cannot bundle an empty operation list")
    if len(operations) == 1:
        op = operations[0]
        return BundledCall(op.to, op.value, op.data, calls.CALL, tuple(operations))
    data = calls.multi_send((op.to, op.value, op.data) for op in operations)
    return BundledCall(checksum(multisend), 0, data, calls.DELEGATE_CALL, tuple(operations))


class PlanBuilder:
    """Build :class:`DeploymentPlan` objects for a network."""

    def __init__(
        self,
        network: NetworkProfile,
        *,
        expiry: int = FAR_FUTURE_EXPIRY,
        fuses: int = PERMANENT_PUBLICATION,
    ) -> None:
        self._network = network
        self._expiry = expiry
        self._fuses = check_burn(fuses)

    def build(
        self,
        mode: DeploymentMode,
        parent: str,
        version_slot: int,
        content_id: str,
        governance_address: str,
    ) -> DeploymentPlan:
        if not isinstance(mode, DeploymentMode):
            raise ValueError(f"unhandled deployment mode {mode!r}")

        # Raises InvalidContentIdentifier before anything else is prepared.
        pointer = contenthash.encode(content_id)

        label = version_label(version_slot)
        full_name = child_name(label, parent)
        owner = checksum(governance_address, field="governance address")
        resolver = checksum(self._network.public_resolver, field="resolver")
        wrapper = checksum(self._network.name_wrapper, field="name wrapper")

        create = Operation(
            to=wrapper,
            data=calls.set_subnode_record(
                namehash(parent), label, owner, resolver, 0, self._fuses, self._expiry
            ),
            description=f"Create {full_name} owned by {owner}",
        )
        set_content = Operation(
            to=resolver,
            data=calls.set_contenthash(namehash(full_name), pointer),
            description=f"Set contenthash of {full_name} to ipfs://{content_id}",
        )

        plan = DeploymentPlan(
            mode=mode,
            parent_name=parent,
            version_slot=version_slot,
            label=label,
            full_name=full_name,
            content_id=content_id,
            content_pointer=pointer,
            owner=owner,
            resolver=resolver,
            fuses=self._fuses,
            expiry=self._expiry,
            create_operation=create,
            set_content_operation=set_content,
        )
        LOG.debug(
            "Built %s plan for %s (contenthash=%s, fuses=%#x, expiry=%s)",
            mode.value,
            full_name,
            contenthash.to_hex(pointer),
            self._fuses,
            self._expiry,
        )
        return plan
