"""NameWrapper fuse model.

Fuses are permission bits that, once burned, can never be unburned.  The
registry enforces that; this module makes sure we never *ask* for something we
cannot take back, most importantly burning ``CANNOT_BURN_FUSES`` before the
final mask is in place.
"""

from __future__ import annotations

from enum import IntFlag
from functools import reduce
from typing import Iterable, List

from .errors import FuseError


class Fuse(IntFlag):
    """NameWrapper fuse bits (one shared namespace)."""

    CANNOT_UNWRAP = 1
    CANNOT_BURN_FUSES = 2
    CANNOT_TRANSFER = 4
    CANNOT_SET_RESOLVER = 8
    CANNOT_SET_TTL = 16
    CANNOT_CREATE_SUBDOMAIN = 32
    CANNOT_APPROVE = 64
    PARENT_CANNOT_CONTROL = 1 << 16
    IS_DOT_ETH = 1 << 17
    CAN_EXTEND_EXPIRY = 1 << 18


# ``setFuses`` only accepts the owner-controlled half of the mask (uint16).
OWNER_CONTROLLED_MASK = 0xFFFF


def combine(fuses: Iterable[int]) -> int:
    """Bitwise OR of ``fuses``."""

    return int(reduce(lambda acc, fuse: acc | int(fuse), fuses, 0))


def is_set(mask: int, fuse: int) -> bool:
    return (int(mask) & int(fuse)) == int(fuse)


# Content and ownership topology are frozen, while anyone can keep the name
# from lapsing.
PERMANENT_PUBLICATION = combine(
    [
        Fuse.CANNOT_UNWRAP,
        Fuse.CANNOT_SET_RESOLVER,
        Fuse.PARENT_CANNOT_CONTROL,
        Fuse.CAN_EXTEND_EXPIRY,
    ]
)


def names_of(mask: int) -> List[str]:
    return [fuse.name for fuse in Fuse if fuse.name and is_set(mask, fuse)]


def missing(current: int, desired: int) -> int:
    """Bits of ``desired`` that are not burned yet."""

    return int(desired) & ~int(current)


def check_burn(mask: int, *, final: bool = False) -> int:
    """Validate a mask that is about to be burned and return it.

    ``CANNOT_BURN_FUSES`` freezes the mask forever, so any mask carrying it is
    only accepted when the caller declares it the final fuse state.
    """

    mask = int(mask)
    if mask < 0:
        raise FuseError(f"invalid fuse mask {mask}")
    if is_set(mask, Fuse.CANNOT_BURN_FUSES) and not final:
        raise FuseError(
            "CANNOT_BURN_FUSES locks the mask; pass final=True only for the "
            "intended final state",
        )
    return mask


def check_owner_controlled(mask: int) -> int:
    mask = check_burn(mask)
    if mask & ~OWNER_CONTROLLED_MASK:
        raise FuseError(
            f"fuse mask {mask:#x} includes parent-controlled bits; setFuses accepts only "
            f"{OWNER_CONTROLLED_MASK:#x}"
        )
    return mask
