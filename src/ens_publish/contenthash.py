"""ENS contenthash (EIP-1577) encoding for IPFS CIDs.

A contenthash is ``varint(namespace codec) ++ payload``.  For IPFS the codec is
``ipfs-ns`` (0xe3) and the payload is the binary CID.  The CID keeps the
version it was given in, so ``decode(encode(cid)) == cid`` for CIDv0 strings and
base32 CIDv1 strings; CIDv1 given in another base decodes to base32.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from multiformats import CID, varint

from .errors import InvalidContentIdentifier

IPFS_NS = 0xE3
IPNS_NS = 0xE5
SWARM_NS = 0xE4

# Namespace codecs that third parties may have stored on a resolver.
_NAMESPACES: Tuple[Tuple[str, int], ...] = (
    ("ipfs", IPFS_NS),
    ("ipns", IPNS_NS),
    ("swarm", SWARM_NS),
    ("onion", 0x01BC),
    ("onion3", 0x01BD),
    ("skynet", 0x01B6),
    ("arweave", 0xB29910),
)


@dataclass(frozen=True)
class ContentPointer:
    """A classified contenthash as read back from a resolver."""

    kind: str
    content_id: Optional[str]
    raw: bytes


def parse_cid(content_id: str) -> CID:
    if not isinstance(content_id, str) or not content_id.strip():
        raise InvalidContentIdentifier(f"empty content identifier: {content_id!r}")
    try:
        return CID.decode(content_id.strip())
    except (ValueError, KeyError, TypeError, IndexError) as exc:
        raise InvalidContentIdentifier(
            f"invalid content identifier {content_id!r}: {exc}"
        ) from exc


def encode(content_id: str) -> bytes:
    """Encode ``content_id`` as an ``ipfs-ns`` contenthash."""

    cid = parse_cid(content_id)
    return varint.encode(IPFS_NS) + bytes(cid)


def _split(pointer: bytes) -> Tuple[str, bytes]:
    for kind, codec in _NAMESPACES:
        prefix = varint.encode(codec)
        if pointer.startswith(prefix):
            return kind, pointer[len(prefix):]
    return "unknown", pointer


def _cid_string(payload: bytes) -> Optional[str]:
    try:
        cid = CID.decode(bytes(payload))
    except (ValueError, KeyError, TypeError, IndexError):
        return None
    # Binary CIDs carry no multibase; v1 renders in the canonical base32 form.
    return cid.encode("base32") if cid.version == 1 else str(cid)


def inspect(pointer: bytes) -> ContentPointer:
    """Classify ``pointer`` without failing on foreign namespaces."""

    raw = bytes(pointer or b"")
    if not raw:
        return ContentPointer(kind="empty", content_id=None, raw=raw)

    kind, payload = _split(raw)
    content_id = None
    if kind in ("ipfs", "ipns"):
        content_id = _cid_string(payload)
    return ContentPointer(kind=kind, content_id=content_id, raw=raw)


def decode(pointer: bytes) -> Optional[str]:
    """Return the IPFS CID stored in ``pointer`` or ``None``."""

    result = inspect(pointer)
    if result.kind != "ipfs":
        return None
    return result.content_id


def to_hex(pointer: bytes) -> str:
    return "0x" + bytes(pointer).hex()


def from_hex(text: str) -> bytes:
    value = text[2:] if text.startswith(("0x", "0X")) else text
    return bytes.fromhex(value)
