"""Local piece identifier derivation.

A piece identifier is a CIDv1 with the ``fil-commitment-unsealed`` codec and
the ``sha2-256-trunc254-padded`` multihash, rendered in multibase base32
(prefix ``b``). Every such identifier starts with ``baga6ea4seaq``.

The digest used here is SHA-256 over the raw blob with the top two bits of
the final byte cleared (the trunc254 rule). This is the identifier the
direct-deal path proposes; it is not a full Fr32-padded commP.
"""

import base64
import hashlib

# CIDv1, fil-commitment-unsealed (0xf101), sha2-256-trunc254-padded (0x1012), 32-byte digest
_PIECE_CID_PREFIX = bytes([0x01, 0x81, 0xE2, 0x03, 0x92, 0x20, 0x20])

PIECE_ID_PREFIX = "baga6ea4seaq"


def _truncate_254(digest: bytes) -> bytes:
    return digest[:-1] + bytes([digest[-1] & 0b0011_1111])


def compute_piece_id(blob: bytes) -> str:
    """Derive a piece identifier from the blob's SHA-256 digest."""
    digest = _truncate_254(hashlib.sha256(blob).digest())
    encoded = base64.b32encode(_PIECE_CID_PREFIX + digest).decode("ascii").lower().rstrip("=")
    return "b" + encoded


def is_piece_id(value: str) -> bool:
    """True if value carries the piece identifier prefix."""
    return bool(value) and value.startswith(PIECE_ID_PREFIX)
