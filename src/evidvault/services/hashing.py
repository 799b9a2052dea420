"""Content digests for files and text.

SHA-256, lower-case hex. Computed locally so integrity checks never depend on
what a storage provider reports.
"""

import hashlib
import re

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


def digest_bytes(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def digest_text(text: str) -> str:
    """Return the SHA-256 hex digest of text encoded as UTF-8."""
    return digest_bytes(text.encode("utf-8"))


def is_hex_digest(value: str) -> bool:
    """True if value looks like a SHA-256 hex digest."""
    return bool(_HEX_DIGEST.match(value or ""))
