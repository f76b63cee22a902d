"""keccak-256 content hashing used to check embedded sources against compiler records."""

from __future__ import annotations

from eth_utils import keccak


def keccak256_hex(data: bytes) -> str:
    """Return the 0x-prefixed lowercase keccak-256 digest of ``data``."""
    return "0x" + keccak(primitive=data).hex()


def normalize_hash(value: str) -> str:
    v = value.strip().lower()
    if v.startswith("0x"):
        v = v[2:]
    return v


def hashes_equal(recorded: str, computed: str) -> bool:
    """Case-insensitive hex comparison, tolerant of a missing 0x prefix."""
    return normalize_hash(recorded) == normalize_hash(computed)
