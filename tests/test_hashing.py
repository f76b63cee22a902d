"""Property-based tests for keccak-256 content hashing."""

from __future__ import annotations

import hypothesis.strategies as st
from hypothesis import given

from registry_verify.hashing import hashes_equal, keccak256_hex, normalize_hash

EMPTY_KECCAK = "0xc5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"


def test_known_vectors() -> None:
    assert keccak256_hex(b"") == EMPTY_KECCAK
    assert keccak256_hex(b"abc") == "0x4e03657aea45a94fc7d47ba826c8d667c0d1e6e33a64a036ec44f58fa12d6c45"


def test_keccak_is_not_sha3() -> None:
    # NIST SHA3-256("") differs from keccak-256("") only by padding
    assert keccak256_hex(b"") != "0xa7ffc6f8bf1ed76651c14756a061d662f580ff4de43b49fa82d80a4b80f8434a"


@given(st.binary(max_size=512))
def test_hash_is_deterministic(data: bytes) -> None:
    """Invariant: same bytes, same digest; 0x + 64 lowercase hex."""
    h = keccak256_hex(data)
    assert h == keccak256_hex(bytes(data))
    assert len(h) == 66
    assert h == h.lower()


@given(st.binary(min_size=1, max_size=512), st.data())
def test_single_byte_change_changes_hash(data: bytes, draw) -> None:
    """Invariant: flipping any one byte changes the digest."""
    idx = draw.draw(st.integers(min_value=0, max_value=len(data) - 1))
    delta = draw.draw(st.integers(min_value=1, max_value=255))
    mutated = bytearray(data)
    mutated[idx] = (mutated[idx] + delta) % 256
    assert keccak256_hex(bytes(mutated)) != keccak256_hex(data)


def test_hash_comparison_tolerates_case_and_prefix() -> None:
    assert hashes_equal(EMPTY_KECCAK.upper().replace("0X", "0x"), EMPTY_KECCAK)
    assert hashes_equal(EMPTY_KECCAK[2:], EMPTY_KECCAK)
    assert not hashes_equal(EMPTY_KECCAK, keccak256_hex(b"x"))
    assert normalize_hash("  0xABcd ") == "abcd"
