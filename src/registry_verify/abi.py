"""ABI encoding of initializer calldata and proxy constructor arguments."""

from __future__ import annotations

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_checksum_address


def signature_types(signature: str) -> list[str]:
    """``initialize(address)`` -> ``["address"]``."""
    try:
        inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    except ValueError:
        raise ValueError(f"Invalid function signature: {signature!r}") from None
    inner = inner.strip()
    return [t.strip() for t in inner.split(",")] if inner else []


def _normalize_args(types: list[str], args: tuple) -> list:
    out = []
    for t, v in zip(types, args, strict=True):
        out.append(to_checksum_address(v) if t == "address" else v)
    return out


def selector(signature: str) -> bytes:
    return function_signature_to_4byte_selector(signature)


def encode_call(signature: str, *args) -> bytes:
    """Calldata for ``signature`` applied to ``args`` (what ``cast calldata`` prints)."""
    types = signature_types(signature)
    if len(types) != len(args):
        raise ValueError(f"{signature} expects {len(types)} argument(s), got {len(args)}")
    return selector(signature) + encode(types, _normalize_args(types, args))


def encode_constructor_args(signature: str, *args) -> bytes:
    """ABI-encoded constructor arguments without a selector (``cast abi-encode``)."""
    types = signature_types(signature)
    if len(types) != len(args):
        raise ValueError(f"{signature} expects {len(types)} argument(s), got {len(args)}")
    return encode(types, _normalize_args(types, args))


def decode_call_args(signature: str, calldata: bytes) -> tuple:
    """Inverse of :func:`encode_call`; raises ValueError on a selector mismatch."""
    if calldata[:4] != selector(signature):
        raise ValueError(f"Calldata does not start with the selector of {signature}")
    return decode(signature_types(signature), calldata[4:])


def to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def from_hex(value: str) -> bytes:
    v = value[2:] if value.startswith(("0x", "0X")) else value
    return bytes.fromhex(v)
