"""Read-only JSON-RPC checks against a live deployment of the registry set."""

from __future__ import annotations

import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx
from eth_abi import decode
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from registry_verify.abi import from_hex, selector, to_hex
from registry_verify.constants import (
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    DEFAULT_RETRY_MAX_DELAY,
    ERC1967_IMPLEMENTATION_SLOT,
    RPC_REQUEST_TIMEOUT_SECONDS,
)
from registry_verify.deployment import COMPONENTS, DeployedSet
from registry_verify.errors import RpcError
from registry_verify.utils import retry_with_backoff

logger = logging.getLogger(__name__)


class RpcClient:
    def __init__(
        self,
        url: str,
        *,
        client: httpx.Client | None = None,
        timeout_s: float = RPC_REQUEST_TIMEOUT_SECONDS,
        max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS,
    ) -> None:
        self.url = url
        self.client = client or httpx.Client()
        self.timeout_s = timeout_s
        self.max_attempts = max_attempts
        self._ids = itertools.count(1)

    def call(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}

        def _post() -> httpx.Response:
            r = self.client.post(self.url, json=payload, timeout=self.timeout_s)
            r.raise_for_status()
            return r

        r = retry_with_backoff(
            _post,
            max_attempts=self.max_attempts,
            base_delay=DEFAULT_RETRY_BASE_DELAY,
            max_delay=DEFAULT_RETRY_MAX_DELAY,
            retryable_exceptions=(httpx.TransportError,),
        )
        data = r.json()
        if "error" in data:
            err = data["error"] or {}
            raise RpcError(method, err.get("code"), str(err.get("message", err)))
        return data.get("result")


@dataclass(frozen=True)
class Finding:
    label: str
    ok: bool
    detail: str


class DeploymentInspector:
    def __init__(self, rpc: RpcClient) -> None:
        self.rpc = rpc

    def has_code(self, address: str) -> bool:
        code = self.rpc.call("eth_getCode", [address, "latest"])
        return bool(code) and code not in ("0x", "0x0")

    def implementation_of(self, proxy: str) -> str:
        word = from_hex(self.rpc.call("eth_getStorageAt", [proxy, ERC1967_IMPLEMENTATION_SLOT, "latest"]))
        return to_checksum_address(word.rjust(32, b"\x00")[-20:])

    def _view(self, address: str, signature: str, output_types: list[str]) -> tuple:
        result = self.rpc.call("eth_call", [{"to": address, "data": to_hex(selector(signature))}, "latest"])
        return decode(output_types, from_hex(result))

    def version(self, address: str) -> str:
        return self._view(address, "getVersion()", ["string"])[0]

    def identity_registry_of(self, proxy: str) -> str:
        return to_checksum_address(self._view(proxy, "getIdentityRegistry()", ["address"])[0])

    def check(self, addresses: DeployedSet) -> list[Finding]:
        """Code presence, proxy wiring and identity back-references for a complete set."""
        addresses.require_complete()
        identity_proxy = to_checksum_address(addresses.identity_proxy)  # type: ignore[arg-type]
        findings: list[Finding] = []
        for spec in COMPONENTS:
            impl = to_checksum_address(addresses.implementation(spec.component))  # type: ignore[arg-type]
            proxy = to_checksum_address(addresses.wrapper(spec.component))  # type: ignore[arg-type]
            name = spec.contract_name
            findings.append(self._guarded(f"{name} implementation code", self._probe_code, impl))
            findings.append(self._guarded(f"{name} proxy code", self._probe_code, proxy))
            findings.append(self._guarded(f"{name} proxy -> implementation", self._probe_wiring, proxy, impl))
            findings.append(self._guarded(f"{name} version", self._probe_version, proxy))
            if spec.takes_identity:
                findings.append(
                    self._guarded(f"{name} identity registry", self._probe_identity, proxy, identity_proxy)
                )
        return findings

    def _probe_code(self, address: str) -> tuple[bool, str]:
        return self.has_code(address), address

    def _probe_wiring(self, proxy: str, impl: str) -> tuple[bool, str]:
        actual = self.implementation_of(proxy)
        return actual == impl, actual

    def _probe_version(self, address: str) -> tuple[bool, str]:
        return True, self.version(address)

    def _probe_identity(self, proxy: str, expected: str) -> tuple[bool, str]:
        actual = self.identity_registry_of(proxy)
        return actual == expected, actual

    def _guarded(self, label: str, probe: Callable[..., tuple[bool, str]], *args: str) -> Finding:
        try:
            ok, value = probe(*args)
        except (RpcError, httpx.HTTPError, DecodingError, ValueError) as e:
            logger.warning(f"{label}: {e}")
            return Finding(label=label, ok=False, detail=f"{type(e).__name__}: {e}")
        return Finding(label=label, ok=bool(ok), detail=str(value))
