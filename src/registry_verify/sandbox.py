"""
In-memory transactional creation backend.

Committed state is the only thing readers see. A transaction works on a
staged copy that replaces the committed state on commit and is discarded on
rollback, so a failed batch leaves no trace.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from eth_utils import keccak, to_checksum_address

from registry_verify.abi import decode_call_args, selector
from registry_verify.deployment import Component, DeployedSet
from registry_verify.errors import CreationReverted
from registry_verify.orchestrator import CreationRequest, DeploymentRecord

if TYPE_CHECKING:
    from types import TracebackType

logger = logging.getLogger(__name__)

SANDBOX_DEPLOYER = "0x00000000000000000000000000000000000d3910"


def create2_address(deployer: str, salt: int, init_code: bytes) -> str:
    """``keccak(0xff ++ deployer ++ salt ++ keccak(init_code))[12:]``"""
    preimage = b"\xff" + bytes.fromhex(deployer[2:]) + salt.to_bytes(32, "big") + keccak(init_code)
    return to_checksum_address(keccak(preimage)[12:])


@dataclass
class Account:
    code: bytes
    kind: Literal["implementation", "proxy"]
    storage: dict[str, Any] = field(default_factory=dict)


class SandboxTransaction:
    def __init__(self, chain: SandboxChain) -> None:
        self.chain = chain
        self.accounts: dict[str, Account] = {}
        self.record: DeploymentRecord | None = None
        self._open = False

    def __enter__(self) -> SandboxTransaction:
        if self.chain._in_transaction:
            raise RuntimeError("sandbox transactions cannot be nested")
        self.chain._in_transaction = True
        self._open = True
        self.accounts = copy.deepcopy(self.chain._accounts)
        self.record = self.chain._record
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        try:
            if exc_type is not None:
                self.rollback()
            else:
                self.commit()
        finally:
            self.chain._in_transaction = False
        return False  # don't swallow exceptions

    def commit(self) -> None:
        if not self._open:
            return
        self.chain._accounts = self.accounts
        self.chain._record = self.record
        self._open = False

    def rollback(self) -> None:
        if self._open:
            logger.debug("sandbox transaction rolled back")
        self.accounts = {}
        self.record = None
        self._open = False

    def _code_at(self, address: str) -> bytes:
        acct = self.accounts.get(address)
        return acct.code if acct else b""

    def create(self, request: CreationRequest) -> str:
        if not self._open:
            raise RuntimeError("transaction is not open")
        self.chain.before_create(request)
        if not request.bytecode:
            raise CreationReverted(f"{request.contract_name}: empty creation bytecode")

        address = create2_address(self.chain.deployer, request.index, request.init_code)
        if address in self.accounts:
            raise CreationReverted(f"{request.contract_name}: address collision at {address}")

        if request.delegate is None:
            self.accounts[address] = Account(
                code=request.bytecode,
                kind="implementation",
                storage={"initializer": request.initializer_signature},
            )
            return address

        delegate = to_checksum_address(request.delegate)
        if not self._code_at(delegate):
            raise CreationReverted(f"{request.contract_name}: delegate {delegate} has no code")
        storage = {"implementation": delegate, "initialized": False}
        if request.init_payload:
            storage.update(self._run_initializer(delegate, request.init_payload))
        self.accounts[address] = Account(code=request.bytecode, kind="proxy", storage=storage)
        return address

    def _run_initializer(self, delegate: str, payload: bytes) -> dict[str, Any]:
        signature = self.accounts[delegate].storage.get("initializer")
        if not signature or payload[:4] != selector(signature):
            raise CreationReverted(f"initializer selector 0x{payload[:4].hex()} rejected by {delegate}")
        out: dict[str, Any] = {"initialized": True}
        args = decode_call_args(signature, payload)
        if args:
            registry = to_checksum_address(args[0])
            if not self._code_at(registry):
                raise CreationReverted(f"identity registry {registry} has no code")
            out["identity_registry"] = registry
        return out

    def publish(self, record: DeploymentRecord) -> None:
        if not self._open:
            raise RuntimeError("transaction is not open")
        self.record = record


class SandboxChain:
    """
    Local stand-in for the target network.

    ``before_create`` is a hook called ahead of every creation; raising
    :class:`CreationReverted` there simulates a revert at that step.
    """

    def __init__(self, *, deployer: str = SANDBOX_DEPLOYER) -> None:
        self.deployer = to_checksum_address(deployer)
        self._accounts: dict[str, Account] = {}
        self._record: DeploymentRecord | None = None
        self._in_transaction = False

    def before_create(self, request: CreationRequest) -> None:
        pass

    def transaction(self) -> SandboxTransaction:
        return SandboxTransaction(self)

    # Read accessors see committed state only.

    def code_at(self, address: str) -> bytes:
        acct = self._accounts.get(to_checksum_address(address))
        return acct.code if acct else b""

    def storage_at(self, address: str) -> dict[str, Any]:
        acct = self._accounts.get(to_checksum_address(address))
        return dict(acct.storage) if acct else {}

    def account_count(self) -> int:
        return len(self._accounts)

    def deployment(self) -> DeploymentView | None:
        if self._record is None:
            return None
        return DeploymentView(self, self._record)


class DeploymentView:
    """Read-only surface of a published deployment."""

    def __init__(self, chain: SandboxChain, record: DeploymentRecord) -> None:
        self._chain = chain
        self._record = record

    @property
    def addresses(self) -> DeployedSet:
        return self._record.addresses

    def version(self) -> str:
        return self._record.version

    def implementation(self, component: Component) -> str:
        return self._record.addresses.implementation(component)  # type: ignore[return-value]

    def wrapper(self, component: Component) -> str:
        return self._record.addresses.wrapper(component)  # type: ignore[return-value]

    def identity_registry_of(self, component: Component) -> str | None:
        """The identity proxy a dependent proxy was initialized with."""
        return self._chain.storage_at(self.wrapper(component)).get("identity_registry")

    def implementation_behind(self, component: Component) -> str | None:
        return self._chain.storage_at(self.wrapper(component)).get("implementation")
