"""
Atomic batch creation of the registry set.

State machine (one transaction, no externally observable intermediate state)::

    INIT
      -> create(IdentityImpl)   -> create(IdentityProxy,   initialize())
      -> create(ReputationImpl) -> create(ReputationProxy, initialize(IdentityProxy))
      -> create(ValidationImpl) -> create(ValidationProxy, initialize(IdentityProxy))
      -> publish(all six addresses)
    DONE

If any step reverts the backend rolls the whole transaction back and
:class:`AtomicCreationFailed` is raised; none of the six addresses nor the
published record are queryable afterwards.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from contextlib import AbstractContextManager
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from registry_verify.abi import encode_constructor_args
from registry_verify.constants import REGISTRY_VERSION, WRAPPER_CONTRACT_NAME
from registry_verify.deployment import (
    COMPONENTS,
    WRAPPER_CONSTRUCTOR_SIGNATURE,
    Component,
    ComponentSpec,
    DeployedSet,
    initializer_payload,
)
from registry_verify.errors import AtomicCreationFailed, CreationReverted

logger = logging.getLogger(__name__)


class CreationState(str, Enum):
    INIT = "init"
    IDENTITY_IMPL = "create(IdentityImpl)"
    IDENTITY_PROXY = "create(IdentityProxy)"
    REPUTATION_IMPL = "create(ReputationImpl)"
    REPUTATION_PROXY = "create(ReputationProxy)"
    VALIDATION_IMPL = "create(ValidationImpl)"
    VALIDATION_PROXY = "create(ValidationProxy)"
    PUBLISH = "publish"
    DONE = "done"
    FAILED = "failed"


_STEP_STATES = {
    (Component.IDENTITY, False): CreationState.IDENTITY_IMPL,
    (Component.IDENTITY, True): CreationState.IDENTITY_PROXY,
    (Component.REPUTATION, False): CreationState.REPUTATION_IMPL,
    (Component.REPUTATION, True): CreationState.REPUTATION_PROXY,
    (Component.VALIDATION, False): CreationState.VALIDATION_IMPL,
    (Component.VALIDATION, True): CreationState.VALIDATION_PROXY,
}

CREATION_STEPS: tuple[CreationState, ...] = tuple(_STEP_STATES.values())


@dataclass(frozen=True)
class CreationRequest:
    step: CreationState
    index: int  # 0-based position in the batch
    contract_name: str
    bytecode: bytes
    constructor_args: bytes = b""
    # implementation: the initializer it accepts; proxy: the delegate and its init payload
    initializer_signature: str | None = None
    delegate: str | None = None
    init_payload: bytes | None = None

    @property
    def init_code(self) -> bytes:
        return self.bytecode + self.constructor_args


@dataclass(frozen=True)
class DeploymentRecord:
    addresses: DeployedSet
    version: str


class CreationTransaction(Protocol):
    def create(self, request: CreationRequest) -> str: ...

    def publish(self, record: DeploymentRecord) -> None: ...


class CreationBackend(Protocol):
    def transaction(self) -> AbstractContextManager[CreationTransaction]: ...


class BatchCreationOrchestrator:
    """Create and cross-initialize the six registry contracts as one unit of work."""

    def __init__(
        self,
        backend: CreationBackend,
        bytecodes: Mapping[str, bytes],
        *,
        version: str = REGISTRY_VERSION,
    ) -> None:
        self.backend = backend
        self.bytecodes = dict(bytecodes)
        self.version = version
        self.state = CreationState.INIT

    def _bytecode(self, name: str) -> bytes:
        try:
            return self.bytecodes[name]
        except KeyError:
            raise AtomicCreationFailed(CreationState.INIT.value, f"no creation bytecode for {name}") from None

    def _implementation_request(self, spec: ComponentSpec, index: int) -> CreationRequest:
        return CreationRequest(
            step=_STEP_STATES[(spec.component, False)],
            index=index,
            contract_name=spec.contract_name,
            bytecode=self._bytecode(spec.contract_name),
            initializer_signature=spec.initializer_signature,
        )

    def _proxy_request(self, spec: ComponentSpec, index: int, impl: str, identity_proxy: str | None) -> CreationRequest:
        payload = initializer_payload(spec.component, identity_proxy)
        if payload is None:
            raise CreationReverted(f"{spec.contract_name} initializer needs the identity proxy address")
        return CreationRequest(
            step=_STEP_STATES[(spec.component, True)],
            index=index,
            contract_name=WRAPPER_CONTRACT_NAME,
            bytecode=self._bytecode(WRAPPER_CONTRACT_NAME),
            constructor_args=encode_constructor_args(WRAPPER_CONSTRUCTOR_SIGNATURE, impl, payload),
            delegate=impl,
            init_payload=payload,
        )

    def run(self) -> DeployedSet:
        """
        Execute the whole batch.

        Returns:
            The complete set of six addresses, only after the unit committed.

        Raises:
            AtomicCreationFailed: If any step reverted or the backend failed; nothing was published.
        """
        for name in [spec.contract_name for spec in COMPONENTS] + [WRAPPER_CONTRACT_NAME]:
            self._bytecode(name)

        self.state = CreationState.INIT
        addresses: dict[str, str] = {}
        try:
            with self.backend.transaction() as tx:
                index = 0
                for spec in COMPONENTS:
                    self.state = _STEP_STATES[(spec.component, False)]
                    logger.debug(f"step {index + 1}/6: {self.state.value}")
                    impl = tx.create(self._implementation_request(spec, index))
                    index += 1

                    self.state = _STEP_STATES[(spec.component, True)]
                    logger.debug(f"step {index + 1}/6: {self.state.value}")
                    proxy = tx.create(self._proxy_request(spec, index, impl, addresses.get("identity_proxy")))
                    index += 1

                    addresses[f"{spec.component.value}_impl"] = impl
                    addresses[f"{spec.component.value}_proxy"] = proxy

                self.state = CreationState.PUBLISH
                deployed = DeployedSet(**addresses)
                tx.publish(DeploymentRecord(addresses=deployed, version=self.version))
        except CreationReverted as e:
            failed_step = self.state
            self.state = CreationState.FAILED
            logger.error(f"Batch creation reverted at {failed_step.value}: {e}")
            raise AtomicCreationFailed(failed_step.value, str(e)) from e
        except Exception as e:
            failed_step = self.state
            self.state = CreationState.FAILED
            logger.exception(f"Batch creation aborted at {failed_step.value}")
            raise AtomicCreationFailed(failed_step.value, f"{type(e).__name__}: {e}") from e

        self.state = CreationState.DONE
        for name, address in deployed:
            logger.info(f"{name}={address}")
        return deployed
