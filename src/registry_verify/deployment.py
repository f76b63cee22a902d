"""
The deployed registry set: three implementations behind three ERC1967 proxies.

The Reputation and Validation proxies are initialized with the Identity
*proxy* address, so their back-reference survives upgrades of the Identity
implementation.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, fields, replace
from enum import Enum

from eth_utils import is_address

from registry_verify.abi import encode_call, encode_constructor_args
from registry_verify.constants import DEFAULT_SOURCE_DIR, WRAPPER_CONTRACT_NAME, WRAPPER_SOURCE_FILENAME
from registry_verify.errors import ConfigurationError, MissingConfigurationError

WRAPPER_CONSTRUCTOR_SIGNATURE = "constructor(address,bytes)"


class Component(str, Enum):
    IDENTITY = "identity"
    REPUTATION = "reputation"
    VALIDATION = "validation"


@dataclass(frozen=True)
class ComponentSpec:
    component: Component
    contract_name: str
    initializer_signature: str
    impl_env: str
    proxy_env: str
    fqcn_env: str
    bundle_dir: str

    @property
    def takes_identity(self) -> bool:
        return self.initializer_signature == "initialize(address)"

    def default_fqcn(self, source_dir: str = DEFAULT_SOURCE_DIR) -> str:
        return f"{source_dir}/{self.contract_name}.sol:{self.contract_name}"


COMPONENTS: tuple[ComponentSpec, ...] = (
    ComponentSpec(
        component=Component.IDENTITY,
        contract_name="IdentityRegistryUpgradeable",
        initializer_signature="initialize()",
        impl_env="ID_IMPL",
        proxy_env="ID_PROXY",
        fqcn_env="FQCN_ID",
        bundle_dir="identity-impl",
    ),
    ComponentSpec(
        component=Component.REPUTATION,
        contract_name="ReputationRegistryUpgradeable",
        initializer_signature="initialize(address)",
        impl_env="REP_IMPL",
        proxy_env="REP_PROXY",
        fqcn_env="FQCN_REP",
        bundle_dir="reputation-impl",
    ),
    ComponentSpec(
        component=Component.VALIDATION,
        contract_name="ValidationRegistryUpgradeable",
        initializer_signature="initialize(address)",
        impl_env="VAL_IMPL",
        proxy_env="VAL_PROXY",
        fqcn_env="FQCN_VAL",
        bundle_dir="validation-impl",
    ),
)

COMPONENTS_BY_NAME = {spec.component: spec for spec in COMPONENTS}


def component_spec(component: Component) -> ComponentSpec:
    return COMPONENTS_BY_NAME[component]


def wrapper_fqcn(source_dir: str = DEFAULT_SOURCE_DIR) -> str:
    return f"{source_dir}/{WRAPPER_SOURCE_FILENAME}:{WRAPPER_CONTRACT_NAME}"


def initializer_payload(component: Component, identity_wrapper: str | None) -> bytes | None:
    """
    Initializer calldata for the proxy of ``component``.

    Returns None when the initializer needs the Identity proxy address and it
    is not known yet.
    """
    spec = component_spec(component)
    if spec.takes_identity:
        if not identity_wrapper:
            return None
        return encode_call(spec.initializer_signature, identity_wrapper)
    return encode_call(spec.initializer_signature)


@dataclass(frozen=True)
class DeployedSet:
    """Six deployed addresses; any of them may be unknown (None) while bundling."""

    identity_impl: str | None = None
    reputation_impl: str | None = None
    validation_impl: str | None = None
    identity_proxy: str | None = None
    reputation_proxy: str | None = None
    validation_proxy: str | None = None

    def __post_init__(self) -> None:
        names = self.env_names()
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None and not is_address(value):
                raise ConfigurationError(f"Invalid {names[f.name]}: {value!r}")

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> DeployedSet:
        values: dict[str, str | None] = {}
        for spec in COMPONENTS:
            for suffix, var in (("impl", spec.impl_env), ("proxy", spec.proxy_env)):
                raw = env.get(var)
                values[f"{spec.component.value}_{suffix}"] = raw.strip() if raw and raw.strip() else None
        return cls(**values)

    def merged(self, **overrides: str | None) -> DeployedSet:
        """Overlay non-empty overrides (e.g. CLI flags) on top of this set."""
        return replace(self, **{k: v for k, v in overrides.items() if v})

    def implementation(self, component: Component) -> str | None:
        return getattr(self, f"{component.value}_impl")

    def wrapper(self, component: Component) -> str | None:
        return getattr(self, f"{component.value}_proxy")

    def env_names(self) -> dict[str, str]:
        out: dict[str, str] = {}
        for spec in COMPONENTS:
            out[f"{spec.component.value}_impl"] = spec.impl_env
            out[f"{spec.component.value}_proxy"] = spec.proxy_env
        return out

    def missing(self) -> list[str]:
        names = self.env_names()
        return [names[f.name] for f in fields(self) if getattr(self, f.name) is None]

    def require_complete(self) -> DeployedSet:
        missing = self.missing()
        if missing:
            raise MissingConfigurationError(
                f"Missing deployment addresses: {', '.join(missing)}. "
                f"Export all of: {' '.join(self.env_names().values())}"
            )
        return self

    def initializer(self, component: Component) -> bytes | None:
        return initializer_payload(component, self.identity_proxy)

    def constructor_args(self, component: Component) -> bytes | None:
        """ABI-encoded ``(logic, data)`` for the proxy of ``component``."""
        impl = self.implementation(component)
        data = self.initializer(component)
        if impl is None or data is None:
            return None
        return encode_constructor_args(WRAPPER_CONSTRUCTOR_SIGNATURE, impl, data)

    def __iter__(self) -> Iterator[tuple[str, str | None]]:
        for f in fields(self):
            yield f.name, getattr(self, f.name)
