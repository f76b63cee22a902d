from __future__ import annotations

import pytest

from registry_verify.abi import decode_call_args, to_hex
from registry_verify.deployment import (
    COMPONENTS,
    Component,
    DeployedSet,
    component_spec,
    initializer_payload,
    wrapper_fqcn,
)
from registry_verify.errors import ConfigurationError, MissingConfigurationError


def test_component_specs() -> None:
    assert [s.contract_name for s in COMPONENTS] == [
        "IdentityRegistryUpgradeable",
        "ReputationRegistryUpgradeable",
        "ValidationRegistryUpgradeable",
    ]
    assert not component_spec(Component.IDENTITY).takes_identity
    assert component_spec(Component.REPUTATION).takes_identity
    assert component_spec(Component.VALIDATION).default_fqcn("contracts") == (
        "contracts/ValidationRegistryUpgradeable.sol:ValidationRegistryUpgradeable"
    )
    assert wrapper_fqcn() == "src/ERC1967Proxy.sol:ERC1967Proxy"


def test_from_env_and_merge() -> None:
    env = {"ID_IMPL": " 0x" + "11" * 20 + " ", "ID_PROXY": "", "REP_PROXY": "0x" + "55" * 20}
    addrs = DeployedSet.from_env(env)
    assert addrs.identity_impl == "0x" + "11" * 20
    assert addrs.identity_proxy is None
    assert addrs.missing() == ["REP_IMPL", "VAL_IMPL", "ID_PROXY", "VAL_PROXY"]

    merged = addrs.merged(identity_proxy="0x" + "44" * 20, validation_impl=None)
    assert merged.identity_proxy == "0x" + "44" * 20
    assert merged.validation_impl is None
    assert merged.reputation_proxy == addrs.reputation_proxy


def test_require_complete_names_missing_variables() -> None:
    with pytest.raises(MissingConfigurationError, match="REP_IMPL"):
        DeployedSet(identity_impl="0x" + "11" * 20).require_complete()


def test_dependent_initializers_use_identity_proxy(deployed: DeployedSet) -> None:
    for component in (Component.REPUTATION, Component.VALIDATION):
        payload = deployed.initializer(component)
        (arg,) = decode_call_args("initialize(address)", payload)
        assert arg.lower() == deployed.identity_proxy
        assert arg.lower() != deployed.identity_impl
    assert to_hex(deployed.initializer(Component.IDENTITY)) == "0x8129fc1c"


def test_initializer_unknown_without_identity_proxy() -> None:
    assert initializer_payload(Component.REPUTATION, None) is None
    assert initializer_payload(Component.IDENTITY, None) is not None
    assert DeployedSet(reputation_impl="0x" + "22" * 20).constructor_args(Component.REPUTATION) is None


def test_constructor_args_embed_logic_and_data(deployed: DeployedSet) -> None:
    encoded = deployed.constructor_args(Component.VALIDATION)
    assert encoded is not None
    assert encoded[12:32].hex() == "33" * 20
    assert encoded[96:100].hex() == "c4d66de8"


def test_iteration_order(deployed: DeployedSet) -> None:
    names = [name for name, _ in deployed]
    assert names == [
        "identity_impl",
        "reputation_impl",
        "validation_impl",
        "identity_proxy",
        "reputation_proxy",
        "validation_proxy",
    ]
    assert deployed.env_names()["validation_proxy"] == "VAL_PROXY"


@pytest.mark.parametrize("value", ["0x1234", "not-an-address", "0x" + "zz" * 20])
def test_malformed_address_is_rejected(value: str) -> None:
    with pytest.raises(ConfigurationError, match=r"Invalid ID_PROXY"):
        DeployedSet(identity_proxy=value)
    with pytest.raises(ConfigurationError, match=r"Invalid ID_PROXY"):
        DeployedSet.from_env({"ID_PROXY": value})


def test_malformed_override_is_rejected(deployed: DeployedSet) -> None:
    with pytest.raises(ConfigurationError, match=r"Invalid REP_IMPL: '0x12'"):
        deployed.merged(reputation_impl="0x12")
