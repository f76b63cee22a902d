"""
Shared pytest fixtures for registry-verify tests.

This module provides:
- A throwaway Foundry-style project tree (sources, remapped dependency, build output)
- An in-memory manifest source standing in for ``forge inspect``
- Deployment address fixtures
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from registry_verify.bundle import BundleBuilder
from registry_verify.deployment import DeployedSet
from registry_verify.hashing import keccak256_hex
from registry_verify.inliner import MetadataInliner
from registry_verify.locator import ArtifactLocator
from registry_verify.manifest import Manifest
from registry_verify.remappings import RemappingTable
from registry_verify.resolver import PathResolver, ResolutionContext

WRAPPER_KEY = "lib/openzeppelin-contracts/contracts/proxy/ERC1967/ERC1967Proxy.sol"
PROXY_BASE_KEY = "lib/openzeppelin-contracts/contracts/proxy/Proxy.sol"
INITIALIZABLE_KEY = "@openzeppelin/contracts-upgradeable/proxy/utils/Initializable.sol"
INITIALIZABLE_PATH = "lib/openzeppelin-contracts-upgradeable/contracts/proxy/utils/Initializable.sol"

REMAPPING_LINES = [
    "@openzeppelin/contracts-upgradeable/=lib/openzeppelin-contracts-upgradeable/contracts/",
    "@openzeppelin/contracts/=lib/openzeppelin-contracts/contracts/",
    "forge-std/=lib/forge-std/src/",
]

# physical path -> content
PROJECT_FILES = {
    "src/IdentityRegistryUpgradeable.sol": "// SPDX-License-Identifier: MIT\ncontract IdentityRegistryUpgradeable {}\n",
    "src/ReputationRegistryUpgradeable.sol": "// SPDX-License-Identifier: MIT\ncontract ReputationRegistryUpgradeable {}\n",
    "src/ValidationRegistryUpgradeable.sol": "// SPDX-License-Identifier: MIT\ncontract ValidationRegistryUpgradeable {}\n",
    WRAPPER_KEY: "// SPDX-License-Identifier: MIT\ncontract ERC1967Proxy is Proxy {}\n",
    PROXY_BASE_KEY: "// SPDX-License-Identifier: MIT\nabstract contract Proxy {}\n",
    INITIALIZABLE_PATH: "// SPDX-License-Identifier: MIT\nabstract contract Initializable {}\n",
}

# manifest source key -> physical path
IMPL_SOURCES = {
    "IdentityRegistryUpgradeable": {
        "src/IdentityRegistryUpgradeable.sol": "src/IdentityRegistryUpgradeable.sol",
        INITIALIZABLE_KEY: INITIALIZABLE_PATH,
        WRAPPER_KEY: WRAPPER_KEY,
    },
    "ReputationRegistryUpgradeable": {
        "src/ReputationRegistryUpgradeable.sol": "src/ReputationRegistryUpgradeable.sol",
    },
    "ValidationRegistryUpgradeable": {
        "src/ValidationRegistryUpgradeable.sol": "src/ValidationRegistryUpgradeable.sol",
    },
}

WRAPPER_SOURCES = {WRAPPER_KEY: WRAPPER_KEY, PROXY_BASE_KEY: PROXY_BASE_KEY}


def make_manifest(root: Path, sources: dict[str, str], target: tuple[str, str]) -> Manifest:
    """A solc-style manifest whose hashes match the files currently under ``root``."""
    entries = {}
    for key, rel in sources.items():
        data = (root / rel).read_bytes()
        entries[key] = {
            "keccak256": keccak256_hex(data),
            "license": "MIT",
            "urls": [f"bzz-raw://{key}", f"dweb:/ipfs/{key}"],
        }
    return {
        "compiler": {"version": "0.8.24+commit.e11b9ed9"},
        "language": "Solidity",
        "output": {"abi": []},
        "settings": {
            "compilationTarget": {target[0]: target[1]},
            "optimizer": {"enabled": True, "runs": 200},
            "remappings": REMAPPING_LINES,
        },
        "sources": entries,
        "version": 1,
    }


def write_wrapper_artifact(out_dir: Path, manifest: Manifest, *, subdir: str = "ERC1967Proxy.sol") -> Path:
    path = out_dir / subdir / "ERC1967Proxy.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    artifact = {
        "abi": [],
        "bytecode": {"object": "0x6080604052"},
        "metadata": manifest,
    }
    path.write_text(json.dumps(artifact, indent=2))
    return path


class FakeManifestSource:
    """Serves prepared manifests in place of ``forge inspect <fqcn> metadata``."""

    def __init__(self, manifests: dict[str, Manifest]) -> None:
        self.manifests = manifests
        self.calls: list[str] = []

    def inspect_metadata(self, fqcn: str) -> Manifest:
        self.calls.append(fqcn)
        return copy.deepcopy(self.manifests[fqcn])


@dataclass
class FoundryProject:
    root: Path
    manifests: FakeManifestSource
    remappings: RemappingTable = field(default_factory=lambda: RemappingTable.from_lines(REMAPPING_LINES))

    @property
    def out_dir(self) -> Path:
        return self.root / "out"

    def resolver(self) -> PathResolver:
        return PathResolver(ResolutionContext(project_root=self.root, remappings=self.remappings))

    def builder(self, *, rpc_url: str | None = None) -> BundleBuilder:
        return BundleBuilder(
            manifests=self.manifests,
            locator=ArtifactLocator(self.out_dir),
            inliner=MetadataInliner(self.resolver()),
            rpc_url=rpc_url,
        )


@pytest.fixture
def foundry_project(tmp_path: Path) -> FoundryProject:
    root = tmp_path / "project"
    for rel, content in PROJECT_FILES.items():
        p = root / rel
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content)
    (root / "foundry.toml").write_text('[profile.default]\nsrc = "src"\nout = "out"\nlibs = ["lib"]\n')

    manifests = {}
    for name, sources in IMPL_SOURCES.items():
        fqcn = f"src/{name}.sol:{name}"
        manifests[fqcn] = make_manifest(root, sources, (f"src/{name}.sol", name))
    write_wrapper_artifact(root / "out", make_manifest(root, WRAPPER_SOURCES, (WRAPPER_KEY, "ERC1967Proxy")))
    return FoundryProject(root=root, manifests=FakeManifestSource(manifests))


@pytest.fixture
def deployed() -> DeployedSet:
    return DeployedSet(
        identity_impl="0x" + "11" * 20,
        reputation_impl="0x" + "22" * 20,
        validation_impl="0x" + "33" * 20,
        identity_proxy="0x" + "44" * 20,
        reputation_proxy="0x" + "55" * 20,
        validation_proxy="0x" + "66" * 20,
    )
