"""Compiler metadata manifest (solc ``metadata.json``) helpers.

Schema types follow the solc metadata layout; everything other than
``sources`` is carried through untouched.
"""

from __future__ import annotations

import copy
from typing import Any, TypedDict

from registry_verify.errors import InvalidManifestError
from registry_verify.utils import safe_json_loads


class SourceEntry(TypedDict, total=False):
    """One ``sources[<logical path>]`` entry."""

    content: str
    keccak256: str
    urls: list[str]  # transport-only; stripped from bundles
    license: str


class Manifest(TypedDict, total=False):
    compiler: dict[str, Any]
    language: str
    settings: dict[str, Any]
    sources: dict[str, SourceEntry]
    output: dict[str, Any]
    version: int


def looks_like_manifest(obj: Any) -> bool:
    return isinstance(obj, dict) and bool(obj.get("compiler")) and bool(obj.get("language")) and "sources" in obj


def validate_manifest(obj: Any, *, context: str = "manifest") -> Manifest:
    if not looks_like_manifest(obj):
        raise InvalidManifestError(f"Invalid metadata ({context}): expected compiler, language and sources")
    sources = obj["sources"]
    if not isinstance(sources, dict):
        raise InvalidManifestError(f"Invalid metadata ({context}): sources is not an object")
    if not sources:
        raise InvalidManifestError(f"metadata.sources is empty in {context}")
    return obj


def manifest_from_artifact(artifact: Any, *, context: str = "artifact") -> Manifest:
    """
    Extract the compiler manifest from a Foundry artifact JSON.

    Artifacts either are the manifest already or carry it under ``metadata``,
    as an embedded JSON string (older forge) or an object.
    """
    if looks_like_manifest(artifact):
        return validate_manifest(copy.deepcopy(artifact), context=context)
    if not isinstance(artifact, dict) or "metadata" not in artifact:
        raise InvalidManifestError(f"No metadata found in {context}")
    raw = artifact["metadata"]
    if isinstance(raw, str):
        try:
            raw = safe_json_loads(raw, context=f"{context} metadata")
        except ValueError as e:
            raise InvalidManifestError(str(e)) from e
    return validate_manifest(copy.deepcopy(raw), context=context)


def compilation_targets(manifest: Manifest) -> dict[str, str]:
    """``settings.compilationTarget``: source path -> contract name."""
    targets = manifest.get("settings", {}).get("compilationTarget")
    if not isinstance(targets, dict):
        return {}
    return {str(k): str(v) for k, v in targets.items()}


def source_keys(manifest: Manifest) -> list[str]:
    return sorted(manifest.get("sources", {}))
