"""Find the Foundry build artifact for a contract compiled from a given source path."""

from __future__ import annotations

import logging
from pathlib import Path

from registry_verify.errors import ArtifactAmbiguousError, ArtifactNotFoundError, InvalidManifestError
from registry_verify.manifest import Manifest, compilation_targets, manifest_from_artifact
from registry_verify.utils import safe_read_json

logger = logging.getLogger(__name__)


def recorded_source_path(artifact: object) -> str | None:
    """The source path an artifact was compiled from, if it records one."""
    if not isinstance(artifact, dict):
        return None
    sp = artifact.get("sourcePath")
    if isinstance(sp, str) and sp:
        return sp
    try:
        manifest = manifest_from_artifact(artifact)
    except InvalidManifestError:
        return None
    targets = compilation_targets(manifest)
    if len(targets) == 1:
        return next(iter(targets))
    return None


def _distinct(paths: list[Path]) -> list[Path]:
    # byte-identical outputs are the same artifact; keep the first by sorted path
    seen: dict[bytes, Path] = {}
    for p in sorted(paths):
        data = p.read_bytes()
        if data not in seen:
            seen[data] = p
    return sorted(seen.values())


def _pick_one(paths: list[Path], artifact_name: str, source_key: str) -> Path | None:
    distinct = _distinct(paths)
    if len(distinct) > 1:
        raise ArtifactAmbiguousError(artifact_name, source_key, distinct)
    return distinct[0] if distinct else None


class ArtifactLocator:
    """
    Locate ``<out>/<source>/<Name>.json`` build outputs.

    Order of attempts:
    1. canonical path under the build output directory;
    2. every ``<Name>.json`` whose recorded source path equals the declared one;
    3. (``narrowed_fallback`` only) outputs nested under a directory named like
       the declared source file, for shared wrapper artifacts whose name alone
       collides across dependency trees.
    """

    def __init__(self, out_dir: Path) -> None:
        self.out_dir = out_dir

    def locate(self, artifact_name: str, source_key: str, *, narrowed_fallback: bool = False) -> Path:
        filename = f"{artifact_name}.json"

        canonical = self.out_dir / source_key / filename
        if canonical.is_file():
            return canonical

        scanned = sorted(self.out_dir.rglob(filename)) if self.out_dir.is_dir() else []
        matching = [
            p
            for p in scanned
            if recorded_source_path(safe_read_json(p, context=f"artifact {p}")) == source_key
        ]
        found = _pick_one(matching, artifact_name, source_key)
        if found is not None:
            return found

        if narrowed_fallback:
            source_dir_name = Path(source_key).name
            nested = [p for p in scanned if p.parent.name == source_dir_name]
            found = _pick_one(nested, artifact_name, source_key)
            if found is not None:
                logger.warning(f"Using fallback artifact {found} for {artifact_name}")
                return found

        raise ArtifactNotFoundError(artifact_name, source_key)

    def load_manifest(self, artifact_path: Path) -> Manifest:
        try:
            data = safe_read_json(artifact_path, context=f"artifact {artifact_path}", raise_on_error=True)
        except (OSError, ValueError) as e:
            raise InvalidManifestError(f"Unreadable artifact {artifact_path}: {e}") from e
        return manifest_from_artifact(data, context=str(artifact_path))
