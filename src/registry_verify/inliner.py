"""
Embed source content into compiler manifests and verify it against the
keccak-256 hashes the compiler recorded.

Per-source problems are recorded on the report and never abort the manifest:
a partial bundle is still independently diagnosable.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from registry_verify.hashing import hashes_equal, keccak256_hex
from registry_verify.manifest import Manifest, source_keys, validate_manifest
from registry_verify.resolver import PathResolver

logger = logging.getLogger(__name__)

TRANSPORT_ONLY_FIELDS = ("urls",)


class SourceStatus(str, Enum):
    OK = "ok"
    MISSING = "missing"
    MISMATCH = "mismatch"
    UNREADABLE = "unreadable"


@dataclass(frozen=True)
class SourceOutcome:
    key: str
    status: SourceStatus
    resolved_path: Path | None = None
    expected_hash: str | None = None
    computed_hash: str | None = None
    embedded: bool = False


@dataclass
class InlineReport:
    outcomes: list[SourceOutcome] = field(default_factory=list)

    @property
    def missing(self) -> list[SourceOutcome]:
        return [o for o in self.outcomes if o.status is SourceStatus.MISSING]

    @property
    def mismatched(self) -> list[SourceOutcome]:
        return [o for o in self.outcomes if o.status is SourceStatus.MISMATCH]

    @property
    def unreadable(self) -> list[SourceOutcome]:
        return [o for o in self.outcomes if o.status is SourceStatus.UNREADABLE]

    @property
    def missing_count(self) -> int:
        return len(self.missing)

    @property
    def mismatch_count(self) -> int:
        return len(self.mismatched)

    @property
    def fault_count(self) -> int:
        return self.missing_count + self.mismatch_count + len(self.unreadable)

    @property
    def ok(self) -> bool:
        return self.fault_count == 0

    @property
    def suspect(self) -> bool:
        return self.mismatch_count > 0

    def summary(self) -> str:
        if self.ok:
            return "OK"
        text = f"WARN: {self.missing_count} missing, {self.mismatch_count} mismatched source(s)"
        if self.unreadable:
            text += f", {len(self.unreadable)} unreadable"
        return text


def _strip_transport_fields(entry: dict) -> None:
    for name in TRANSPORT_ONLY_FIELDS:
        entry.pop(name, None)


class MetadataInliner:
    def __init__(self, resolver: PathResolver) -> None:
        self.resolver = resolver

    def inline(self, manifest: Manifest, *, context: str = "manifest") -> tuple[Manifest, InlineReport]:
        """
        Embed every source of ``manifest`` in place and verify its hash.

        Already-embedded content is hashed as UTF-8 and never re-read from disk.
        Unresolvable sources are reported as missing and left as they were.

        Returns:
            The (mutated) manifest and the per-source report.

        Raises:
            InvalidManifestError: If the manifest lacks compiler, language or sources.
        """
        validate_manifest(manifest, context=context)
        report = InlineReport()
        sources = manifest["sources"]

        for key in source_keys(manifest):
            entry = sources[key]
            if not isinstance(entry, dict):
                entry = {}
                sources[key] = entry
            recorded = entry.get("keccak256") or None
            resolved: Path | None = None
            embedded = False

            content = entry.get("content")
            if isinstance(content, str) and content:
                computed = keccak256_hex(content.encode("utf-8"))
            else:
                resolved = self.resolver.resolve(key)
                if resolved is None:
                    logger.warning(f"  ! Missing source on disk: {key}")
                    report.outcomes.append(SourceOutcome(key=key, status=SourceStatus.MISSING, expected_hash=recorded))
                    continue
                try:
                    raw = resolved.read_bytes()
                    text = raw.decode("utf-8")
                except (OSError, UnicodeDecodeError) as e:
                    logger.warning(f"  ! Unreadable source {key} ({resolved}): {e}")
                    report.outcomes.append(
                        SourceOutcome(
                            key=key, status=SourceStatus.UNREADABLE, resolved_path=resolved, expected_hash=recorded
                        )
                    )
                    continue
                entry["content"] = text
                computed = keccak256_hex(raw)
                embedded = True

            status = SourceStatus.OK
            if recorded is not None and not hashes_equal(recorded, computed):
                logger.warning(f"  ! Hash mismatch for {key}")
                status = SourceStatus.MISMATCH

            # Runs for already-embedded entries too; usually a no-op there.
            _strip_transport_fields(entry)

            report.outcomes.append(
                SourceOutcome(
                    key=key,
                    status=status,
                    resolved_path=resolved,
                    expected_hash=recorded,
                    computed_hash=computed,
                    embedded=embedded,
                )
            )

        logger.info(f"  -> {report.summary()}")
        return manifest, report
