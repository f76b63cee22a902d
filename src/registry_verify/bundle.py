"""
Build self-contained verification bundles for the deployed registry set.

Layout under the output root::

    identity-impl/metadata.json
    reputation-impl/metadata.json
    validation-impl/metadata.json
    proxy/metadata.json          (one manifest shared by all three proxies)
    MANIFEST.txt                 (upload guide: addresses + proxy constructor args)

Every file is rewritten on each run, so rebuilding from identical inputs
produces byte-identical output.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from registry_verify.abi import to_hex
from registry_verify.constants import (
    BUNDLE_INDEX_FILENAME,
    BUNDLE_MANIFEST_FILENAME,
    DEFAULT_SOURCE_DIR,
    MANUAL_UPLOAD_URL,
    WRAPPER_CONTRACT_NAME,
    WRAPPER_FALLBACK_SOURCE_KEY,
    WRAPPER_SOURCE_FILENAME,
)
from registry_verify.deployment import COMPONENTS, Component, DeployedSet, component_spec
from registry_verify.inliner import InlineReport, MetadataInliner
from registry_verify.locator import ArtifactLocator
from registry_verify.manifest import Manifest, source_keys
from registry_verify.utils import atomic_write_json, atomic_write_text

logger = logging.getLogger(__name__)

WRAPPER_BUNDLE_DIR = "proxy"


class ManifestSource(Protocol):
    def inspect_metadata(self, fqcn: str) -> Manifest: ...


@dataclass(frozen=True)
class BundleEntry:
    label: str
    bundle_dir: str
    manifest_path: Path
    origin: str  # fqcn or artifact path the manifest came from
    report: InlineReport


@dataclass
class BundleReport:
    output_root: Path
    entries: list[BundleEntry] = field(default_factory=list)
    index_path: Path | None = None
    wrapper_source_key: str | None = None

    @property
    def fault_count(self) -> int:
        return sum(e.report.fault_count for e in self.entries)

    @property
    def missing_count(self) -> int:
        return sum(e.report.missing_count for e in self.entries)

    @property
    def mismatch_count(self) -> int:
        return sum(e.report.mismatch_count for e in self.entries)

    @property
    def suspect(self) -> bool:
        return any(e.report.suspect for e in self.entries)

    def entry(self, label: str) -> BundleEntry:
        for e in self.entries:
            if e.label == label:
                return e
        raise KeyError(label)


def discover_wrapper_source_key(manifest: Manifest, filename: str = WRAPPER_SOURCE_FILENAME) -> str | None:
    """The physical wrapper source path a compiled implementation actually used."""
    for key in source_keys(manifest):
        if key.endswith(filename):
            return key
    return None


class BundleBuilder:
    def __init__(
        self,
        *,
        manifests: ManifestSource,
        locator: ArtifactLocator,
        inliner: MetadataInliner,
        fqcns: Mapping[Component, str] | None = None,
        source_dir: str = DEFAULT_SOURCE_DIR,
        rpc_url: str | None = None,
    ) -> None:
        self.manifests = manifests
        self.locator = locator
        self.inliner = inliner
        self.fqcns = {spec.component: spec.default_fqcn(source_dir) for spec in COMPONENTS}
        if fqcns:
            self.fqcns.update(fqcns)
        self.rpc_url = rpc_url

    def build(self, addresses: DeployedSet, output_root: Path) -> BundleReport:
        """
        Write all four bundles and the upload guide under ``output_root``.

        Raises:
            ArtifactAmbiguousError: If the wrapper artifact cannot be pinned to one build output.
            ArtifactNotFoundError: If the wrapper artifact is absent.
            ToolchainError: If the compiler cannot produce an implementation manifest.
        """
        logger.info("== Generating inline metadata bundles ==")
        report = BundleReport(output_root=output_root)
        wrapper_key: str | None = None

        for spec in COMPONENTS:
            fqcn = self.fqcns[spec.component]
            target = output_root / spec.bundle_dir / BUNDLE_MANIFEST_FILENAME
            logger.info(f"• Building metadata for {fqcn} -> {target}")
            manifest = self.manifests.inspect_metadata(fqcn)
            if spec.component is Component.IDENTITY:
                wrapper_key = discover_wrapper_source_key(manifest)
            manifest, inline_report = self.inliner.inline(manifest, context=fqcn)
            atomic_write_json(target, manifest)
            report.entries.append(
                BundleEntry(
                    label=spec.contract_name,
                    bundle_dir=spec.bundle_dir,
                    manifest_path=target,
                    origin=fqcn,
                    report=inline_report,
                )
            )

        if wrapper_key is None:
            wrapper_key = WRAPPER_FALLBACK_SOURCE_KEY
            logger.warning(f"• WARN: Could not discover proxy source from metadata. Falling back to: {wrapper_key}")
        else:
            logger.info(f"• Proxy source key discovered: {wrapper_key}")
        report.wrapper_source_key = wrapper_key

        artifact_path = self.locator.locate(WRAPPER_CONTRACT_NAME, wrapper_key, narrowed_fallback=True)
        target = output_root / WRAPPER_BUNDLE_DIR / BUNDLE_MANIFEST_FILENAME
        logger.info(f"• Building metadata from artifact {artifact_path} -> {target}")
        manifest = self.locator.load_manifest(artifact_path)
        manifest, inline_report = self.inliner.inline(manifest, context=str(artifact_path))
        atomic_write_json(target, manifest)
        report.entries.append(
            BundleEntry(
                label=WRAPPER_CONTRACT_NAME,
                bundle_dir=WRAPPER_BUNDLE_DIR,
                manifest_path=target,
                origin=str(artifact_path),
                report=inline_report,
            )
        )

        index_path = output_root / BUNDLE_INDEX_FILENAME
        atomic_write_text(index_path, self.render_index(addresses, report))
        report.index_path = index_path
        logger.info(f"Bundles and manifest are in: {output_root}")
        return report

    def render_index(self, addresses: DeployedSet, report: BundleReport) -> str:
        out = report.output_root
        wrapper_file = out / WRAPPER_BUNDLE_DIR / BUNDLE_MANIFEST_FILENAME
        lines = [
            "HashScan Verify Upload Guide",
            "============================",
            "",
            f"Upload files at {MANUAL_UPLOAD_URL}",
            "",
            "Implementations:",
        ]
        for spec in COMPONENTS:
            impl = addresses.implementation(spec.component)
            lines += [
                f"- {spec.contract_name}",
                f"  File: {out / spec.bundle_dir / BUNDLE_MANIFEST_FILENAME}",
                f"  Address: {impl or f'<set {spec.impl_env}>'}",
                "",
            ]

        lines.append(f"Proxies (same {BUNDLE_MANIFEST_FILENAME}; provide constructor args):")
        identity_proxy_env = component_spec(Component.IDENTITY).proxy_env
        for spec in COMPONENTS:
            proxy = addresses.wrapper(spec.component)
            impl = addresses.implementation(spec.component)
            data = addresses.initializer(spec.component)
            if data is not None:
                data_text = to_hex(data)
            else:
                data_text = f"<calldata {spec.initializer_signature} with {identity_proxy_env}>"
            lines += [
                f"- {WRAPPER_CONTRACT_NAME} ({spec.component.value.capitalize()})",
                f"  File: {wrapper_file}",
                f"  Address: {proxy or f'<set {spec.proxy_env}>'}",
                "  Constructor args:",
                f"    _logic = {impl or f'<{spec.impl_env}>'}",
                f"    _data  = {data_text}",
                "",
            ]

        lines.append("Bundle status:")
        for entry in report.entries:
            status = entry.report.summary()
            if entry.report.suspect:
                status = f"SUSPECT ({status})"
            lines.append(f"- {entry.label}: {status}")
            for o in entry.report.missing:
                lines.append(f"    missing: {o.key}")
            for o in entry.report.mismatched:
                lines.append(f"    hash mismatch: {o.key}")
        lines.append("")

        lines.append("Notes:")
        lines.append(f"- Each {BUNDLE_MANIFEST_FILENAME} embeds all sources; upload just that single file.")
        if self.rpc_url:
            lines.append(f"- Network RPC for sanity purposes: {self.rpc_url}")
        return "\n".join(lines) + "\n"
