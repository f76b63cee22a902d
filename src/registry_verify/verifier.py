"""
Submit deployed contracts to a Sourcify-compatible verifier and aggregate the results.

Every target is attempted; a failure (including a timeout) only affects its
own outcome. The run as a whole fails iff at least one outcome failed.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
from collections.abc import Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

import httpx

from registry_verify.abi import to_hex
from registry_verify.bundle import WRAPPER_BUNDLE_DIR
from registry_verify.constants import (
    BUNDLE_MANIFEST_FILENAME,
    DEFAULT_VERIFY_WORKERS,
    MAX_VERIFY_WORKERS,
    VERIFY_NOISE_LINES,
    VERIFY_TIMEOUT_SECONDS,
    WRAPPER_CONTRACT_NAME,
)
from registry_verify.deployment import COMPONENTS, Component, DeployedSet
from registry_verify.errors import ConfigurationError, ToolchainError
from registry_verify.runlog import RunLog
from registry_verify.toolchain import ForgeToolchain

logger = logging.getLogger(__name__)


class VerificationStatus(str, Enum):
    ALREADY_VERIFIED = "already_verified"
    EXACT_MATCH = "exact_match"
    PARTIAL_MATCH = "partial_match"
    VERIFIED = "verified"
    FAILED = "failed"

    @property
    def succeeded(self) -> bool:
        return self is not VerificationStatus.FAILED


@dataclass(frozen=True)
class VerificationTarget:
    label: str
    address: str
    fqcn: str
    constructor_args: bytes | None = None
    bundle_path: Path | None = None


@dataclass(frozen=True)
class VerifierResponse:
    exit_code: int
    output: str


@dataclass(frozen=True)
class VerificationOutcome:
    target: str
    label: str
    status: VerificationStatus
    raw_detail: str


class Verifier(Protocol):
    def submit(self, target: VerificationTarget, *, timeout_s: float) -> VerifierResponse: ...


def strip_noise(output: str, noise: Sequence[str] = VERIFY_NOISE_LINES) -> str:
    """Drop lines containing any of the known boilerplate phrases."""
    return "\n".join(line for line in output.splitlines() if not any(n in line for n in noise))


def classify_response(target: VerificationTarget, response: VerifierResponse) -> VerificationOutcome:
    text = response.output.lower()
    if "already verified" in text:
        status = VerificationStatus.ALREADY_VERIFIED
    elif response.exit_code == 0:
        if "perfect match" in text:
            status = VerificationStatus.EXACT_MATCH
        elif "partial match" in text:
            status = VerificationStatus.PARTIAL_MATCH
        else:
            status = VerificationStatus.VERIFIED
    else:
        status = VerificationStatus.FAILED

    detail = strip_noise(response.output) if status is VerificationStatus.FAILED else response.output
    return VerificationOutcome(target=target.address, label=target.label, status=status, raw_detail=detail)


class ForgeVerifier:
    """``forge verify-contract --verifier sourcify`` per target."""

    def __init__(self, toolchain: ForgeToolchain, *, chain_id: int, verifier_url: str) -> None:
        self.toolchain = toolchain
        self.chain_id = chain_id
        self.verifier_url = verifier_url

    def command(self, target: VerificationTarget) -> list[str]:
        return self.toolchain.verify_contract_command(
            chain_id=self.chain_id,
            verifier_url=self.verifier_url,
            address=target.address,
            fqcn=target.fqcn,
            constructor_args=to_hex(target.constructor_args) if target.constructor_args else None,
        )

    def submit(self, target: VerificationTarget, *, timeout_s: float) -> VerifierResponse:
        cmd = self.command(target)
        logger.info(f"> {shlex.join(cmd)}")
        result = self.toolchain.run_captured(cmd, timeout_s=timeout_s)
        return VerifierResponse(exit_code=result.returncode, output=result.output)


def describe_sourcify_payload(payload: Any) -> str:
    """Render a Sourcify ``/verify`` JSON response as status text."""
    if not isinstance(payload, dict):
        return str(payload)
    if "error" in payload:
        return f"Error: {payload['error']}"
    lines: list[str] = []
    for item in payload.get("result") or []:
        if not isinstance(item, dict):
            continue
        address = item.get("address", "?")
        status = str(item.get("status", "")).lower()
        if item.get("storageTimestamp"):
            lines.append(f"Contract {address} is already verified ({status})")
        elif status == "perfect":
            lines.append(f"Contract {address} verified: perfect match")
        elif status == "partial":
            lines.append(f"Contract {address} verified: partial match")
        else:
            lines.append(f"Contract {address}: {item.get('message') or status or 'unknown status'}")
    return "\n".join(lines) if lines else str(payload)


class SourcifyHttpVerifier:
    """Upload the inline metadata bundle straight to the Sourcify HTTP API."""

    def __init__(self, *, chain_id: int, verifier_url: str, client: httpx.Client | None = None) -> None:
        self.chain_id = chain_id
        self.verifier_url = verifier_url.rstrip("/")
        self.client = client or httpx.Client()

    def submit(self, target: VerificationTarget, *, timeout_s: float) -> VerifierResponse:
        if target.bundle_path is None or not target.bundle_path.is_file():
            return VerifierResponse(exit_code=1, output=f"No metadata bundle for {target.label}: {target.bundle_path}")
        body = {
            "address": target.address,
            "chain": str(self.chain_id),
            "files": {BUNDLE_MANIFEST_FILENAME: target.bundle_path.read_text(encoding="utf-8")},
        }
        url = f"{self.verifier_url}/verify"
        logger.info(f"> POST {url} address={target.address} bundle={target.bundle_path}")
        r = self.client.post(url, json=body, timeout=timeout_s)
        try:
            text = describe_sourcify_payload(r.json())
        except ValueError:
            text = r.text
        return VerifierResponse(exit_code=0 if r.is_success else 1, output=f"HTTP {r.status_code}\n{text}")


@dataclass
class VerificationReport:
    outcomes: list[VerificationOutcome] = field(default_factory=list)

    @property
    def failed(self) -> list[VerificationOutcome]:
        return [o for o in self.outcomes if o.status is VerificationStatus.FAILED]

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0

    def by_status(self) -> dict[VerificationStatus, int]:
        counts: dict[VerificationStatus, int] = {}
        for o in self.outcomes:
            counts[o.status] = counts.get(o.status, 0) + 1
        return counts


class VerificationSubmitter:
    def __init__(
        self,
        verifier: Verifier,
        *,
        workers: int = DEFAULT_VERIFY_WORKERS,
        timeout_s: float = VERIFY_TIMEOUT_SECONDS,
        run_log: RunLog | None = None,
    ) -> None:
        if not 1 <= workers <= MAX_VERIFY_WORKERS:
            raise ConfigurationError(f"workers must be between 1 and {MAX_VERIFY_WORKERS}, got {workers}")
        self.verifier = verifier
        self.workers = workers
        self.timeout_s = timeout_s
        self.run_log = run_log

    def submit_one(self, target: VerificationTarget) -> VerificationOutcome:
        if self.run_log:
            self.run_log.event("verify_started", label=target.label, address=target.address, fqcn=target.fqcn)
        try:
            response = self.verifier.submit(target, timeout_s=self.timeout_s)
        except (subprocess.TimeoutExpired, TimeoutError, httpx.TimeoutException):
            response = VerifierResponse(exit_code=124, output=f"Timed out after {self.timeout_s}s")
        except (httpx.HTTPError, ToolchainError, OSError) as e:
            response = VerifierResponse(exit_code=1, output=f"{type(e).__name__}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error verifying {target.label} @ {target.address}")
            response = VerifierResponse(exit_code=1, output=f"{type(e).__name__}: {e}")
        outcome = classify_response(target, response)

        if outcome.status.succeeded:
            logger.info(f"✔ {outcome.status.value}: {target.label} @ {target.address}")
        else:
            logger.error(f"✘ Failed: {target.label} @ {target.address}")
        if self.run_log:
            self.run_log.event(
                "verify_finished", label=target.label, address=target.address, status=outcome.status.value
            )
            self.run_log.outcome_row(
                {
                    "label": outcome.label,
                    "address": outcome.target,
                    "status": outcome.status.value,
                    "detail": outcome.raw_detail,
                }
            )
        return outcome

    def submit_all(self, targets: Sequence[VerificationTarget]) -> VerificationReport:
        """Submit every target; outcomes come back in target order."""
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="verify") as pool:
            outcomes = list(pool.map(self.submit_one, targets))
        return VerificationReport(outcomes=outcomes)


def build_targets(
    addresses: DeployedSet,
    *,
    fqcns: Mapping[Component, str],
    wrapper_fqcn: str,
    bundle_root: Path | None = None,
) -> list[VerificationTarget]:
    """Implementations first, then the three proxies with their constructor args."""
    addresses.require_complete()
    targets: list[VerificationTarget] = []
    for spec in COMPONENTS:
        targets.append(
            VerificationTarget(
                label=spec.contract_name,
                address=addresses.implementation(spec.component),  # type: ignore[arg-type]
                fqcn=fqcns[spec.component],
                bundle_path=bundle_root / spec.bundle_dir / BUNDLE_MANIFEST_FILENAME if bundle_root else None,
            )
        )
    for spec in COMPONENTS:
        targets.append(
            VerificationTarget(
                label=f"{WRAPPER_CONTRACT_NAME} ({spec.component.value.capitalize()})",
                address=addresses.wrapper(spec.component),  # type: ignore[arg-type]
                fqcn=wrapper_fqcn,
                constructor_args=addresses.constructor_args(spec.component),
                bundle_path=bundle_root / WRAPPER_BUNDLE_DIR / BUNDLE_MANIFEST_FILENAME if bundle_root else None,
            )
        )
    return targets
