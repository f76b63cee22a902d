"""Tests for verification submission, classification and aggregation."""

from __future__ import annotations

import json
import subprocess
import threading
import time
from pathlib import Path

import httpx
import pytest

from registry_verify.deployment import COMPONENTS, DeployedSet
from registry_verify.errors import ConfigurationError, MissingConfigurationError, ToolchainTimeoutError
from registry_verify.runlog import RunLog
from registry_verify.toolchain import CommandResult, ForgeToolchain
from registry_verify.verifier import (
    ForgeVerifier,
    SourcifyHttpVerifier,
    VerificationStatus,
    VerificationSubmitter,
    VerificationTarget,
    VerifierResponse,
    build_targets,
    classify_response,
    describe_sourcify_payload,
    strip_noise,
)

WRAPPER_FQCN = "src/ERC1967Proxy.sol:ERC1967Proxy"


def _target(label: str = "IdentityRegistryUpgradeable", address: str = "0x" + "11" * 20) -> VerificationTarget:
    return VerificationTarget(label=label, address=address, fqcn=f"src/{label}.sol:{label}")


def _targets(addresses: DeployedSet, **kwargs) -> list[VerificationTarget]:
    fqcns = {spec.component: spec.default_fqcn() for spec in COMPONENTS}
    return build_targets(addresses, fqcns=fqcns, wrapper_fqcn=WRAPPER_FQCN, **kwargs)


class ScriptedVerifier:
    """Replies per address; records submissions."""

    def __init__(self, replies: dict[str, VerifierResponse | Exception]) -> None:
        self.replies = replies
        self.submitted: list[str] = []
        self._lock = threading.Lock()

    def submit(self, target: VerificationTarget, *, timeout_s: float) -> VerifierResponse:
        with self._lock:
            self.submitted.append(target.address)
        reply = self.replies.get(target.address, VerifierResponse(0, "Contract successfully verified"))
        if isinstance(reply, Exception):
            raise reply
        return reply


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("exit_code", "output", "expected"),
    [
        (0, "Contract source code already verified", VerificationStatus.ALREADY_VERIFIED),
        (1, "Error: contract is ALREADY VERIFIED", VerificationStatus.ALREADY_VERIFIED),
        (0, "Response: perfect match", VerificationStatus.EXACT_MATCH),
        (0, "Response: Partial Match", VerificationStatus.PARTIAL_MATCH),
        (0, "Submitted contract for verification", VerificationStatus.VERIFIED),
        (1, "Error: bytecode mismatch", VerificationStatus.FAILED),
        (124, "", VerificationStatus.FAILED),
    ],
)
def test_classification(exit_code: int, output: str, expected: VerificationStatus) -> None:
    outcome = classify_response(_target(), VerifierResponse(exit_code, output))
    assert outcome.status is expected
    assert outcome.status.succeeded is (expected is not VerificationStatus.FAILED)


def test_failed_detail_drops_noise_lines() -> None:
    output = (
        "Start verifying contract `0x11` deployed on 296\n"
        "Attempting to verify on Sourcify, pass the --etherscan-api-key to verify on Etherscan\n"
        "Pass the --etherscan-api-key <API_KEY> to verify on Etherscan\n"
        "Error: no matching bytecode"
    )
    outcome = classify_response(_target(), VerifierResponse(1, output))
    assert outcome.raw_detail == "Start verifying contract `0x11` deployed on 296\nError: no matching bytecode"
    assert strip_noise("a\nb") == "a\nb"


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


def test_continue_past_failures(deployed: DeployedSet) -> None:
    targets = _targets(deployed)
    verifier = ScriptedVerifier(
        {
            targets[0].address: VerifierResponse(1, "Contract already verified"),
            targets[1].address: VerifierResponse(1, "Error: compilation failed"),
        }
    )
    report = VerificationSubmitter(verifier, workers=2).submit_all(targets)

    assert sorted(verifier.submitted) == sorted(t.address for t in targets)
    assert [o.target for o in report.outcomes] == [t.address for t in targets]
    assert report.outcomes[0].status is VerificationStatus.ALREADY_VERIFIED
    assert report.outcomes[1].status is VerificationStatus.FAILED
    assert report.outcomes[2].status is VerificationStatus.VERIFIED
    assert [o.label for o in report.failed] == ["ReputationRegistryUpgradeable"]
    assert report.exit_code == 1


def test_all_success_exit_zero(deployed: DeployedSet) -> None:
    targets = _targets(deployed)
    report = VerificationSubmitter(ScriptedVerifier({}), workers=1).submit_all(targets)
    assert report.exit_code == 0
    assert report.by_status() == {VerificationStatus.VERIFIED: 6}


def test_timeout_only_fails_that_target() -> None:
    slow, fast = _target("Slow", "0x" + "aa" * 20), _target("Fast", "0x" + "bb" * 20)
    verifier = ScriptedVerifier({slow.address: ToolchainTimeoutError("forge verify-contract timed out")})
    report = VerificationSubmitter(verifier, timeout_s=5).submit_all([slow, fast])
    assert report.outcomes[0].status is VerificationStatus.FAILED
    assert "Timed out after 5" in report.outcomes[0].raw_detail
    assert report.outcomes[1].status is VerificationStatus.VERIFIED


def test_transport_errors_become_failed_outcomes() -> None:
    target = _target()
    verifier = ScriptedVerifier({target.address: httpx.ConnectError("refused")})
    report = VerificationSubmitter(verifier).submit_all([target])
    assert report.outcomes[0].status is VerificationStatus.FAILED
    assert "ConnectError" in report.outcomes[0].raw_detail


def test_order_preserved_under_concurrency() -> None:
    targets = [_target(f"T{i}", "0x" + f"{i:02x}" * 20) for i in range(6)]

    class SlowFirst(ScriptedVerifier):
        def submit(self, target: VerificationTarget, *, timeout_s: float) -> VerifierResponse:
            if target.label == "T0":
                time.sleep(0.05)
            return super().submit(target, timeout_s=timeout_s)

    report = VerificationSubmitter(SlowFirst({}), workers=6).submit_all(targets)
    assert [o.label for o in report.outcomes] == [t.label for t in targets]


@pytest.mark.parametrize("workers", [0, 7])
def test_worker_bounds(workers: int) -> None:
    with pytest.raises(ConfigurationError):
        VerificationSubmitter(ScriptedVerifier({}), workers=workers)


def test_run_log_records_outcomes(tmp_path: Path) -> None:
    run_log = RunLog(base_dir=tmp_path, run_id="verify-test")
    target = _target()
    VerificationSubmitter(ScriptedVerifier({}), run_log=run_log).submit_all([target])

    events = [json.loads(line) for line in run_log.paths.events.read_text().splitlines()]
    assert [e["event"] for e in events] == ["verify_started", "verify_finished"]
    rows = [json.loads(line) for line in run_log.paths.outcomes.read_text().splitlines()]
    assert rows == [
        {
            "address": target.address,
            "detail": "Contract successfully verified",
            "label": target.label,
            "status": "verified",
        }
    ]


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


def test_build_targets(deployed: DeployedSet, tmp_path: Path) -> None:
    targets = _targets(deployed, bundle_root=tmp_path)
    assert [t.label for t in targets] == [
        "IdentityRegistryUpgradeable",
        "ReputationRegistryUpgradeable",
        "ValidationRegistryUpgradeable",
        "ERC1967Proxy (Identity)",
        "ERC1967Proxy (Reputation)",
        "ERC1967Proxy (Validation)",
    ]
    assert all(t.constructor_args is None for t in targets[:3])
    assert all(t.constructor_args for t in targets[3:])
    assert targets[0].bundle_path == tmp_path / "identity-impl" / "metadata.json"
    assert targets[5].bundle_path == tmp_path / "proxy" / "metadata.json"
    assert targets[4].fqcn == "src/ERC1967Proxy.sol:ERC1967Proxy"


def test_build_targets_requires_all_addresses() -> None:
    with pytest.raises(MissingConfigurationError):
        _targets(DeployedSet(identity_impl="0x" + "11" * 20))


# ---------------------------------------------------------------------------
# Transports
# ---------------------------------------------------------------------------


def test_forge_verifier_command(tmp_path: Path, deployed: DeployedSet) -> None:
    toolchain = ForgeToolchain(tmp_path, forge_bin="forge")
    verifier = ForgeVerifier(toolchain, chain_id=296, verifier_url="https://server-verify.hashscan.io/")
    proxy_target = _targets(deployed)[4]
    cmd = verifier.command(proxy_target)
    assert cmd[:9] == [
        "forge",
        "verify-contract",
        "--chain-id",
        "296",
        "--verifier",
        "sourcify",
        "--verifier-url",
        "https://server-verify.hashscan.io/",
        proxy_target.address,
    ]
    assert cmd[9] == "src/ERC1967Proxy.sol:ERC1967Proxy"
    assert cmd[10] == "--constructor-args"
    assert cmd[11] == "0x" + proxy_target.constructor_args.hex()

    impl_cmd = verifier.command(_target())
    assert "--constructor-args" not in impl_cmd


def test_forge_verifier_captures_output(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    toolchain = ForgeToolchain(tmp_path)
    monkeypatch.setattr(
        toolchain, "run_captured", lambda cmd, timeout_s: CommandResult(0, "Contract successfully verified")
    )
    response = ForgeVerifier(toolchain, chain_id=296, verifier_url="u").submit(_target(), timeout_s=1)
    assert response == VerifierResponse(0, "Contract successfully verified")


def test_forge_timeout_is_reported(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def _timeout(*args, **kwargs):
        raise subprocess.TimeoutExpired(cmd=["forge"], timeout=1.0)

    monkeypatch.setattr(subprocess, "run", _timeout)
    verifier = ForgeVerifier(ForgeToolchain(tmp_path), chain_id=296, verifier_url="u")
    report = VerificationSubmitter(verifier, timeout_s=1.0).submit_all([_target()])
    assert report.outcomes[0].status is VerificationStatus.FAILED


def test_describe_sourcify_payload() -> None:
    assert describe_sourcify_payload({"error": "no match"}) == "Error: no match"
    assert "already verified" in describe_sourcify_payload(
        {"result": [{"address": "0x1", "status": "perfect", "storageTimestamp": "2024-01-01"}]}
    )
    assert "perfect match" in describe_sourcify_payload({"result": [{"address": "0x1", "status": "perfect"}]})
    assert "partial match" in describe_sourcify_payload({"result": [{"address": "0x1", "status": "partial"}]})
    assert describe_sourcify_payload(["x"]) == "['x']"


def test_sourcify_http_verifier(tmp_path: Path) -> None:
    bundle = tmp_path / "metadata.json"
    bundle.write_text('{"language": "Solidity"}\n')
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"result": [{"address": seen["body"]["address"], "status": "perfect"}]})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    verifier = SourcifyHttpVerifier(chain_id=296, verifier_url="https://server-verify.hashscan.io/", client=client)
    target = VerificationTarget(label="X", address="0x" + "11" * 20, fqcn="src/X.sol:X", bundle_path=bundle)
    outcome = classify_response(target, verifier.submit(target, timeout_s=5))

    assert seen["url"] == "https://server-verify.hashscan.io/verify"
    assert seen["body"] == {
        "address": target.address,
        "chain": "296",
        "files": {"metadata.json": '{"language": "Solidity"}\n'},
    }
    assert outcome.status is VerificationStatus.EXACT_MATCH


def test_sourcify_http_error_is_failure(tmp_path: Path) -> None:
    bundle = tmp_path / "metadata.json"
    bundle.write_text("{}")
    client = httpx.Client(transport=httpx.MockTransport(lambda r: httpx.Response(400, json={"error": "bad"})))
    verifier = SourcifyHttpVerifier(chain_id=296, verifier_url="https://v.test", client=client)
    target = VerificationTarget(label="X", address="0x" + "11" * 20, fqcn="x", bundle_path=bundle)
    response = verifier.submit(target, timeout_s=5)
    assert response.exit_code == 1
    assert "Error: bad" in response.output


def test_sourcify_http_without_bundle(tmp_path: Path) -> None:
    verifier = SourcifyHttpVerifier(chain_id=296, verifier_url="https://v.test", client=httpx.Client())
    target = VerificationTarget(label="X", address="0x1", fqcn="x", bundle_path=tmp_path / "absent.json")
    assert verifier.submit(target, timeout_s=1).exit_code == 1


def test_unexpected_error_fails_only_that_target() -> None:
    broken, fine = _target("Broken", "0x" + "aa" * 20), _target("Fine", "0x" + "bb" * 20)
    verifier = ScriptedVerifier({broken.address: KeyError("result")})
    report = VerificationSubmitter(verifier, workers=2).submit_all([broken, fine])
    assert [o.status for o in report.outcomes] == [VerificationStatus.FAILED, VerificationStatus.VERIFIED]
    assert "KeyError" in report.outcomes[0].raw_detail
    assert report.exit_code == 1


def test_sourcify_http_undecodable_bundle_is_reported(tmp_path: Path) -> None:
    corrupt, good = tmp_path / "corrupt.json", tmp_path / "good.json"
    corrupt.write_bytes(b"\xff\xfe")
    good.write_text("{}")
    client = httpx.Client(
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"result": [{"status": "perfect"}]}))
    )
    verifier = SourcifyHttpVerifier(chain_id=296, verifier_url="https://v.test", client=client)
    targets = [
        VerificationTarget(label="A", address="0x" + "11" * 20, fqcn="a", bundle_path=corrupt),
        VerificationTarget(label="B", address="0x" + "22" * 20, fqcn="b", bundle_path=good),
    ]
    report = VerificationSubmitter(verifier).submit_all(targets)
    assert len(report.outcomes) == 2
    assert report.outcomes[0].status is VerificationStatus.FAILED
    assert "UnicodeDecodeError" in report.outcomes[0].raw_detail
    assert report.outcomes[1].status is VerificationStatus.EXACT_MATCH
