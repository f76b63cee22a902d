"""
registry-verify command line.

Subcommands:
    bundle    Write inline-metadata verification bundles and MANIFEST.txt
    verify    Submit the six deployed contracts to the verifier
    simulate  Run the atomic batch creation against the in-memory sandbox
    inspect   Check a live deployment over JSON-RPC
    doctor    Environment validation
"""

from __future__ import annotations

import argparse
import logging
import sys
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path

import httpx
from rich.console import Console
from rich.table import Table

from registry_verify import doctor
from registry_verify.bundle import BundleBuilder
from registry_verify.config import ArtifactNames, VerifierSettings, build_environment
from registry_verify.constants import (
    DEFAULT_BUILD_OUT_DIR,
    DEFAULT_BUNDLE_DIR,
    DEFAULT_SOURCE_DIR,
    MAX_VERIFY_WORKERS,
    REGISTRY_VERSION,
    WRAPPER_CONTRACT_NAME,
)
from registry_verify.deployment import COMPONENTS, DeployedSet
from registry_verify.errors import RegistryVerifyError
from registry_verify.inliner import MetadataInliner
from registry_verify.inspector import DeploymentInspector, RpcClient
from registry_verify.locator import ArtifactLocator
from registry_verify.orchestrator import BatchCreationOrchestrator
from registry_verify.resolver import PathResolver, ResolutionContext
from registry_verify.runlog import RunLog, default_run_id
from registry_verify.sandbox import SandboxChain
from registry_verify.toolchain import ForgeToolchain
from registry_verify.utils import safe_read_json
from registry_verify.verifier import (
    ForgeVerifier,
    SourcifyHttpVerifier,
    VerificationReport,
    VerificationSubmitter,
    build_targets,
)

logger = logging.getLogger(__name__)

console = Console()

ADDRESS_FLAGS = (
    ("--id-impl", "identity_impl"),
    ("--rep-impl", "reputation_impl"),
    ("--val-impl", "validation_impl"),
    ("--id-proxy", "identity_proxy"),
    ("--rep-proxy", "reputation_proxy"),
    ("--val-proxy", "validation_proxy"),
)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def _environment(args: argparse.Namespace) -> dict[str, str]:
    env_file: Path | None = args.env_file
    if env_file is not None and not env_file.exists():
        env_file = None
    env = build_environment(env_file)
    # CLI flags take precedence over the environment
    for flag, env_name in (
        ("chain_id", "CHAIN_ID"),
        ("verifier_url", "VERIFIER_URL"),
        ("source_dir", "SOURCE_DIR"),
        ("fqcn_id", "FQCN_ID"),
        ("fqcn_rep", "FQCN_REP"),
        ("fqcn_val", "FQCN_VAL"),
        ("rpc_url", "HEDERA_RPC_URL"),
    ):
        value = getattr(args, flag, None)
        if value is not None:
            env[env_name] = str(value)
    if getattr(args, "show_errors", None) is not None:
        env["SHOW_ERRORS"] = "1" if args.show_errors else "0"
    return env


def _addresses(args: argparse.Namespace, env: Mapping[str, str]) -> DeployedSet:
    overrides = {field: getattr(args, field, None) for _, field in ADDRESS_FLAGS}
    return DeployedSet.from_env(env).merged(**overrides)


def _artifact_names(env: Mapping[str, str]) -> ArtifactNames:
    return ArtifactNames.from_env(env, source_dir=env.get("SOURCE_DIR") or DEFAULT_SOURCE_DIR)


# ---------------------------------------------------------------------------
# bundle
# ---------------------------------------------------------------------------


def cmd_bundle(args: argparse.Namespace, env: Mapping[str, str]) -> int:
    project_root: Path = args.project_root
    toolchain = ForgeToolchain(project_root)
    remappings = toolchain.remapping_table()
    logger.info(f"Loaded {len(remappings)} remapping(s)")

    resolver = PathResolver(ResolutionContext(project_root=project_root, remappings=remappings))
    names = _artifact_names(env)
    builder = BundleBuilder(
        manifests=toolchain,
        locator=ArtifactLocator(project_root / DEFAULT_BUILD_OUT_DIR),
        inliner=MetadataInliner(resolver),
        fqcns=names.implementations,
        source_dir=env.get("SOURCE_DIR") or DEFAULT_SOURCE_DIR,
        rpc_url=env.get("HEDERA_RPC_URL") or None,
    )
    output_root: Path = args.out_dir if args.out_dir.is_absolute() else project_root / args.out_dir
    report = builder.build(_addresses(args, env), output_root)

    table = Table(title="Verification Bundles", show_header=True)
    table.add_column("Contract", style="cyan")
    table.add_column("File")
    table.add_column("Status")
    for entry in report.entries:
        summary = entry.report.summary()
        style = "green" if entry.report.ok else ("red" if entry.report.suspect else "yellow")
        table.add_row(entry.label, str(entry.manifest_path), f"[{style}]{summary}[/{style}]")
    console.print(table)
    console.print(f"Upload guide: {report.index_path}")
    if report.suspect:
        console.print("[bold red]Bundle is SUSPECT: embedded sources do not match compiler hashes.[/bold red]")
    return 0


# ---------------------------------------------------------------------------
# verify
# ---------------------------------------------------------------------------


def print_verification_report(report: VerificationReport, *, show_errors: bool) -> None:
    table = Table(title="Verification Results", show_header=True)
    table.add_column("Contract", style="cyan")
    table.add_column("Address")
    table.add_column("Status")
    for o in report.outcomes:
        style = "green" if o.status.succeeded else "red"
        table.add_row(o.label, o.target, f"[{style}]{o.status.value}[/{style}]")
    console.print(table)

    for o in report.failed:
        console.print(f"[red]✘ Failed:[/red] {o.label} @ {o.target}")
        if show_errors and o.raw_detail.strip():
            console.print(o.raw_detail, markup=False, highlight=False)


def cmd_verify(args: argparse.Namespace, env: Mapping[str, str]) -> int:
    settings = VerifierSettings.from_env(env)
    overrides = {
        k: v
        for k, v in (("workers", args.workers), ("timeout_s", args.timeout), ("transport", args.transport))
        if v is not None
    }
    if overrides:
        settings = replace(settings, **overrides)
    addresses = _addresses(args, env).require_complete()
    names = _artifact_names(env)
    project_root: Path = args.project_root
    bundle_root: Path = args.bundle_dir if args.bundle_dir.is_absolute() else project_root / args.bundle_dir

    logger.info(f"== Verifying on chain {settings.chain_id} ({settings.network_name}) via {settings.verifier_url} ==")
    targets = build_targets(
        addresses,
        fqcns=names.implementations,
        wrapper_fqcn=names.wrapper,
        bundle_root=bundle_root,
    )

    run_log: RunLog | None = None
    if args.log_dir is not None:
        run_log = RunLog(base_dir=args.log_dir, run_id=default_run_id(prefix="verify"))
        run_log.write_run_metadata(
            {
                "chain_id": settings.chain_id,
                "verifier_url": settings.verifier_url,
                "transport": settings.transport,
                "addresses": dict(addresses),
            }
        )
        logger.info(f"Run log: {run_log.paths.root}")

    if settings.transport == "http":
        with httpx.Client() as client:
            verifier = SourcifyHttpVerifier(
                chain_id=settings.chain_id, verifier_url=settings.verifier_url, client=client
            )
            submitter = VerificationSubmitter(
                verifier, workers=settings.workers, timeout_s=settings.timeout_s, run_log=run_log
            )
            report = submitter.submit_all(targets)
    else:
        verifier = ForgeVerifier(
            ForgeToolchain(project_root), chain_id=settings.chain_id, verifier_url=settings.verifier_url
        )
        submitter = VerificationSubmitter(
            verifier, workers=settings.workers, timeout_s=settings.timeout_s, run_log=run_log
        )
        report = submitter.submit_all(targets)

    print_verification_report(report, show_errors=settings.show_errors)
    if report.exit_code:
        names_failed = ", ".join(o.label for o in report.failed)
        logger.error(f"Verification failed for: {names_failed}")
    else:
        logger.info("All verifications succeeded.")
    return report.exit_code


# ---------------------------------------------------------------------------
# simulate
# ---------------------------------------------------------------------------


def load_creation_bytecodes(out_dir: Path, source_dir: str) -> dict[str, bytes]:
    """
    Creation bytecode per contract name from ``<out>/<File>.sol/<Name>.json``.

    Contracts without a build artifact get a placeholder derived from their
    name, which is enough for the sandbox.
    """
    names = [spec.contract_name for spec in COMPONENTS] + [WRAPPER_CONTRACT_NAME]
    out: dict[str, bytes] = {}
    for name in names:
        artifact = safe_read_json(out_dir / f"{name}.sol" / f"{name}.json", context=f"artifact {name}")
        code = ""
        if isinstance(artifact, dict):
            bytecode = artifact.get("bytecode")
            if isinstance(bytecode, dict):
                code = str(bytecode.get("object") or "")
            elif isinstance(bytecode, str):
                code = bytecode
        code = code[2:] if code.startswith("0x") else code
        if code:
            out[name] = bytes.fromhex(code)
        else:
            logger.debug(f"No creation bytecode for {name} under {out_dir}; using placeholder")
            out[name] = f"{source_dir}/{name}".encode()
    return out


def cmd_simulate(args: argparse.Namespace, env: Mapping[str, str]) -> int:
    out_dir: Path = args.project_root / DEFAULT_BUILD_OUT_DIR
    bytecodes = load_creation_bytecodes(out_dir, env.get("SOURCE_DIR") or DEFAULT_SOURCE_DIR)
    chain = SandboxChain()
    deployed = BatchCreationOrchestrator(chain, bytecodes, version=args.version).run()

    view = chain.deployment()
    table = Table(title=f"Sandbox Deployment (version {view.version() if view else '?'})", show_header=True)
    table.add_column("Env", style="cyan")
    table.add_column("Address")
    names = deployed.env_names()
    for field, address in deployed:
        table.add_row(names[field], address or "")
    console.print(table)
    return 0


# ---------------------------------------------------------------------------
# inspect
# ---------------------------------------------------------------------------


def cmd_inspect(args: argparse.Namespace, env: Mapping[str, str]) -> int:
    rpc_url = env.get("HEDERA_RPC_URL")
    if not rpc_url:
        console.print("[red]--rpc-url or HEDERA_RPC_URL is required for inspect[/red]")
        return 1
    addresses = _addresses(args, env).require_complete()
    with httpx.Client() as client:
        findings = DeploymentInspector(RpcClient(rpc_url, client=client)).check(addresses)

    table = Table(title=f"Deployment Inspection ({rpc_url})", show_header=True)
    table.add_column("Check", style="cyan")
    table.add_column("Status", width=6)
    table.add_column("Details", style="dim")
    for f in findings:
        table.add_row(f.label, "[green]✓[/green]" if f.ok else "[red]✗[/red]", f.detail)
    console.print(table)
    return 0 if all(f.ok for f in findings) else 1


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--project-root", type=Path, default=Path("."), help="Foundry project root")
    p.add_argument("--env-file", type=Path, default=Path(".env"), help="Optional dotenv file")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")


def _add_addresses(p: argparse.ArgumentParser) -> None:
    g = p.add_argument_group("deployment addresses (override ID_IMPL ... VAL_PROXY)")
    for flag, dest in ADDRESS_FLAGS:
        g.add_argument(flag, dest=dest, type=str, default=None)


def _add_names(p: argparse.ArgumentParser) -> None:
    p.add_argument("--source-dir", type=str, default=None, help="Directory holding the registry sources")
    p.add_argument("--fqcn-id", type=str, default=None, help="Identity implementation path:Name")
    p.add_argument("--fqcn-rep", type=str, default=None, help="Reputation implementation path:Name")
    p.add_argument("--fqcn-val", type=str, default=None, help="Validation implementation path:Name")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="registry-verify",
        description="Verification bundles, verification runs and atomic creation for the registry set",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_bundle = subparsers.add_parser("bundle", help="Write inline-metadata bundles and MANIFEST.txt")
    _add_common(p_bundle)
    _add_addresses(p_bundle)
    _add_names(p_bundle)
    p_bundle.add_argument("--out-dir", type=Path, default=Path(DEFAULT_BUNDLE_DIR), help="Bundle output directory")
    p_bundle.add_argument("--rpc-url", type=str, default=None, help="Network RPC noted in MANIFEST.txt")
    p_bundle.set_defaults(func=cmd_bundle)

    p_verify = subparsers.add_parser("verify", help="Submit all six contracts to the verifier")
    _add_common(p_verify)
    _add_addresses(p_verify)
    _add_names(p_verify)
    p_verify.add_argument("--chain-id", type=int, default=None, help="295 mainnet, 296 testnet, 297 previewnet")
    p_verify.add_argument("--verifier-url", type=str, default=None)
    p_verify.add_argument("--show-errors", dest="show_errors", action="store_true", default=None)
    p_verify.add_argument("--hide-errors", dest="show_errors", action="store_false")
    p_verify.add_argument("--workers", type=int, default=None, help=f"Concurrent submissions (1-{MAX_VERIFY_WORKERS})")
    p_verify.add_argument("--timeout", type=float, default=None, help="Per-submission timeout in seconds")
    p_verify.add_argument(
        "--transport",
        choices=["forge", "http"],
        default=None,
        help="forge verify-contract (default) or direct Sourcify HTTP upload of the bundles",
    )
    p_verify.add_argument(
        "--bundle-dir", type=Path, default=Path(DEFAULT_BUNDLE_DIR), help="Bundles used by the http transport"
    )
    p_verify.add_argument("--log-dir", type=Path, default=None, help="Write a JSONL run log under this directory")
    p_verify.set_defaults(func=cmd_verify)

    p_sim = subparsers.add_parser("simulate", help="Atomic batch creation against the in-memory sandbox")
    _add_common(p_sim)
    p_sim.add_argument("--version", type=str, default=REGISTRY_VERSION, help="Version recorded in the deployment")
    p_sim.set_defaults(func=cmd_simulate)

    p_inspect = subparsers.add_parser("inspect", help="Check a live deployment over JSON-RPC")
    _add_common(p_inspect)
    _add_addresses(p_inspect)
    p_inspect.add_argument("--rpc-url", type=str, default=None, help="JSON-RPC endpoint (HEDERA_RPC_URL)")
    p_inspect.set_defaults(func=cmd_inspect)

    p_doctor = subparsers.add_parser("doctor", help="Environment validation")
    p_doctor.add_argument("--full", action="store_true", help="Also probe the verifier endpoint")
    p_doctor.add_argument("--project-root", type=Path, default=Path("."), help="Foundry project root")
    p_doctor.add_argument("--env-file", type=Path, default=Path(".env"), help="Optional dotenv file")

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "doctor":
        doctor_argv = ["--project-root", str(args.project_root), "--env-file", str(args.env_file)]
        if args.full:
            doctor_argv.append("--full")
        doctor.main(doctor_argv)
        return

    _configure_logging(args.verbose)
    try:
        env = _environment(args)
        code = args.func(args, env)
    except RegistryVerifyError as e:
        logger.debug("command failed", exc_info=True)
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)
    sys.exit(code)


if __name__ == "__main__":
    main()
