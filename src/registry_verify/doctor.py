"""
registry-verify doctor - environment validation before bundling or verifying.

Usage:
    registry-verify-doctor                 # Quick check (toolchain, project, addresses)
    registry-verify-doctor --full          # Also probe the verifier endpoint
    registry-verify-doctor --project-root path/to/foundry/project
"""

from __future__ import annotations

import argparse
import shutil
import subprocess
import sys
from collections.abc import Mapping
from pathlib import Path

import httpx
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from registry_verify.config import VerifierSettings, build_environment
from registry_verify.constants import DEFAULT_BUILD_OUT_DIR, FORGE_BIN, WRAPPER_CONTRACT_NAME
from registry_verify.deployment import DeployedSet
from registry_verify.errors import ConfigurationError

console = Console()

CheckResult = tuple[bool, str, str | None]


# ---------------------------------------------------------------------------
# Check Functions
# ---------------------------------------------------------------------------


def check_forge(forge_bin: str = FORGE_BIN) -> CheckResult:
    """Check if forge is available (needed for remappings, inspect and verify-contract)."""
    path = shutil.which(forge_bin)
    if path:
        try:
            result = subprocess.run(
                [forge_bin, "--version"],
                check=False,
                capture_output=True,
                text=True,
                timeout=10,
            )
            if result.returncode == 0:
                version = result.stdout.strip().split("\n")[0]
                return True, f"forge found: {version}", None
        except (subprocess.TimeoutExpired, OSError):
            pass
        return False, f"forge found at {path} but `forge --version` failed", None
    return (
        False,
        "forge not found. Required for manifests and verify-contract.",
        "curl -L https://foundry.paradigm.xyz | bash && foundryup",
    )


def check_project(project_root: Path) -> CheckResult:
    """Check that the project root looks like a Foundry project."""
    if not (project_root / "foundry.toml").is_file():
        return False, f"foundry.toml not found under {project_root}", None
    return True, f"Foundry project: {project_root}", None


def check_build_output(project_root: Path) -> CheckResult:
    """Check that compiled artifacts (including the proxy) exist."""
    out_dir = project_root / DEFAULT_BUILD_OUT_DIR
    if not out_dir.is_dir():
        return False, f"Build output missing: {out_dir}", "forge build"
    proxies = sorted(out_dir.rglob(f"{WRAPPER_CONTRACT_NAME}.json"))
    if not proxies:
        return False, f"No {WRAPPER_CONTRACT_NAME}.json artifact under {out_dir}", "forge build"
    return True, f"{len(proxies)} {WRAPPER_CONTRACT_NAME} artifact(s) under {out_dir}", None


def check_addresses(env: Mapping[str, str]) -> CheckResult:
    """Check whether all six deployment addresses are configured."""
    try:
        missing = DeployedSet.from_env(env).missing()
    except ConfigurationError as e:
        return False, str(e), None
    if missing:
        return (
            False,
            f"Missing addresses: {', '.join(missing)} (bundling still works; verify needs all six)",
            "export ID_IMPL=0x... REP_IMPL=0x... VAL_IMPL=0x... ID_PROXY=0x... REP_PROXY=0x... VAL_PROXY=0x...",
        )
    return True, "All six deployment addresses configured", None


def check_python_deps() -> CheckResult:
    """Check if Python dependencies are installed."""
    try:
        import eth_abi  # noqa: F401
        import eth_utils
        import rich  # noqa: F401

        eth_utils.keccak(b"")  # needs an eth-hash backend
        return True, "Python dependencies installed", None
    except ImportError as e:
        return False, f"Missing Python dependency: {e.name}", 'pip install -e ".[test]"'
    except NotImplementedError as e:
        return False, f"No keccak backend: {e}", 'pip install "eth-hash[pycryptodome]"'


def check_verifier(settings: VerifierSettings) -> CheckResult:
    """Probe the verifier endpoint (any HTTP response counts as reachable)."""
    try:
        r = httpx.get(settings.verifier_url, timeout=10)
    except httpx.HTTPError as e:
        return False, f"Verifier unreachable: {settings.verifier_url} ({type(e).__name__})", None
    return True, f"Verifier reachable: {settings.verifier_url} -> {r.status_code}", None


# ---------------------------------------------------------------------------
# Main Doctor Logic
# ---------------------------------------------------------------------------


def run_checks(
    *,
    project_root: Path,
    env: Mapping[str, str],
    full: bool = False,
) -> list[tuple[str, bool, str, str | None]]:
    """
    Run all environment checks.

    Returns:
        List of (check_name, passed, message, fix_command)
    """
    results: list[tuple[str, bool, str, str | None]] = []

    ok, msg, fix = check_forge()
    results.append(("forge", ok, msg, fix))
    ok, msg, fix = check_project(project_root)
    results.append(("Project", ok, msg, fix))
    ok, msg, fix = check_build_output(project_root)
    results.append(("Build Output", ok, msg, fix))
    ok, msg, fix = check_addresses(env)
    results.append(("Addresses", ok, msg, fix))
    ok, msg, fix = check_python_deps()
    results.append(("Python Deps", ok, msg, fix))

    if full:
        ok, msg, fix = check_verifier(VerifierSettings.from_env(env))
        results.append(("Verifier", ok, msg, fix))

    return results


def print_results(results: list[tuple[str, bool, str, str | None]]) -> bool:
    """Print check results and return overall status."""
    table = Table(title="registry-verify Environment Check", show_header=True)
    table.add_column("Check", style="cyan", width=15)
    table.add_column("Status", width=6)
    table.add_column("Details", style="dim")

    all_passed = True
    fixes: list[tuple[str, str]] = []

    for name, passed, message, fix in results:
        status = "[green]✓[/green]" if passed else "[red]✗[/red]"
        table.add_row(name, status, message)
        if not passed:
            all_passed = False
            if fix:
                fixes.append((name, fix))

    console.print(table)

    if fixes:
        console.print()
        console.print(
            Panel.fit(
                "\n".join([f"[bold]{name}:[/bold] {cmd}" for name, cmd in fixes]),
                title="[yellow]Suggested Fixes[/yellow]",
                border_style="yellow",
            )
        )

    return all_passed


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="registry-verify doctor - environment validation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  registry-verify-doctor                  # Quick environment check
  registry-verify-doctor --full           # Also probe the verifier endpoint
        """,
    )
    parser.add_argument("--full", action="store_true", help="Also probe the verifier endpoint")
    parser.add_argument("--project-root", type=Path, default=Path("."), help="Foundry project root")
    parser.add_argument("--env-file", type=Path, default=Path(".env"), help="Optional dotenv file")
    args = parser.parse_args(argv)

    console.print("[bold blue]registry-verify doctor[/bold blue]")
    console.print()

    env = build_environment(args.env_file if args.env_file.exists() else None)
    results = run_checks(project_root=args.project_root, env=env, full=args.full)
    all_passed = print_results(results)

    console.print()
    if all_passed:
        console.print("[bold green]✓ All checks passed! Environment is ready.[/bold green]")
    else:
        console.print("[bold red]✗ Some checks failed. See suggested fixes above.[/bold red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
