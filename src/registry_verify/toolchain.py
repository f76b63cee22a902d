"""Subprocess adapter over the Foundry ``forge`` executable."""

from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from registry_verify.constants import (
    DEFAULT_RETRY_BASE_DELAY,
    DEFAULT_RETRY_MAX_ATTEMPTS,
    DEFAULT_RETRY_MAX_DELAY,
    FORGE_BIN,
    TOOLCHAIN_TIMEOUT_SECONDS,
)
from registry_verify.errors import ToolchainError, ToolchainTimeoutError
from registry_verify.manifest import Manifest, validate_manifest
from registry_verify.remappings import RemappingTable
from registry_verify.utils import retry_with_backoff, safe_json_loads

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    output: str  # stdout and stderr interleaved


def run_command(cmd: list[str], *, timeout_s: float, cwd: Path | None = None, context: str = "subprocess") -> str:
    """
    Run a command and return its stdout.

    Raises:
        ToolchainTimeoutError: If the process times out.
        ToolchainError: If the process is missing or exits non-zero.
    """
    try:
        return subprocess.check_output(
            cmd,
            text=True,
            timeout=timeout_s,
            stderr=subprocess.PIPE,
            cwd=str(cwd) if cwd else None,
        )
    except subprocess.TimeoutExpired as e:
        raise ToolchainTimeoutError(f"{context} timed out after {timeout_s}s") from e
    except FileNotFoundError as e:
        raise ToolchainError(f"{context} failed: executable not found: {cmd[0]}") from e
    except subprocess.CalledProcessError as e:
        stderr_snip = e.stderr[:500] if e.stderr else "N/A"
        raise ToolchainError(
            f"{context} failed (exit {e.returncode})\nCommand: {' '.join(cmd)}\nStderr: {stderr_snip}",
            returncode=e.returncode,
            stderr=e.stderr or "",
        ) from e


class ForgeToolchain:
    """Compiler toolchain as a black box: remappings, manifests and verification."""

    def __init__(
        self,
        project_root: Path,
        *,
        forge_bin: str = FORGE_BIN,
        timeout_s: float = TOOLCHAIN_TIMEOUT_SECONDS,
    ) -> None:
        self.project_root = project_root
        self.forge_bin = forge_bin
        self.timeout_s = timeout_s

    def _forge(self, *args: str, context: str) -> str:
        return run_command([self.forge_bin, *args], timeout_s=self.timeout_s, cwd=self.project_root, context=context)

    def remapping_table(self) -> RemappingTable:
        """Remappings as forge reports them; an empty table if forge cannot produce them."""
        try:
            out = self._forge("remappings", context="forge remappings")
        except ToolchainError as e:
            logger.warning(f"Could not load remappings, continuing without: {e}")
            return RemappingTable.empty()
        return RemappingTable.from_lines(out.splitlines())

    def inspect_metadata(self, fqcn: str) -> Manifest:
        """
        Return the compiler manifest for ``fqcn`` (``forge inspect <fqcn> metadata``).

        Retries transient failures (forge may be compiling on first call).
        """

        def _run() -> str:
            return self._forge("inspect", fqcn, "metadata", context=f"forge inspect {fqcn}")

        out = retry_with_backoff(
            _run,
            max_attempts=DEFAULT_RETRY_MAX_ATTEMPTS,
            base_delay=DEFAULT_RETRY_BASE_DELAY,
            max_delay=DEFAULT_RETRY_MAX_DELAY,
            retryable_exceptions=(ToolchainTimeoutError,),
        )
        try:
            data: Any = safe_json_loads(out, context=f"forge inspect {fqcn}")
        except ValueError as e:
            raise ToolchainError(f"forge inspect {fqcn} returned invalid JSON: {e}") from e
        return validate_manifest(data, context=fqcn)

    def verify_contract_command(
        self,
        *,
        chain_id: int,
        verifier_url: str,
        address: str,
        fqcn: str,
        constructor_args: str | None = None,
    ) -> list[str]:
        cmd = [
            self.forge_bin,
            "verify-contract",
            "--chain-id",
            str(chain_id),
            "--verifier",
            "sourcify",
            "--verifier-url",
            verifier_url,
            address,
            fqcn,
        ]
        if constructor_args:
            cmd.extend(["--constructor-args", constructor_args])
        return cmd

    def run_captured(self, cmd: list[str], *, timeout_s: float) -> CommandResult:
        """Run without raising on non-zero exit; output is stdout+stderr."""
        proc = subprocess.run(
            cmd,
            check=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            timeout=timeout_s,
            cwd=str(self.project_root),
        )
        return CommandResult(returncode=proc.returncode, output=proc.stdout or "")
