"""Error types for bundle building, batch creation and verification.

Recoverable per-item faults (an unresolved source path, a hash mismatch, a
rejected verification) are recorded as data on reports and never raised. The
exceptions below are the faults that abort an operation.
"""

from __future__ import annotations

from pathlib import Path


class RegistryVerifyError(Exception):
    """Base class for all registry-verify errors."""


class ConfigurationError(RegistryVerifyError):
    """Raised when configuration values are invalid."""


class MissingConfigurationError(ConfigurationError):
    """Raised when required configuration values are absent or blank."""


class InvalidManifestError(RegistryVerifyError):
    """A compiler manifest lacks compiler, language or sources."""


class ArtifactNotFoundError(RegistryVerifyError):
    def __init__(self, artifact_name: str, source_key: str):
        self.artifact_name = artifact_name
        self.source_key = source_key
        super().__init__(f"Could not locate artifact for {artifact_name} at source '{source_key}'")


class ArtifactAmbiguousError(RegistryVerifyError):
    """More than one distinct build output matches an artifact.

    This points at the build configuration (duplicate contract names across
    dependency trees), not at a missing file.
    """

    def __init__(self, artifact_name: str, source_key: str, candidates: list[Path]):
        self.artifact_name = artifact_name
        self.source_key = source_key
        self.candidates = candidates
        listing = ", ".join(str(c) for c in candidates)
        super().__init__(
            f"Multiple build outputs match {artifact_name} at source '{source_key}': {listing}"
        )


class ToolchainError(RegistryVerifyError):
    """A compiler toolchain invocation failed or produced unusable output."""

    def __init__(self, message: str, *, returncode: int | None = None, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(message)


class ToolchainTimeoutError(ToolchainError, TimeoutError):
    """A toolchain invocation exceeded its timeout."""


class AtomicCreationFailed(RegistryVerifyError):
    """A step inside the batch-creation unit reverted; nothing was published."""

    def __init__(self, step: str, reason: str):
        self.step = step
        self.reason = reason
        super().__init__(f"Batch creation failed at {step}: {reason}")


class RpcError(RegistryVerifyError):
    """A JSON-RPC endpoint returned an error payload."""

    def __init__(self, method: str, code: int | None, message: str):
        self.method = method
        self.code = code
        super().__init__(f"{method} failed (code {code}): {message}")


class CreationReverted(RegistryVerifyError):
    """A single creation or initializer call reverted inside a transaction."""
