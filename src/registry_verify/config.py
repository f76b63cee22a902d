"""Run configuration: dotenv loading and typed settings built from an environment mapping.

Precedence is CLI flag > process environment > dotenv file > default.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

from registry_verify.constants import (
    DEFAULT_CHAIN_ID,
    DEFAULT_SOURCE_DIR,
    DEFAULT_VERIFIER_URL,
    DEFAULT_VERIFY_WORKERS,
    MAX_VERIFY_WORKERS,
    VERIFY_TIMEOUT_SECONDS,
)
from registry_verify.deployment import COMPONENTS, Component, wrapper_fqcn
from registry_verify.errors import ConfigurationError

KNOWN_CHAIN_IDS = {295: "mainnet", 296: "testnet", 297: "previewnet"}


def load_dotenv(path: Path) -> dict[str, str]:
    """
    Minimal .env loader:
    - supports KEY=VALUE (an optional leading ``export`` is ignored)
    - strips surrounding quotes
    - ignores blank lines and `#` comments
    - does not expand variables
    """
    out: dict[str, str] = {}
    if not path.exists():
        return out

    for raw in path.read_text().splitlines():
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].lstrip()
        if "=" not in line:
            continue
        k, v = line.split("=", 1)
        k = k.strip()
        v = v.strip()
        if not k:
            continue
        if len(v) >= 2 and ((v[0] == v[-1] == '"') or (v[0] == v[-1] == "'")):
            v = v[1:-1]
        out[k] = v
    return out


def build_environment(env_file: Path | None, environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Dotenv values overlaid by the process environment."""
    merged: dict[str, str] = {}
    if env_file is not None:
        merged.update(load_dotenv(env_file))
    merged.update(os.environ if environ is None else environ)
    return merged


def safe_bool(val: Any, default: bool) -> bool:
    """
    Parse a boolean value with common string aliases (true, 1, yes).
    """
    if val is None:
        return default
    if isinstance(val, bool):
        return val
    if isinstance(val, str):
        return val.strip().lower() in ("true", "1", "yes")
    return bool(val)


def _parse_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid {name}: must be an integer, got {raw!r}") from None


@dataclass(frozen=True)
class ArtifactNames:
    """Fully-qualified contract names (``path/File.sol:Contract``) used for inspect/verify."""

    implementations: dict[Component, str] = field(default_factory=dict)
    wrapper: str = field(default_factory=wrapper_fqcn)

    @classmethod
    def from_env(cls, env: Mapping[str, str], *, source_dir: str = DEFAULT_SOURCE_DIR) -> ArtifactNames:
        impls: dict[Component, str] = {}
        for spec in COMPONENTS:
            override = (env.get(spec.fqcn_env) or "").strip()
            impls[spec.component] = override or spec.default_fqcn(source_dir)
        return cls(implementations=impls, wrapper=env.get("FQCN_PROXY") or wrapper_fqcn(source_dir))

    def fqcn(self, component: Component) -> str:
        return self.implementations[component]


@dataclass(frozen=True)
class VerifierSettings:
    chain_id: int = DEFAULT_CHAIN_ID
    verifier_url: str = DEFAULT_VERIFIER_URL
    source_dir: str = DEFAULT_SOURCE_DIR
    show_errors: bool = True
    workers: int = DEFAULT_VERIFY_WORKERS
    timeout_s: float = VERIFY_TIMEOUT_SECONDS
    transport: Literal["forge", "http"] = "forge"

    def __post_init__(self) -> None:
        if self.chain_id <= 0:
            raise ConfigurationError(f"Invalid chain id: {self.chain_id}")
        if not 1 <= self.workers <= MAX_VERIFY_WORKERS:
            raise ConfigurationError(f"workers must be between 1 and {MAX_VERIFY_WORKERS}, got {self.workers}")
        if self.timeout_s <= 0:
            raise ConfigurationError(f"timeout must be positive, got {self.timeout_s}")
        if self.transport not in ("forge", "http"):
            raise ConfigurationError(f"Unknown verifier transport: {self.transport}")
        if not self.verifier_url.strip():
            raise ConfigurationError("verifier URL is blank")

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> VerifierSettings:
        return cls(
            chain_id=_parse_int(env, "CHAIN_ID", DEFAULT_CHAIN_ID),
            verifier_url=env.get("VERIFIER_URL") or DEFAULT_VERIFIER_URL,
            source_dir=env.get("SOURCE_DIR") or DEFAULT_SOURCE_DIR,
            show_errors=safe_bool(env.get("SHOW_ERRORS"), True),
            workers=_parse_int(env, "VERIFY_WORKERS", DEFAULT_VERIFY_WORKERS),
        )

    @property
    def network_name(self) -> str:
        return KNOWN_CHAIN_IDS.get(self.chain_id, "custom")
