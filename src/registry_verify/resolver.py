"""
Logical source path -> physical file resolution.

Compiler manifests name sources by the path the compiler saw after applying
remappings (``lib/openzeppelin-contracts/contracts/...``, ``@openzeppelin/...``,
``src/Foo.sol``). Resolution walks an ordered tuple of strategies; each is a
pure function ``(logical_path, context) -> Path | None`` and the first one that
yields an existing regular file wins.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path

from registry_verify.constants import (
    PACKAGE_ALIAS_PREFIX,
    PACKAGE_DEPENDENCY_DIR,
    SEGMENT_RETRY_ROOTS,
    SOURCE_SEARCH_ROOTS,
)
from registry_verify.remappings import RemappingTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolutionContext:
    project_root: Path
    remappings: RemappingTable = field(default_factory=RemappingTable.empty)
    search_roots: tuple[str, ...] = SOURCE_SEARCH_ROOTS
    segment_roots: tuple[tuple[str, tuple[str, ...]], ...] = SEGMENT_RETRY_ROOTS

    def existing(self, candidates: Iterable[str]) -> Path | None:
        for rel in candidates:
            p = self.project_root / rel
            if p.is_file():
                return p
        return None


Strategy = Callable[[str, ResolutionContext], Path | None]


def package_alias(logical_path: str, ctx: ResolutionContext) -> Path | None:
    if not logical_path.startswith(PACKAGE_ALIAS_PREFIX):
        return None
    return ctx.existing([f"{PACKAGE_DEPENDENCY_DIR}/{logical_path}"])


def remapped(logical_path: str, ctx: ResolutionContext) -> Path | None:
    return ctx.existing(ctx.remappings.candidates(logical_path))


def literal(logical_path: str, ctx: ResolutionContext) -> Path | None:
    return ctx.existing([logical_path])


def under_search_roots(logical_path: str, ctx: ResolutionContext) -> Path | None:
    return ctx.existing(f"{root}/{logical_path}" for root in ctx.search_roots)


def stripped_segment(logical_path: str, ctx: ResolutionContext) -> Path | None:
    # "x/contracts/a/B.sol" -> "a/B.sol" retried under the conventional roots
    for segment, roots in ctx.segment_roots:
        marker = f"/{segment}/"
        idx = logical_path.find(marker)
        if idx == -1:
            continue
        rest = logical_path[idx + len(marker) :]
        found = ctx.existing(f"{root}/{rest}" for root in roots)
        if found is not None:
            return found
    return None


DEFAULT_STRATEGIES: tuple[Strategy, ...] = (
    package_alias,
    remapped,
    literal,
    under_search_roots,
    stripped_segment,
)


class PathResolver:
    """Resolve manifest source keys to files on disk; None means not found."""

    def __init__(self, context: ResolutionContext, strategies: tuple[Strategy, ...] = DEFAULT_STRATEGIES) -> None:
        self.context = context
        self.strategies = strategies

    def resolve(self, logical_path: str) -> Path | None:
        for strategy in self.strategies:
            found = strategy(logical_path, self.context)
            if found is not None:
                logger.debug(f"Resolved {logical_path} -> {found} ({strategy.__name__})")
                return found
        logger.debug(f"Unresolved source path: {logical_path}")
        return None
