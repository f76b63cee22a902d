"""Import remapping rules (``from=to``) ordered most-specific first."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


def trim_trailing_separators(s: str) -> str:
    while s.endswith("/"):
        s = s[:-1]
    return s


@dataclass(frozen=True)
class RemappingRule:
    from_prefix: str
    to_prefix: str

    def apply(self, logical_path: str) -> str | None:
        """Return the substituted path when this rule covers ``logical_path``."""
        if logical_path == self.from_prefix:
            return self.to_prefix
        lead = self.from_prefix + "/"
        if logical_path.startswith(lead):
            return f"{self.to_prefix}/{logical_path[len(lead):]}"
        return None


def parse_remapping_line(line: str) -> RemappingRule | None:
    """Parse one ``from=to`` line; anything else yields None."""
    line = line.strip()
    parts = line.split("=")
    if len(parts) != 2:
        return None
    raw_from, raw_to = parts
    if not raw_from:
        return None
    return RemappingRule(
        from_prefix=trim_trailing_separators(raw_from.strip()),
        to_prefix=trim_trailing_separators(raw_to.strip()),
    )


class RemappingTable:
    """
    Ordered remapping rules, longest ``from_prefix`` first.

    Constructed once per run and handed to the path resolver. Ordering uses
    the prefix length after trailing separators are trimmed, ties broken
    lexicographically so the order never depends on input order.
    """

    def __init__(self, rules: Iterable[RemappingRule] = ()) -> None:
        self._rules: tuple[RemappingRule, ...] = tuple(
            sorted(rules, key=lambda r: (-len(r.from_prefix), r.from_prefix, r.to_prefix))
        )

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> RemappingTable:
        rules: list[RemappingRule] = []
        for line in lines:
            rule = parse_remapping_line(line)
            if rule is None:
                if line.strip():
                    logger.debug(f"Ignoring remapping line: {line!r}")
                continue
            rules.append(rule)
        return cls(rules)

    @classmethod
    def empty(cls) -> RemappingTable:
        return cls()

    @property
    def rules(self) -> tuple[RemappingRule, ...]:
        return self._rules

    def candidates(self, logical_path: str) -> list[str]:
        """Substituted paths for every matching rule, most specific first."""
        out: list[str] = []
        for rule in self._rules:
            sub = rule.apply(logical_path)
            if sub is not None:
                out.append(sub)
        return out

    def __len__(self) -> int:
        return len(self._rules)

    def __iter__(self):
        return iter(self._rules)
