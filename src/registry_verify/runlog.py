"""
Per-run record of a verification run, under ``<log-dir>/<run-id>/``:

- run_metadata.json: chain, verifier, transport and the six addresses
- events.jsonl: ``verify_started`` / ``verify_finished`` per target
- outcomes.jsonl: one row per verification outcome
"""

from __future__ import annotations

import json
import re
import secrets
import threading
import time
from dataclasses import dataclass
from pathlib import Path

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def default_run_id(*, prefix: str) -> str:
    """``<prefix>_<UTC timestamp>_<6 hex chars>``; unique across back-to-back runs."""
    return f"{prefix}_{time.strftime('%Y%m%dT%H%M%SZ', time.gmtime())}_{secrets.token_hex(3)}"


@dataclass(frozen=True)
class RunLogPaths:
    root: Path
    run_metadata: Path
    events: Path
    outcomes: Path

    @classmethod
    def under(cls, root: Path) -> RunLogPaths:
        return cls(
            root=root,
            run_metadata=root / "run_metadata.json",
            events=root / "events.jsonl",
            outcomes=root / "outcomes.jsonl",
        )


class RunLog:
    """Appends are serialized, so the verification worker threads share one instance."""

    def __init__(self, *, base_dir: Path, run_id: str) -> None:
        root = base_dir / _UNSAFE_CHARS.sub("_", run_id)[:120]
        root.mkdir(parents=True, exist_ok=True)
        self.paths = RunLogPaths.under(root)
        self._lock = threading.Lock()

    def write_run_metadata(self, obj: dict) -> None:
        self.paths.run_metadata.write_text(json.dumps(obj, indent=2, sort_keys=True) + "\n", encoding="utf-8")

    def _append(self, path: Path, row: dict) -> None:
        line = json.dumps(row, sort_keys=True) + "\n"
        with self._lock, path.open("a", encoding="utf-8") as f:
            f.write(line)

    def event(self, name: str, **fields: object) -> None:
        """Append ``{"t": <unix seconds>, "event": name, **fields}`` to events.jsonl."""
        self._append(self.paths.events, {"t": int(time.time()), "event": name, **fields})

    def outcome_row(self, row: dict) -> None:
        self._append(self.paths.outcomes, row)
