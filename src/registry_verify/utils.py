"""Retries, tolerant JSON parsing and atomic output for the toolchain, locator and bundle writer."""

from __future__ import annotations

import json
import logging
import os
import random
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_with_backoff(
    fn: Callable[[], T],
    *,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
) -> T:
    """
    Call ``fn`` until it succeeds or ``max_attempts`` is used up.

    Between retryable failures it sleeps ``base_delay * 2**n`` plus up to one
    second of jitter, capped at ``max_delay``. The last failure propagates;
    exceptions outside ``retryable_exceptions`` propagate immediately.
    """
    attempt = 1
    while True:
        try:
            return fn()
        except retryable_exceptions as e:
            if attempt >= max_attempts:
                raise
            delay = min(max_delay, base_delay * 2 ** (attempt - 1) + random.uniform(0, 1))
            logger.warning(f"Attempt {attempt}/{max_attempts} failed ({type(e).__name__}: {e}); retrying in {delay:.1f}s")
            time.sleep(delay)
            attempt += 1


def _embedded_json(text: str) -> tuple[bool, Any]:
    # forge prints compiler progress around the document it was asked for
    for opener, closer in ("{}", "[]"):
        start, end = text.find(opener), text.rfind(closer)
        if start == -1 or end <= start:
            continue
        try:
            return True, json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            continue
    return False, None


def safe_json_loads(text: str, *, context: str = "") -> Any:
    """
    Parse ``text`` as JSON, falling back to the outermost object or array
    embedded in it.

    Raises:
        ValueError: naming ``context`` and the text around the parse error.
    """
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        found, value = _embedded_json(text)
        if found:
            return value
        where = f" in {context}" if context else ""
        near = text[max(0, e.pos - 40) : e.pos + 40]
        raise ValueError(f"JSON parse error{where}: {e.msg} at position {e.pos}, near {near!r}") from e


def safe_read_json(path: Path, context: str = "", raise_on_error: bool = False) -> Any | None:
    """
    JSON document stored at ``path``.

    Returns None when the file is absent, unreadable or not JSON, unless
    ``raise_on_error`` is set, in which case the underlying error propagates
    (``FileNotFoundError``, ``OSError`` or ``ValueError``).
    """
    try:
        return safe_json_loads(path.read_text(encoding="utf-8"), context=context or str(path))
    except FileNotFoundError:
        logger.debug(f"No such file: {path}")
        if raise_on_error:
            raise
        return None
    except (OSError, ValueError) as e:
        logger.error(f"Could not load {path}: {e}")
        if raise_on_error:
            raise
        return None


def atomic_write_text(path: Path, content: str) -> None:
    """Write ``content`` to a sibling temp file and rename it over ``path``; never appends."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    try:
        tmp.write_text(content, encoding="utf-8")
        os.replace(tmp, path)
    except OSError:
        tmp.unlink(missing_ok=True)
        raise


def dump_json(data: Any) -> str:
    """Bundle layout: 2-space indent, key order preserved, non-ASCII kept, trailing newline."""
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


def atomic_write_json(path: Path, data: Any) -> None:
    atomic_write_text(path, dump_json(data))
