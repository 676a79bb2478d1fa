"""Step timing spans for orchestrator work."""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Iterator

from .logger import log_event


@contextmanager
def span(session_id: str | None, name: str, **fields: Any) -> Iterator[None]:
    """Log how long the wrapped step took and whether it raised."""

    start = time.perf_counter()
    failed: str | None = None
    try:
        yield
    except BaseException as exc:
        failed = type(exc).__name__
        raise
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        if failed:
            log_event("span", session_id, level=logging.WARNING, span=name, ms=elapsed_ms, error=failed, **fields)
        else:
            log_event("span", session_id, span=name, ms=elapsed_ms, **fields)


__all__ = ["span"]
