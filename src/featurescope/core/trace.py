"""
Per-call query tracing.

The resolver records one span per sub-query (source id, kind, radius, batches, status,
elapsed time) into a `QueryTrace`. The trace is passed explicitly into the resolver,
because worker threads do not inherit context variables; `capture_trace()` provides the
contextvar style for API/CLI callers that just want to collect spans around a call.
"""

from __future__ import annotations

import contextvars
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator


@dataclass
class QueryTrace:
    spans: list[dict[str, Any]] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def record(self, name: str, payload: dict[str, Any]) -> None:
        if not name:
            return
        with self._lock:
            self.spans.append({"name": name, **payload})

    @contextmanager
    def span(self, name: str, **attrs: Any) -> Iterator[dict[str, Any]]:
        """Time a block; the yielded dict can be updated with results (batches, status, ...)."""
        payload: dict[str, Any] = dict(attrs)
        start = time.monotonic()
        try:
            yield payload
        except BaseException as exc:
            payload.setdefault("status", "error")
            payload.setdefault("error", type(exc).__name__)
            raise
        finally:
            payload.setdefault("status", "ok")
            payload["elapsed_ms"] = int((time.monotonic() - start) * 1000)
            self.record(name, payload)

    def as_list(self) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(s) for s in self.spans]


_trace_var: contextvars.ContextVar[QueryTrace | None] = contextvars.ContextVar(
    "featurescope_query_trace", default=None
)


def current_trace() -> QueryTrace | None:
    return _trace_var.get()


@contextmanager
def capture_trace() -> Iterator[QueryTrace]:
    trace = QueryTrace()
    token = _trace_var.set(trace)
    try:
        yield trace
    finally:
        _trace_var.reset(token)
