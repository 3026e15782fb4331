"""
In-process telemetry for the ingestion pipeline.

Events are emitted as structured log lines and counters/latencies are kept in
memory, which is enough for tests to assert instrumentation and for the
health endpoint to report pipeline activity.
"""

from __future__ import annotations

import contextlib
import hashlib
import logging
import time
from collections.abc import Iterator
from typing import Any

logger = logging.getLogger("subzero.telemetry")

_COUNTERS: dict[str, int] = {}
_LATENCIES: dict[str, list[float]] = {}


def redact_id(value: str) -> str:
    """Stable short hash for ids and addresses that must not appear in logs."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:12]


def log_event(event_name: str, **fields: Any) -> None:
    """
    Structured log event. Caller must ensure PII is anonymized/redacted.

    Side Effects:
        - Writes to logger (info level)
    """
    logger.info("event=%s %s", event_name, fields)


def counter(name: str, increment: int = 1) -> int:
    """
    Increment an in-memory counter and emit a debug log.

    Side Effects:
        - Modifies _COUNTERS dict (in-memory state)
    """
    value = _COUNTERS.get(name, 0) + increment
    _COUNTERS[name] = value
    logger.debug("counter=%s value=%s", name, value)
    return value


def get_counter(name: str) -> int:
    return _COUNTERS.get(name, 0)


def get_counters() -> dict[str, int]:
    return dict(_COUNTERS)


@contextlib.contextmanager
def time_block(metric_name: str) -> Iterator[None]:
    """
    Time a code block and record the sample under ``<metric_name>_ms``.

    Side Effects:
        - Appends to _LATENCIES dict (in-memory state)
    """
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = (time.perf_counter() - start) * 1000
        name = metric_name if metric_name.endswith("_ms") else f"{metric_name}_ms"
        logger.debug("timing=%s ms=%.3f", name, elapsed_ms)
        _LATENCIES.setdefault(name, []).append(elapsed_ms)


def get_latency_stats(metric_name: str) -> dict[str, float]:
    """
    Get latency statistics (count, min, max, avg, p50, p95) for a metric.
    """
    name = metric_name if metric_name.endswith("_ms") else f"{metric_name}_ms"
    samples = sorted(_LATENCIES.get(name, []))
    if not samples:
        return {"count": 0, "min": 0.0, "max": 0.0, "avg": 0.0, "p50": 0.0, "p95": 0.0}

    count = len(samples)
    return {
        "count": count,
        "min": samples[0],
        "max": samples[-1],
        "avg": sum(samples) / count,
        "p50": samples[int(count * 0.50)],
        "p95": samples[min(int(count * 0.95), count - 1)],
    }


def reset() -> None:
    """
    Clear counters and latencies (used by tests).

    Side Effects:
        - Clears in-memory telemetry state
    """
    _COUNTERS.clear()
    _LATENCIES.clear()
