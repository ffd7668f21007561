from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class RequestSample:
    ts: float
    path: str
    status_code: int
    latency_ms: float


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


_request_samples: Deque[RequestSample] = deque(maxlen=20000)
_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    # Track inbound request latency and status for the health snapshot.
    _request_samples.append(
        RequestSample(ts=time.time(), path=path, status_code=status_code, latency_ms=latency_ms)
    )


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture upstream call latency and outcomes per integration.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def _p95(latencies: list[float]) -> float | None:
    if not latencies:
        return None
    ordered = sorted(latencies)
    idx = max(0, math.ceil(0.95 * len(ordered)) - 1)
    return ordered[idx]


def request_stats(window_s: int) -> dict[str, float | int | None]:
    cutoff = time.time() - window_s
    recent = [sample for sample in _request_samples if sample.ts >= cutoff]
    return {
        "requests": len(recent),
        "server_errors": sum(1 for sample in recent if sample.status_code >= 500),
        "p95_ms": _p95([sample.latency_ms for sample in recent]),
    }


def external_latency_by_integration(window_s: int) -> dict[str, dict[str, float | int | None]]:
    # Aggregate upstream latency and failure counts over the window.
    cutoff = time.time() - window_s
    latencies: dict[str, list[float]] = defaultdict(list)
    failures: dict[str, int] = defaultdict(int)
    for sample in _external_samples:
        if sample.ts < cutoff:
            continue
        latencies[sample.integration].append(sample.latency_ms)
        if not sample.success:
            failures[sample.integration] += 1
    return {
        integration: {
            "calls": len(values),
            "failures": failures.get(integration, 0),
            "p95_ms": _p95(values),
        }
        for integration, values in latencies.items()
    }


def reset() -> None:
    # Tests share the module-level buffers, so they need a way to start clean.
    _request_samples.clear()
    _external_samples.clear()
    _counters.clear()
