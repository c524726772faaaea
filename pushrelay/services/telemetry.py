"""Process-local telemetry for the ops endpoint.

Samples live in bounded deques and counters in a plain dict. Nothing is
shared between processes: the API reports its own requests and the worker
its own dispatch totals.
"""

from __future__ import annotations

from collections import Counter, defaultdict, deque
from dataclasses import dataclass
import math
import time
from typing import Deque, Iterable


@dataclass(frozen=True)
class _Sample:
    ts: float
    name: str
    latency_ms: float
    failed: bool


_requests: Deque[_Sample] = deque(maxlen=20000)
_provider_calls: Deque[_Sample] = deque(maxlen=10000)
_counters: Counter[str] = Counter()


def _p95(latencies: list[float]) -> float:
    ordered = sorted(latencies)
    return ordered[max(0, math.ceil(0.95 * len(ordered)) - 1)]


def _recent(samples: Iterable[_Sample], window_s: int) -> list[_Sample]:
    cutoff = time.time() - window_s
    return [sample for sample in samples if sample.ts >= cutoff]


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    _requests.append(_Sample(time.time(), path, latency_ms, status_code >= 500))


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    _provider_calls.append(_Sample(time.time(), integration, latency_ms, not success))


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def external_latency_by_integration(window_s: int) -> dict[str, dict[str, float | int | None]]:
    grouped: dict[str, list[_Sample]] = defaultdict(list)
    for sample in _recent(_provider_calls, window_s):
        grouped[sample.name].append(sample)
    return {
        name: {
            "calls": len(samples),
            "failures": sum(1 for sample in samples if sample.failed),
            "p95": _p95([sample.latency_ms for sample in samples]),
            "max": max(sample.latency_ms for sample in samples),
        }
        for name, samples in grouped.items()
    }


def request_summary(window_s: int) -> dict[str, float | int | None]:
    samples = _recent(_requests, window_s)
    return {
        "requests": len(samples),
        "server_errors": sum(1 for sample in samples if sample.failed),
        "p95_ms": _p95([sample.latency_ms for sample in samples]) if samples else None,
    }


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset_telemetry() -> None:
    _requests.clear()
    _provider_calls.clear()
    _counters.clear()
