from __future__ import annotations

import math
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


@dataclass(frozen=True)
class GenerationSample:
    ts: float
    capability: str
    duration_ms: float
    success: bool


_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_generation_samples: Deque[GenerationSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    # Capture provider call latency and outcomes.
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def record_generation(*, capability: str, duration_ms: float, success: bool) -> None:
    # Track end-to-end orchestrator calls, including gate and safety failures.
    _generation_samples.append(
        GenerationSample(
            ts=time.time(),
            capability=capability,
            duration_ms=duration_ms,
            success=success,
        )
    )
    outcome = "success" if success else "failure"
    increment_counter(f"ai_email_generation_total.{capability}.{outcome}")


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def external_latency_by_integration(window_s: int) -> dict[str, dict[str, float | None]]:
    # Aggregate external call latency for integrations in the window.
    cutoff = time.time() - window_s
    by_integration: dict[str, list[float]] = defaultdict(list)
    for sample in _external_samples:
        if sample.ts < cutoff:
            continue
        by_integration[sample.integration].append(sample.latency_ms)
    result: dict[str, dict[str, float | None]] = {}
    for integration, latencies in by_integration.items():
        latencies.sort()
        p95_idx = max(0, math.ceil(0.95 * len(latencies)) - 1)
        result[integration] = {
            "p95": latencies[p95_idx],
            "max": latencies[-1],
        }
    return result


def generation_success_rate(window_s: int, *, capability: str | None = None) -> float | None:
    # In-process success ratio (%) for a quick health read without a DB round-trip.
    cutoff = time.time() - window_s
    samples = [
        sample
        for sample in _generation_samples
        if sample.ts >= cutoff and (capability is None or sample.capability == capability)
    ]
    if not samples:
        return None
    successes = sum(1 for sample in samples if sample.success)
    return (successes / len(samples)) * 100.0


def counters_snapshot() -> dict[str, int]:
    return dict(_counters)


def reset_telemetry() -> None:
    # Clear in-process samples for deterministic tests.
    _external_samples.clear()
    _generation_samples.clear()
    _counters.clear()
