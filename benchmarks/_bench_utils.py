"""Shared benchmark runtime helpers."""

from __future__ import annotations

import math
import os
import platform
import time
from typing import Any

import jax
import numpy as np

THREAD_ENV_VARS = (
    "OMP_NUM_THREADS",
    "OPENBLAS_NUM_THREADS",
    "MKL_NUM_THREADS",
    "JAX_NUM_THREADS",
    "XLA_FLAGS",
)


def configure_cpu_affinity_from_env() -> dict[str, Any]:
    """Pin the process to the CPUs listed in NDCALC_BENCH_CPU_AFFINITY ("0-3,6")."""
    requested = os.environ.get("NDCALC_BENCH_CPU_AFFINITY", "").strip()
    info: dict[str, Any] = {"requested": requested or None, "applied": False, "active": None}
    if not requested or not hasattr(os, "sched_setaffinity"):
        return info

    cpus: set[int] = set()
    for part in requested.split(","):
        token = part.strip()
        if not token:
            continue
        lo, _, hi = token.partition("-")
        first, last = int(lo), int(hi or lo)
        cpus.update(range(min(first, last), max(first, last) + 1))
    if not cpus:
        return info
    try:
        os.sched_setaffinity(0, cpus)
    except OSError:
        return info
    info["applied"] = True
    info["active"] = sorted(os.sched_getaffinity(0))
    return info


def host_metadata() -> dict[str, Any]:
    return {
        "platform": platform.platform(),
        "python": platform.python_version(),
        "numpy": np.__version__,
        "jax": getattr(jax, "__version__", "unknown"),
        "backend": jax.default_backend(),
        "cpu_count": os.cpu_count(),
        "thread_env": {name: os.environ[name] for name in THREAD_ENV_VARS if name in os.environ},
    }


def block_until_ready(value: object) -> None:
    """Wait on JAX arrays; plain results (floats, Result envelopes) are already final."""
    if hasattr(value, "block_until_ready"):
        value.block_until_ready()


def percentile(values: list[float], q: float) -> float:
    ordered = sorted(values)
    if len(ordered) == 1:
        return ordered[0]
    pos = (len(ordered) - 1) * q
    lo = int(math.floor(pos))
    hi = int(math.ceil(pos))
    alpha = pos - lo
    return ordered[lo] * (1.0 - alpha) + ordered[hi] * alpha


def mean(values: list[float]) -> float:
    return sum(values) / len(values)


def stddev(values: list[float]) -> float:
    if len(values) < 2:
        return 0.0
    m = mean(values)
    return math.sqrt(sum((v - m) ** 2 for v in values) / (len(values) - 1))


def calibrate_repeats(
    fn,
    args: tuple[object, ...],
    *,
    baseline_repeats: int,
    target_sample_ms: float,
    min_repeats: int,
    max_repeats: int = 200_000,
) -> int:
    """Pick a repeat count so one sample takes roughly `target_sample_ms`."""
    trial = max(4, min_repeats // 4)
    start_ns = time.perf_counter_ns()
    for _ in range(trial):
        block_until_ready(fn(*args))
    per_call_ns = max((time.perf_counter_ns() - start_ns) / trial, 1_000.0)
    dynamic = int(math.ceil(max(target_sample_ms, 1.0) * 1e6 / per_call_ns))
    return int(max(baseline_repeats, min_repeats, min(dynamic, max_repeats)))


def sample_adaptive_ms(
    fn,
    args: tuple[object, ...],
    *,
    repeats: int,
    warmup: int,
    samples: int,
    cv_target_pct: float,
    max_samples: int,
) -> list[float]:
    """Per-call milliseconds; keeps sampling until the CV drops under target."""
    for _ in range(max(0, warmup)):
        block_until_ready(fn(*args))

    rows: list[float] = []

    def _once() -> None:
        start_ns = time.perf_counter_ns()
        for _ in range(repeats):
            block_until_ready(fn(*args))
        rows.append((time.perf_counter_ns() - start_ns) / repeats / 1e6)

    for _ in range(samples):
        _once()
    while len(rows) < max_samples:
        m = mean(rows)
        if m <= 0 or (stddev(rows) / m) * 100.0 <= cv_target_pct:
            break
        _once()
    return rows
