"""Evaluation and derivative throughput for compiled ndcalc programs."""

from __future__ import annotations

import argparse
import json
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

import numpy as np

from ndcalc import ADMode, Context, Program
from _bench_utils import (
    block_until_ready,
    calibrate_repeats,
    configure_cpu_affinity_from_env,
    host_metadata,
    mean as _mean,
    percentile as _percentile,
    sample_adaptive_ms,
    stddev as _stddev,
)


DEFAULT_POINTS = 10_000
PROFILE_PRESETS: dict[str, dict[str, float | int]] = {
    "quick": {"samples": 3, "warmup": 1, "target_sample_ms": 12.0, "min_repeats": 4, "cv_target_pct": 25.0, "max_samples": 7},
    "full": {"samples": 7, "warmup": 3, "target_sample_ms": 30.0, "min_repeats": 8, "cv_target_pct": 18.0, "max_samples": 11},
}
EXPRESSIONS: dict[str, tuple[str, tuple[str, ...]]] = {
    "poly3": ("x^2*y + 3*x*y^2 - 2*y + z^3", ("x", "y", "z")),
    "trig_exp": ("sin(x) * exp(y) + z^2", ("x", "y", "z")),
    "rational": ("(x*y + 1) / (1 + x^2 + y^2) - log(1 + z^2)", ("x", "y", "z")),
}


@dataclass(frozen=True)
class BenchCase:
    name: str
    expression: str
    operation: str
    note: str


@dataclass(frozen=True)
class TimingStats:
    mean_ms: float
    stdev_ms: float
    cv_pct: float
    p50_ms: float
    p95_ms: float
    min_ms: float


@dataclass(frozen=True)
class BenchRow:
    name: str
    note: str
    compile_ms: float
    repeats: int
    samples: int
    timing: TimingStats


def _summarize_ms(ms: list[float]) -> TimingStats:
    avg = _mean(ms)
    sd = _stddev(ms)
    return TimingStats(
        mean_ms=avg,
        stdev_ms=sd,
        cv_pct=(sd / avg) * 100.0 if avg > 0 else 0.0,
        p50_ms=_percentile(ms, 0.50),
        p95_ms=_percentile(ms, 0.95),
        min_ms=min(ms),
    )


def _build_cases(include_jax: bool) -> list[BenchCase]:
    cases: list[BenchCase] = []
    for key in EXPRESSIONS:
        cases.extend(
            [
                BenchCase(f"{key}/eval", key, "eval", "single point, VM"),
                BenchCase(f"{key}/batch", key, "batch", "column batch, VM"),
                BenchCase(f"{key}/grad_fwd", key, "grad_fwd", "forward-mode gradient"),
                BenchCase(f"{key}/grad_fd", key, "grad_fd", "central-difference gradient"),
                BenchCase(f"{key}/hess_fwd", key, "hess_fwd", "second-order forward sweep"),
                BenchCase(f"{key}/hess_fd", key, "hess_fd", "finite-difference Hessian"),
            ]
        )
        if include_jax:
            cases.append(BenchCase(f"{key}/jax_vmap", key, "jax_vmap", "lowered kernel, jit+vmap"))
    return cases


def _callable_for(case: BenchCase, program: Program, columns: np.ndarray, point: list[float]):
    if case.operation == "eval":
        return program.evaluate, (point,)
    if case.operation == "batch":
        out = np.empty(columns.shape[1])
        return program.evaluate_batch, (columns, out)
    if case.operation in ("grad_fwd", "hess_fwd"):
        program.set_ad_mode(ADMode.FORWARD)
    else:
        program.set_ad_mode(ADMode.FINITE_DIFF)
    if case.operation.startswith("grad"):
        return program.gradient, (point,)
    if case.operation.startswith("hess"):
        return program.hessian, (point,)
    kernel = program.lower()
    return kernel.vmap(), tuple(columns)


def run_benchmarks(
    num_points: int,
    *,
    include_jax: bool,
    warmup: int,
    samples: int,
    target_sample_ms: float,
    min_repeats: int,
    cv_target_pct: float,
    max_samples: int,
) -> list[BenchRow]:
    rng = np.random.default_rng(0)
    ctx = Context()
    out: list[BenchRow] = []
    for case in _build_cases(include_jax):
        expression, names = EXPRESSIONS[case.expression]
        columns = rng.uniform(0.25, 2.0, size=(len(names), num_points))
        point = columns[:, 0].tolist()

        t0 = time.perf_counter()
        program = ctx.compile(expression, names).unwrap()
        fn, args = _callable_for(case, program, columns, point)
        block_until_ready(fn(*args))
        compile_ms = (time.perf_counter() - t0) * 1e3

        repeats = calibrate_repeats(
            fn,
            args,
            baseline_repeats=1,
            target_sample_ms=target_sample_ms,
            min_repeats=min_repeats,
        )
        rows = sample_adaptive_ms(
            fn,
            args,
            repeats=repeats,
            warmup=warmup,
            samples=samples,
            cv_target_pct=cv_target_pct,
            max_samples=max_samples,
        )
        row = BenchRow(
            name=case.name,
            note=case.note,
            compile_ms=compile_ms,
            repeats=repeats,
            samples=len(rows),
            timing=_summarize_ms(rows),
        )
        out.append(row)
        print(
            f"{row.name:22} setup {row.compile_ms:8.3f} ms  "
            f"steady {row.timing.mean_ms:9.4f} ms (p95 {row.timing.p95_ms:9.4f}, cv {row.timing.cv_pct:5.2f}%)  {row.note}"
        )
    print()
    return out


def main() -> None:
    parser = argparse.ArgumentParser(description="Benchmark ndcalc evaluation, batch and derivative paths")
    parser.add_argument("--profile", choices=sorted(PROFILE_PRESETS), default="quick", help="fixed benchmark profile")
    parser.add_argument("--points", type=int, default=DEFAULT_POINTS, help="points per batch case")
    parser.add_argument("--samples", type=int, default=None, help="override timing sample count")
    parser.add_argument("--warmup", type=int, default=None, help="override warmup rounds")
    parser.add_argument("--no-jax", action="store_true", help="skip the lowered JAX kernel cases")
    parser.add_argument("--json-out", default="", help="optional path to write machine-readable results")
    args = parser.parse_args()
    affinity_info = configure_cpu_affinity_from_env()

    profile = PROFILE_PRESETS[args.profile]
    samples = int(profile["samples"] if args.samples is None else args.samples)
    warmup = int(profile["warmup"] if args.warmup is None else args.warmup)
    max_samples = max(int(profile["max_samples"]), samples)

    print("ndcalc evaluation benchmarks")
    print(f"config: profile={args.profile}, points={args.points}, samples={samples}, warmup={warmup}")
    print(f"host: affinity={affinity_info.get('active')}")
    print()

    rows = run_benchmarks(
        args.points,
        include_jax=not args.no_jax,
        warmup=warmup,
        samples=samples,
        target_sample_ms=float(profile["target_sample_ms"]),
        min_repeats=int(profile["min_repeats"]),
        cv_target_pct=float(profile["cv_target_pct"]),
        max_samples=max_samples,
    )

    if args.json_out:
        payload = {
            "timestamp_utc": datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ"),
            "config": {"profile": args.profile, "points": args.points, "samples": samples, "warmup": warmup},
            "host": host_metadata(),
            "rows": [asdict(row) for row in rows],
        }
        path = Path(args.json_out)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
        print(f"wrote {path}")


if __name__ == "__main__":
    main()
