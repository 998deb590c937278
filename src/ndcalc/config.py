"""Environment-driven defaults for new contexts."""

from __future__ import annotations

import math
import os
from typing import Final

DEFAULT_MAX_DEPTH: Final[int] = 100
DEFAULT_FD_EPSILON: Final[float] = 1e-5
DEFAULT_AD_MODE: Final[str] = "auto"

_AD_MODE_NAMES: Final[frozenset[str]] = frozenset({"auto", "forward", "finite_diff"})


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    if not math.isfinite(value) or value <= 0.0:
        return default
    return value


def max_depth() -> int:
    return _env_int("NDCALC_MAX_DEPTH", DEFAULT_MAX_DEPTH)


def fd_epsilon() -> float:
    return _env_float("NDCALC_FD_EPSILON", DEFAULT_FD_EPSILON)


def ad_mode_name() -> str:
    raw = os.environ.get("NDCALC_AD_MODE", "").strip().casefold().replace("-", "_")
    return raw if raw in _AD_MODE_NAMES else DEFAULT_AD_MODE
