"""In-process run counters.

Plain counters are keyed by name. Labelled counters are keyed by name plus a
sorted label tuple, so {"market": m, "side": s} and {"side": s, "market": m}
land in the same series. Everything is exported by observability.prometheus.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple


LabelKey = Tuple[Tuple[str, str], ...]

_counters: Dict[str, int] = {}
_labelled: Dict[Tuple[str, LabelKey], int] = {}


def _label_key(labels: Mapping[str, str]) -> LabelKey:
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def inc(name: str, value: int = 1) -> None:
    _counters[name] = _counters.get(name, 0) + value


def inc_labelled(name: str, labels: Mapping[str, str], value: int = 1) -> None:
    key = (name, _label_key(labels))
    _labelled[key] = _labelled.get(key, 0) + value


def count(name: str, labels: Optional[Mapping[str, str]] = None, value: int = 1) -> None:
    """Bump the run-wide total and, when labels are given, the per-label series too."""
    inc(name, value)
    if labels:
        inc_labelled(name, labels, value)


def record_order(status: str, market: str, side: str) -> None:
    """Count one order leg outcome as orders_<status>, overall and per market/side."""
    count(f"orders_{status}", {"market": market, "side": side})


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def get_counter_labelled(name: str, labels: Mapping[str, str]) -> int:
    return _labelled.get((name, _label_key(labels)), 0)


def list_counters() -> List[Tuple[str, int]]:
    return sorted(_counters.items())


def list_counters_labelled() -> List[Tuple[str, LabelKey, int]]:
    return sorted((name, labels, val) for (name, labels), val in _labelled.items())


def snapshot() -> dict:
    return {
        "counters": dict(list_counters()),
        "labelled": [{"name": n, "labels": dict(lk), "value": v} for n, lk, v in list_counters_labelled()],
    }


@dataclass
class Timer:
    """Adds elapsed ms to <name>_ms_sum and bumps <name>_count on exit, even when the block raises."""

    name: str
    start: float = 0.0

    def __enter__(self) -> "Timer":
        self.start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        elapsed_ms = int((time.perf_counter() - self.start) * 1000)
        inc(f"{self.name}_ms_sum", elapsed_ms)
        inc(f"{self.name}_count")


def reset() -> None:
    _counters.clear()
    _labelled.clear()
