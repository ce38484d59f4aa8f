"""Minimal in-process metrics shim for counters and histograms.

Histogram buckets are flattened into counters by `get_counters()` so callers
only ever deal with a flat name -> int mapping.
"""

from __future__ import annotations

from collections import defaultdict

_counters: dict[str, int] = defaultdict(int)
_histograms: dict[str, dict[str, int]] = {}
_hist_sums: dict[str, int] = defaultdict(int)
_hist_counts: dict[str, int] = defaultdict(int)


def inc_counter(name: str, value: int = 1) -> None:
    _counters[name] += int(value)


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def reset_counters() -> None:
    _counters.clear()
    _histograms.clear()
    _hist_sums.clear()
    _hist_counts.clear()


def get_counters() -> dict[str, int]:
    """Return a shallow copy of all counters for diagnostics."""
    out = dict(_counters)
    for name, buckets in _histograms.items():
        for b_lbl, cnt in buckets.items():
            out[f"histo.{name}.{b_lbl}"] = cnt
        out[f"histo.{name}.sum"] = _hist_sums.get(name, 0)
        out[f"histo.{name}.count"] = _hist_counts.get(name, 0)
    return out


def observe_histogram(name: str, value: int, *, buckets: list[int] | None = None) -> None:
    """Record a value in a histogram with <=-style buckets.

    - buckets: upper bounds; defaults suit roll totals (a d20 plus bonuses).
    - Values above the last bound land in an overflow bucket 'gt_{last}'.
    """
    if buckets is None:
        buckets = [0, 1, 5, 10, 15, 20, 25, 30, 40]
    h = _histograms.setdefault(name, {})
    placed = False
    for ub in buckets:
        if value <= ub:
            key = f"le_{ub}"
            h[key] = h.get(key, 0) + 1
            placed = True
            break
    if not placed:
        key = f"gt_{buckets[-1]}"
        h[key] = h.get(key, 0) + 1
    _hist_sums[name] += int(value)
    _hist_counts[name] += 1


def record_critical(critical: str) -> None:
    """Count a critical outcome ("success" or "failure"); "none" is ignored."""
    if critical in ("success", "failure"):
        inc_counter(f"rolls.critical.{critical}")
