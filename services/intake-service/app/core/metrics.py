from __future__ import annotations

from collections import Counter
from threading import Lock
from typing import Mapping, Tuple

LabelSet = Tuple[Tuple[str, str], ...]


def _label_set(labels: Mapping[str, str] | None) -> LabelSet:
    if not labels:
        return ()
    return tuple(sorted((str(k), str(v)) for k, v in labels.items()))


def render_key(name: str, labels: LabelSet) -> str:
    if not labels:
        return name
    return name + "{" + ",".join(f"{k}={v}" for k, v in labels) + "}"


class MetricRegistry:
    """In-process labelled counters, reset on restart."""

    def __init__(self) -> None:
        self._counters: Counter[Tuple[str, LabelSet]] = Counter()
        self._lock = Lock()

    def inc(self, name: str, labels: Mapping[str, str] | None = None, value: int = 1) -> None:
        with self._lock:
            self._counters[(name, _label_set(labels))] += value

    def get(self, name: str, labels: Mapping[str, str] | None = None) -> int:
        with self._lock:
            return self._counters.get((name, _label_set(labels)), 0)

    def total(self, name: str) -> int:
        with self._lock:
            return sum(count for (metric, _), count in self._counters.items() if metric == name)

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {render_key(name, labels): count for (name, labels), count in sorted(self._counters.items())}

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()


metrics = MetricRegistry()
