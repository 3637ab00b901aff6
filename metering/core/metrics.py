"""
In-process counters for the metering engine, exported as Prometheus text.

Counters are keyed by their label values; an unknown label name is a
programming error and raises ValueError.
"""

from __future__ import annotations

import threading
from typing import Dict, List, Optional, Sequence, Tuple


LabelValues = Tuple[str, ...]


class Counter:
    def __init__(self, name: str, help_text: str, label_names: Sequence[str] = ()):
        self.name = name
        self.help_text = help_text
        self.label_names = tuple(label_names)
        self._values: Dict[LabelValues, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: Optional[Dict[str, str]]) -> LabelValues:
        labels = labels or {}
        unknown = set(labels) - set(self.label_names)
        if unknown:
            raise ValueError(f"{self.name} has no labels {sorted(unknown)}")
        return tuple(str(labels.get(name, "")) for name in self.label_names)

    def inc(self, labels: Optional[Dict[str, str]] = None, amount: float = 1.0) -> None:
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def value(self, labels: Optional[Dict[str, str]] = None) -> float:
        key = self._key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def samples(self) -> List[Tuple[LabelValues, float]]:
        with self._lock:
            return sorted(self._values.items())

    def reset(self) -> None:
        with self._lock:
            self._values.clear()


def _render_sample(counter: Counter, label_values: LabelValues, value: float) -> str:
    if not counter.label_names:
        return f"{counter.name} {value}"
    pairs = ",".join(
        '{}="{}"'.format(name, val.replace("\\", "\\\\").replace('"', '\\"'))
        for name, val in zip(counter.label_names, label_values)
    )
    return f"{counter.name}{{{pairs}}} {value}"


class MetricsRegistry:
    def __init__(self):
        self._counters: Dict[str, Counter] = {}

    def counter(self, name: str, help_text: str, label_names: Sequence[str] = ()) -> Counter:
        if name in self._counters:
            raise ValueError(f"Counter {name} is already registered")
        self._counters[name] = Counter(name, help_text, label_names)
        return self._counters[name]

    def export_prometheus(self) -> str:
        lines: List[str] = []
        for name in sorted(self._counters):
            counter = self._counters[name]
            lines.append(f"# HELP {name} {counter.help_text}")
            lines.append(f"# TYPE {name} counter")
            lines.extend(_render_sample(counter, labels, value) for labels, value in counter.samples())
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        for counter in self._counters.values():
            counter.reset()


METRICS = MetricsRegistry()

authorize_decisions_total = METRICS.counter(
    "metering_authorize_decisions_total",
    "Committed authorize decisions by outcome",
    ["outcome"],
)
credit_debits_total = METRICS.counter(
    "metering_credit_debits_total",
    "Debit attempts by result (debited, insufficient)",
    ["result"],
)
storage_errors_total = METRICS.counter(
    "metering_storage_errors_total",
    "Transactions rolled back on storage failure, by operation",
    ["operation"],
)
