"""Recording tracer and meter handed to the client under test.

One tracer and one meter are constructed per run and passed to ``connect``.
Tests read them back to assert on the spans and metrics the client emitted.
Both are safe to use from many threads at once.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any


@dataclass
class RecordingSpan:
    """A span captured by :class:`RecordingTracer`."""

    name: str
    parent: RecordingSpan | None = None
    attributes: dict[str, Any] = field(default_factory=dict)
    events: list[str] = field(default_factory=list)
    start_time: float = field(default_factory=time.monotonic)
    end_time: float | None = None

    @property
    def finished(self) -> bool:
        return self.end_time is not None

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value

    def add_event(self, name: str) -> None:
        self.events.append(name)

    def end(self) -> None:
        self.end_time = time.monotonic()

    def context(self) -> RecordingSpan:
        return self


class RecordingTracer:
    """Request tracer that keeps every span it creates."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._spans: list[RecordingSpan] = []

    def request_span(
        self, name: str, parent: RecordingSpan | None = None
    ) -> RecordingSpan:
        span = RecordingSpan(name=name, parent=parent)
        with self._lock:
            self._spans.append(span)
        return span

    @property
    def spans(self) -> list[RecordingSpan]:
        with self._lock:
            return list(self._spans)

    def spans_named(self, name: str) -> list[RecordingSpan]:
        return [s for s in self.spans if s.name == name]

    def reset(self) -> None:
        with self._lock:
            self._spans.clear()


def _tag_key(name: str, tags: dict[str, str] | None) -> tuple[str, tuple[tuple[str, str], ...]]:
    return (name, tuple(sorted((tags or {}).items())))


class RecordingCounter:
    def __init__(self, lock: threading.Lock) -> None:
        self._lock = lock
        self.value = 0

    def increment_by(self, amount: int) -> None:
        with self._lock:
            self.value += amount


class RecordingValueRecorder:
    def __init__(self, lock: threading.Lock) -> None:
        self._lock = lock
        self.values: list[float] = []

    def record_value(self, value: float) -> None:
        with self._lock:
            self.values.append(value)


class RecordingMeter:
    """Meter that keeps one counter / value recorder per (name, tags)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: dict[tuple, RecordingCounter] = {}
        self._recorders: dict[tuple, RecordingValueRecorder] = {}

    def counter(self, name: str, tags: dict[str, str] | None = None) -> RecordingCounter:
        key = _tag_key(name, tags)
        with self._lock:
            if key not in self._counters:
                self._counters[key] = RecordingCounter(self._lock)
            return self._counters[key]

    def value_recorder(
        self, name: str, tags: dict[str, str] | None = None
    ) -> RecordingValueRecorder:
        key = _tag_key(name, tags)
        with self._lock:
            if key not in self._recorders:
                self._recorders[key] = RecordingValueRecorder(self._lock)
            return self._recorders[key]

    def counter_value(self, name: str, tags: dict[str, str] | None = None) -> int:
        """Current value of a counter, 0 if it was never created."""
        key = _tag_key(name, tags)
        with self._lock:
            counter = self._counters.get(key)
            return counter.value if counter is not None else 0

    def recorded_values(self, name: str, tags: dict[str, str] | None = None) -> list[float]:
        key = _tag_key(name, tags)
        with self._lock:
            recorder = self._recorders.get(key)
            return list(recorder.values) if recorder is not None else []

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._recorders.clear()
