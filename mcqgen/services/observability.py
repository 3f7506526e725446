from collections import deque
from contextlib import contextmanager
from datetime import datetime, timezone
from threading import Lock
from time import perf_counter
from typing import Any, Deque, Dict, Iterator


class InMemoryObservability:
    """Process-local counters, timers and recent generation-run traces."""

    def __init__(self, max_traces: int = 100):
        self._lock = Lock()
        self._counters: Dict[str, int] = {}
        self._timers: Dict[str, Dict[str, float]] = {}
        self._traces: Deque[Dict[str, Any]] = deque(maxlen=max_traces)

    def incr(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0) + int(value)

    def count(self, name: str) -> int:
        with self._lock:
            return self._counters.get(name, 0)

    def observe_ms(self, name: str, value_ms: float) -> None:
        val = float(value_ms)
        with self._lock:
            stat = self._timers.setdefault(name, {"count": 0, "sum_ms": 0.0, "min_ms": val, "max_ms": val})
            stat["count"] += 1
            stat["sum_ms"] += val
            stat["min_ms"] = min(stat["min_ms"], val)
            stat["max_ms"] = max(stat["max_ms"], val)

    @contextmanager
    def timer(self, name: str) -> Iterator[None]:
        started = perf_counter()
        try:
            yield
        finally:
            self.observe_ms(name, (perf_counter() - started) * 1000.0)

    def add_trace(self, event: Dict[str, Any]) -> None:
        payload = dict(event or {})
        payload.setdefault("ts", datetime.now(timezone.utc).isoformat())
        with self._lock:
            self._traces.append(payload)

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            timers = {
                name: {
                    "count": int(stat["count"]),
                    "avg_ms": stat["sum_ms"] / stat["count"] if stat["count"] else 0.0,
                    "min_ms": stat["min_ms"],
                    "max_ms": stat["max_ms"],
                }
                for name, stat in self._timers.items()
            }
            return {
                "generated_at": datetime.now(timezone.utc).isoformat(),
                "counters": dict(self._counters),
                "timers": timers,
                "recent_runs": list(self._traces),
            }

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()
            self._timers.clear()
            self._traces.clear()


observability = InMemoryObservability()
