"""
In-process metrics for the feed pipelines.
Counters and gauges keyed by name and labels, rendered as text.
"""

from typing import Dict, List, Optional
from threading import RLock
import json


class SimpleMetrics:
    """Simple metrics tracking without a Prometheus dependency."""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}
        self.histograms: Dict[str, List[float]] = {}
        self._lock = RLock()

    @staticmethod
    def _key(name: str, labels: Optional[Dict[str, str]]) -> str:
        return f"{name}_{json.dumps(labels or {}, sort_keys=True)}"

    def inc_counter(self, name: str, labels: Dict[str, str] = None, amount: int = 1):
        key = self._key(name, labels)
        with self._lock:
            self.counters[key] = self.counters.get(key, 0) + amount

    def set_gauge(self, name: str, value: float, labels: Dict[str, str] = None):
        with self._lock:
            self.gauges[self._key(name, labels)] = value

    def observe_histogram(self, name: str, value: float, labels: Dict[str, str] = None):
        key = self._key(name, labels)
        with self._lock:
            samples = self.histograms.setdefault(key, [])
            samples.append(value)
            # Keep only last 1000 samples
            if len(samples) > 1000:
                self.histograms[key] = samples[-1000:]

    def counter_value(self, name: str, labels: Dict[str, str] = None) -> int:
        with self._lock:
            return self.counters.get(self._key(name, labels), 0)

    def gauge_value(self, name: str, labels: Dict[str, str] = None) -> Optional[float]:
        with self._lock:
            return self.gauges.get(self._key(name, labels))

    def reset(self):
        with self._lock:
            self.counters.clear()
            self.gauges.clear()
            self.histograms.clear()

    def get_metrics(self) -> str:
        """Get metrics in text format."""
        lines = []
        with self._lock:
            for key, value in self.counters.items():
                lines.append(f"# TYPE {key.split('_{')[0]} counter")
                lines.append(f"{key} {value}")
            for key, value in self.gauges.items():
                lines.append(f"# TYPE {key.split('_{')[0]} gauge")
                lines.append(f"{key} {value}")
            for key, values in self.histograms.items():
                if values:
                    lines.append(f"# TYPE {key.split('_{')[0]} histogram")
                    lines.append(f"{key}_count {len(values)}")
                    lines.append(f"{key}_sum {sum(values)}")
                    lines.append(f"{key}_avg {sum(values)/len(values)}")
        return "\n".join(lines)


# Global metrics instance
_metrics = SimpleMetrics()


def metrics() -> SimpleMetrics:
    return _metrics


def record_publish(stream: str, version: int):
    _metrics.inc_counter("stream_publishes", {"stream": stream})
    _metrics.set_gauge("stream_version", version, {"stream": stream})


def record_feed_event(stream: str, kind: str):
    _metrics.inc_counter("feed_events", {"stream": stream, "kind": kind})


def record_restart(stream: str, delay_s: float):
    _metrics.inc_counter("stream_restarts", {"stream": stream})
    _metrics.observe_histogram("stream_restart_delay_s", delay_s, {"stream": stream})


def record_resubscribe(stream: str):
    _metrics.inc_counter("stream_resubscribes", {"stream": stream})


def record_ws_queue_drop():
    _metrics.inc_counter("ws_queue_drops")


def record_ws_ping():
    _metrics.inc_counter("ws_pings")


def record_info_request(request_type: str, ok: bool, duration_ms: float):
    status = "success" if ok else "error"
    _metrics.inc_counter("info_requests", {"type": request_type, "status": status})
    _metrics.observe_histogram("info_duration_ms", duration_ms, {"type": request_type})


def get_metrics() -> str:
    """Get metrics in text format."""
    return _metrics.get_metrics()
