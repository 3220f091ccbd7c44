# provider_node/gateway/stats.py
"""Node health and earnings counters."""
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional


@dataclass(frozen=True)
class ServerStats:
    uptime: float
    requests_served: int
    total_earnings: float
    average_latency: float
    error_rate: float
    error_count: int

    def heartbeat_payload(self) -> Dict[str, float]:
        """Health fields the registry expects in a heartbeat."""
        return {
            "latency": self.average_latency,
            "requestsServed": self.requests_served,
            "errors": self.error_count,
        }


class StatsAggregator:
    """
    Serialized counters for served calls.

    Latencies and uptime are in milliseconds. `error_rate` is
    error_count / requests_served and reads 0.0 until a call has been served.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._started_at = self._clock()
        self._lock = threading.Lock()
        self._requests_served = 0
        self._total_earnings = 0.0
        self._cumulative_latency = 0.0
        self._error_count = 0

    def record_success(self, price: float, latency: float) -> ServerStats:
        """Count one served call and return the snapshot right after it."""
        with self._lock:
            self._requests_served += 1
            self._total_earnings += price
            self._cumulative_latency += latency
            return self._snapshot_locked()

    def record_failure(self) -> ServerStats:
        with self._lock:
            self._error_count += 1
            return self._snapshot_locked()

    def snapshot(self) -> ServerStats:
        with self._lock:
            return self._snapshot_locked()

    def _snapshot_locked(self) -> ServerStats:
        served = self._requests_served
        return ServerStats(
            uptime=(self._clock() - self._started_at) * 1000,
            requests_served=served,
            total_earnings=self._total_earnings,
            average_latency=self._cumulative_latency / served if served else 0.0,
            error_rate=self._error_count / served if served else 0.0,
            error_count=self._error_count,
        )
