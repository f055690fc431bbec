"""Running routing counters."""
import logging
from collections import deque
from typing import Deque, Dict

from supportline.services.routing.models import ConfidenceBucket, RouteSource

logger = logging.getLogger(__name__)

LATENCY_WINDOW = 100
LOG_EVERY = 10


class RoutingStats:
    """
    Counters for routed queries.

    Tracks total requests, per-bucket count/success/fallback, per-source
    count/success, and the last 100 latencies per source.
    """

    def __init__(self, latency_window: int = LATENCY_WINDOW):
        self.total_requests = 0
        self.by_bucket: Dict[ConfidenceBucket, Dict[str, int]] = {
            bucket: {"count": 0, "success": 0, "fallback": 0} for bucket in ConfidenceBucket
        }
        self.by_source: Dict[RouteSource, Dict[str, int]] = {
            source: {"count": 0, "success": 0} for source in RouteSource
        }
        self.latencies: Dict[RouteSource, Deque[float]] = {
            source: deque(maxlen=latency_window) for source in RouteSource
        }

    def record(
        self,
        bucket: ConfidenceBucket,
        source: RouteSource,
        success: bool,
        fallback: bool = False,
        elapsed_ms: float = 0.0,
    ) -> None:
        self.total_requests += 1

        bucket_stats = self.by_bucket[bucket]
        bucket_stats["count"] += 1
        if success:
            bucket_stats["success"] += 1
        if fallback:
            bucket_stats["fallback"] += 1

        source_stats = self.by_source[source]
        source_stats["count"] += 1
        if success:
            source_stats["success"] += 1

        if elapsed_ms > 0:
            self.latencies[source].append(elapsed_ms)

        if self.total_requests % LOG_EVERY == 0:
            self._log_performance()

    def average_latency(self, source: RouteSource) -> float:
        window = self.latencies[source]
        if not window:
            return 0.0
        return sum(window) / len(window)

    def snapshot(self) -> dict:
        """Return a copy of the counters, safe to serialize."""
        return {
            "total_requests": self.total_requests,
            "by_bucket": {bucket.value: dict(counts) for bucket, counts in self.by_bucket.items()},
            "by_source": {source.value: dict(counts) for source, counts in self.by_source.items()},
            "latency_ms": {
                source.value: {
                    "samples": list(window),
                    "average": round(self.average_latency(source), 2),
                }
                for source, window in self.latencies.items()
            },
        }

    def _log_performance(self) -> None:
        rates = {}
        for bucket, counts in self.by_bucket.items():
            if counts["count"]:
                rates[bucket.value] = round(counts["success"] / counts["count"] * 100, 2)
        averages = {source.value: round(self.average_latency(source), 2) for source in RouteSource}
        logger.info(
            f"[ROUTER] Performance - Total: {self.total_requests}, "
            f"Success rates: {rates}, Avg latency (ms): {averages}"
        )
