"""Statistics tracking and reporting for the chat hub."""

from __future__ import annotations

import threading
import time


class StatsManager:
    """
    Lifetime counters for the hub.

    Tracks counters for:
    - Events in (accepted, malformed, rate limited, dropped)
    - Messages routed, delivered live, rejected
    - Typing signals relayed and dropped
    - Presence broadcasts and fan-out writes
    - Store failures
    - Bytes in/out and resource transfers
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "bytes_in": 0,
            "bytes_out": 0,
            "events_in": 0,
            "events_bad": 0,
            "events_dropped": 0,
            "rate_limited": 0,
            "auths": 0,
            "messages_routed": 0,
            "messages_rejected": 0,
            "messages_delivered": 0,
            "typing_relayed": 0,
            "typing_dropped": 0,
            "broadcasts": 0,
            "broadcast_writes": 0,
            "store_failures": 0,
            "resources_sent": 0,
            "resources_received": 0,
            "resources_rejected": 0,
        }

    def set_start_time(self) -> None:
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def format_stats(self, *, connections: int, version: str) -> str:
        """Format current statistics as a human-readable string."""
        started = self.started_monotonic
        uptime_s = (time.monotonic() - started) if started is not None else 0.0
        c = self.snapshot()

        lines = [
            f"rchatd {version} stats",
            f"uptime_s={uptime_s:.1f}",
            f"connections_bound={connections}",
            "io: events_in={} events_bad={} events_dropped={} rate_limited={} bytes_in={} bytes_out={}".format(
                c["events_in"],
                c["events_bad"],
                c["events_dropped"],
                c["rate_limited"],
                c["bytes_in"],
                c["bytes_out"],
            ),
            "messages: routed={} rejected={} delivered_live={}".format(
                c["messages_routed"], c["messages_rejected"], c["messages_delivered"]
            ),
            "typing: relayed={} dropped={}".format(c["typing_relayed"], c["typing_dropped"]),
            "presence: auths={} broadcasts={} writes={} store_failures={}".format(
                c["auths"], c["broadcasts"], c["broadcast_writes"], c["store_failures"]
            ),
            "resources: sent={} received={} rejected={}".format(
                c["resources_sent"], c["resources_received"], c["resources_rejected"]
            ),
        ]
        return "\n".join(lines)
