"""Statistics tracking and reporting for the ERC hub."""

from __future__ import annotations

import threading
import time
from typing import Any


class StatsManager:
    """
    Manages hub statistics collection and reporting.

    Tracks counters for:
    - Bytes and packets in/out
    - Admissions and rejections
    - Messages and files forwarded, acknowledgements
    - Typing signals, advisories, rate limiting
    - Ping/pong activity and announces
    - Resource transfers
    """

    def __init__(self) -> None:
        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None
        self._lock = threading.Lock()

        self._counters: dict[str, int] = {
            "bytes_in": 0,
            "bytes_out": 0,
            "pkts_in": 0,
            "pkts_bad": 0,
            "joins": 0,
            "joins_rejected": 0,
            "disconnects": 0,
            "msgs_forwarded": 0,
            "files_forwarded": 0,
            "acks": 0,
            "typing_relayed": 0,
            "advisories": 0,
            "rate_limited": 0,
            "pings_in": 0,
            "pongs_in": 0,
            "pings_out": 0,
            "pongs_out": 0,
            "announces": 0,
            "resources_sent": 0,
            "resources_received": 0,
            "resources_rejected": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        """Increment a counter by the given delta."""
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def uptime_s(self) -> float:
        started = self.started_monotonic
        return (time.monotonic() - started) if started is not None else 0.0

    def format_stats(
        self,
        *,
        session_stats: dict[str, Any],
        room_stats: dict[str, Any],
        limits: str = "",
    ) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        c = self.snapshot()
        lines: list[str] = []
        lines.append(f"ercd {__version__} stats")
        lines.append(f"uptime_s={self.uptime_s():.1f}")
        lines.append(
            f"clients_total={session_stats.get('total', 0)} "
            f"clients_joined={session_stats.get('bound', 0)}"
        )
        lines.append(
            f"rooms={room_stats.get('rooms_total', 0)} "
            f"memberships={room_stats.get('memberships', 0)} "
            f"pending_deliveries={room_stats.get('pending_deliveries', 0)}"
        )

        top_rooms = room_stats.get("top_rooms") or []
        if top_rooms:
            lines.append("top_rooms=" + ", ".join(f"{r}:{n}" for r, n in top_rooms))

        if limits:
            lines.append(f"limits: {limits}")

        lines.append(
            "io: pkts_in={} pkts_bad={} bytes_in={} bytes_out={}".format(
                c.get("pkts_in", 0),
                c.get("pkts_bad", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
            )
        )
        lines.append(
            "events: joins={} rejected={} disconnects={} msgs_fwd={} files_fwd={} "
            "acks={} typing={} advisories={} rate_limited={}".format(
                c.get("joins", 0),
                c.get("joins_rejected", 0),
                c.get("disconnects", 0),
                c.get("msgs_forwarded", 0),
                c.get("files_forwarded", 0),
                c.get("acks", 0),
                c.get("typing_relayed", 0),
                c.get("advisories", 0),
                c.get("rate_limited", 0),
            )
        )
        lines.append(
            "pings: in={} out={} pongs: in={} out={}".format(
                c.get("pings_in", 0),
                c.get("pings_out", 0),
                c.get("pongs_in", 0),
                c.get("pongs_out", 0),
            )
        )
        lines.append(
            "resources: sent={} received={} rejected={}".format(
                c.get("resources_sent", 0),
                c.get("resources_received", 0),
                c.get("resources_rejected", 0),
            )
        )

        return "\n".join(lines)
