"""Sliding-window send log used for per-sender throttling."""

from __future__ import annotations

from collections import deque


class SendLog:
    """Time-ordered log of ``(timestamp, sender_id)`` send events.

    One log counts one kind of traffic; a room keeps separate logs for text
    and file sends so the two limits never consume each other's budget.
    Timestamps are seconds from a monotonic clock.
    """

    def __init__(self) -> None:
        self._entries: deque[tuple[float, str]] = deque()

    def __len__(self) -> int:
        return len(self._entries)

    def prune(self, window_s: float, now: float) -> int:
        """Drop entries older than ``window_s``. Returns how many were dropped."""
        cutoff = now - window_s
        q = self._entries
        dropped = 0
        while q and q[0][0] <= cutoff:
            q.popleft()
            dropped += 1
        return dropped

    def too_fast(self, sender_id: str, limit: int, window_s: float, now: float) -> bool:
        self.prune(window_s, now)
        return self.count_for(sender_id) >= limit

    def record(self, sender_id: str, now: float) -> None:
        self._entries.append((now, sender_id))

    def count_for(self, sender_id: str) -> int:
        return sum(1 for _, sender in self._entries if sender == sender_id)

    def clear(self) -> None:
        self._entries.clear()
