"""Room state and the process-wide room registry.

A room exists only while it has members. The registry creates rooms lazily on
the first join attempt and forgets them the moment the last member leaves,
taking the admission key, pending deliveries and send logs with them.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from .throttle import SendLog


@dataclass(eq=False)
class Room:
    room_id: str
    admission_key: str | None = None
    members: set[str] = field(default_factory=set)
    text_sends: SendLog = field(default_factory=SendLog)
    file_sends: SendLog = field(default_factory=SendLog)
    # message id -> member ids that have not acknowledged yet
    pending: dict[str, set[str]] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    closed: bool = False

    @property
    def keyed(self) -> bool:
        return bool(self.admission_key)

    def is_full(self, capacity: int) -> bool:
        return capacity > 0 and len(self.members) >= capacity


class RoomRegistry:
    """Maps room ids to live rooms.

    The map has its own lock. Callers that hold a room lock may call
    :meth:`remove`; the registry never acquires a room lock itself.
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("ercd.rooms")
        self._rooms: dict[str, Room] = {}
        self._lock = threading.Lock()

    def __contains__(self, room_id: object) -> bool:
        with self._lock:
            return room_id in self._rooms

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def get(self, room_id: str) -> Room | None:
        with self._lock:
            return self._rooms.get(room_id)

    def get_or_create(self, room_id: str) -> Room:
        """Return the live room for ``room_id``, creating it if needed."""
        with self._lock:
            room = self._rooms.get(room_id)
            if room is None:
                room = Room(room_id=room_id)
                self._rooms[room_id] = room
                self.log.debug("Room created room=%s", room_id)
            return room

    def remove(self, room_id: str) -> None:
        """Forget an empty room. Must be called with the room lock held."""
        room = self.get(room_id)
        if room is not None:
            self._forget(room)

    def discard_if_empty(self, room: Room) -> bool:
        """Remove ``room`` if it has no members. Must be called with its lock held."""
        if room.members or room.closed:
            return False
        self._forget(room)
        return True

    def _forget(self, room: Room) -> None:
        if room.members:
            raise ValueError(f"room {room.room_id!r} still has members")
        with self._lock:
            # A newer room may already be registered under the same id.
            if self._rooms.get(room.room_id) is room:
                self._rooms.pop(room.room_id, None)
        room.closed = True
        room.pending.clear()
        room.text_sends.clear()
        room.file_sends.clear()
        self.log.debug("Room removed room=%s", room.room_id)

    def snapshot(self) -> list[Room]:
        with self._lock:
            return list(self._rooms.values())

    def prune_send_logs(
        self, *, text_window_s: float, file_window_s: float, now: float
    ) -> int:
        """Drop expired throttle entries across all rooms."""
        dropped = 0
        for room in self.snapshot():
            with room.lock:
                if room.closed:
                    continue
                dropped += room.text_sends.prune(text_window_s, now)
                dropped += room.file_sends.prune(file_window_s, now)
        return dropped

    def clear_all(self) -> None:
        """Clear all room state. Called during hub shutdown."""
        with self._lock:
            for room in self._rooms.values():
                room.closed = True
            self._rooms.clear()

    def get_stats(self) -> dict[str, Any]:
        """Get room statistics for hub stats."""
        rooms = self.snapshot()
        rooms_total = len(rooms)
        memberships = sum(len(r.members) for r in rooms)
        pending = sum(len(r.pending) for r in rooms)
        top_rooms = sorted(
            ((r.room_id, len(r.members)) for r in rooms),
            key=lambda x: (-x[1], x[0]),
        )[:5]
        return {
            "rooms_total": rooms_total,
            "memberships": memberships,
            "pending_deliveries": pending,
            "top_rooms": top_rooms,
        }
