from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any


@dataclass(eq=False)
class Connection:
    """A transport session bound to at most one room for its lifetime."""

    conn_id: str
    link: Any = field(default=None, repr=False)
    display_name: str | None = None
    room_id: str | None = None
    connected_at: float = field(default_factory=time.time)
    awaiting_pong: float | None = None
    closed: bool = False
    # Serializes admission against teardown; taken before any room lock.
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def bound(self) -> bool:
        return self.room_id is not None


class SessionManager:
    """
    Owns the connection table for the hub.

    This class is responsible for:
    - Connection creation when a transport link is established
    - The connection -> (room, display name) binding made at admission
    - Lookups by connection id and by transport link
    - Connection teardown
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("ercd.session")
        self.sessions: dict[str, Connection] = {}
        self._index_by_link: dict[Any, str] = {}
        self._lock = threading.Lock()

    def create(self, conn_id: str, link: Any = None) -> Connection:
        conn = Connection(conn_id=conn_id, link=link)
        with self._lock:
            self.sessions[conn_id] = conn
            if link is not None:
                self._index_by_link[link] = conn_id
        self.log.info("Session created conn=%s", conn_id)
        return conn

    def get(self, conn_id: str) -> Connection | None:
        with self._lock:
            return self.sessions.get(conn_id)

    def get_by_link(self, link: Any) -> Connection | None:
        with self._lock:
            conn_id = self._index_by_link.get(link)
            return self.sessions.get(conn_id) if conn_id is not None else None

    def bind(self, conn: Connection, room_id: str, display_name: str) -> None:
        """
        Attach a connection to its room.

        Must be called with the room lock held. A connection is bound once.
        """
        if conn.room_id is not None:
            raise ValueError(f"connection {conn.conn_id} already bound to {conn.room_id!r}")
        conn.room_id = room_id
        conn.display_name = display_name

    def remove(self, conn_id: str) -> Connection | None:
        """Drop a connection from the table and return it."""
        with self._lock:
            conn = self.sessions.pop(conn_id, None)
            if conn is not None and conn.link is not None:
                self._index_by_link.pop(conn.link, None)
        return conn

    def links_for(self, conn_ids) -> dict[str, Any]:
        """Resolve connection ids to transport links, skipping unknown ids."""
        out: dict[str, Any] = {}
        with self._lock:
            for conn_id in conn_ids:
                conn = self.sessions.get(conn_id)
                if conn is not None and conn.link is not None:
                    out[conn_id] = conn.link
        return out

    def snapshot(self) -> list[Connection]:
        with self._lock:
            return list(self.sessions.values())

    def clear_all(self) -> list[Any]:
        """Clear all sessions and return their links for teardown."""
        with self._lock:
            links = [c.link for c in self.sessions.values() if c.link is not None]
            self.sessions.clear()
            self._index_by_link.clear()
        return links

    def get_stats(self) -> dict[str, Any]:
        """Get session statistics for monitoring."""
        with self._lock:
            total = len(self.sessions)
            bound = sum(1 for c in self.sessions.values() if c.bound)
        return {"total": total, "bound": bound}
