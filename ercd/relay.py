"""Room relay engine.

Every operation here is a synchronous state transition against in-memory room
state. Nothing is sent directly: events are appended to an ``outgoing`` list of
``(connection_id, envelope)`` pairs which the transport drains once all locks
are released.

Lock order is connection lock, then room lock, then the registry's own lock.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from . import __version__
from .config import HubRuntimeConfig
from .constants import (
    ALLOWED_MIME_TYPES,
    B_ADMITTED_CAPACITY,
    B_ADMITTED_HUB,
    B_ADMITTED_KEYED,
    B_ADMITTED_MEMBERS,
    B_ADMITTED_VER,
    B_ADMITTED_WELCOME,
    B_FILE_DATA,
    B_FILE_NAME,
    B_FILE_SIZE,
    B_FILE_TYPE,
    B_REASON,
    DATA_URI_MAX_CHARS,
    DATA_URI_PREFIX,
    FILE_MAX_BYTES,
    FILE_NAME_MAX_CHARS,
    MIME_MAX_CHARS,
    MSG_ID_MAX_CHARS,
    T_ADMITTED,
    T_ADVISORY,
    T_FILE,
    T_MSG,
    T_PEER_JOINED,
    T_PEER_LEFT,
    T_PROGRESS,
    T_REJECTED,
    T_TYPING,
    TEXT_MAX_CHARS,
)
from .envelope import make_envelope
from .errors import Reason, RelayRejection
from .rooms import Room, RoomRegistry
from .session import Connection, SessionManager
from .stats import StatsManager
from .throttle import SendLog
from .util import sanitize, sanitize_key, sanitize_name, sanitize_room

Outgoing = list[tuple[str, dict]]


@dataclass(frozen=True)
class Admitted:
    room_id: str
    display_name: str
    keyed: bool
    members: int


@dataclass(frozen=True)
class Rejected:
    reason: Reason


@dataclass(frozen=True)
class DeliveryStarted:
    message_id: str
    remaining: int


def validate_message_id(value) -> str:
    mid = sanitize(value, MSG_ID_MAX_CHARS, single_line=True)
    if not mid:
        raise RelayRejection(Reason.INVALID_PARAMETERS, "message id required")
    return mid


def validate_text(value) -> str:
    if not isinstance(value, str):
        raise RelayRejection(Reason.MALFORMED_PAYLOAD, "text body must be a string")
    text = sanitize(value, TEXT_MAX_CHARS)
    if not text.strip():
        raise RelayRejection(Reason.INVALID_PARAMETERS, "empty message")
    return text


def validate_file(name, mime_type, size, data) -> dict[int, object]:
    """Check a file payload and return the body to relay.

    Checks run in a fixed order: declared size, media type, embedded payload.
    """
    filename = sanitize(name, FILE_NAME_MAX_CHARS, single_line=True)
    mime = sanitize(mime_type, MIME_MAX_CHARS, single_line=True).strip()

    if isinstance(size, bool) or not isinstance(size, (int, float)):
        raise RelayRejection(Reason.MALFORMED_PAYLOAD, "invalid file size")
    if (isinstance(size, float) and not math.isfinite(size)) or size < 0:
        raise RelayRejection(Reason.MALFORMED_PAYLOAD, "invalid file size")
    if size > FILE_MAX_BYTES:
        raise RelayRejection(
            Reason.PAYLOAD_TOO_LARGE, f"file too large: {size} > {FILE_MAX_BYTES}"
        )

    if mime not in ALLOWED_MIME_TYPES and not mime.startswith("image/"):
        raise RelayRejection(Reason.UNSUPPORTED_MEDIA_TYPE, f"media type {mime!r}")

    if not isinstance(data, str) or not data.startswith(DATA_URI_PREFIX):
        raise RelayRejection(Reason.MALFORMED_PAYLOAD, "payload must be a data URI")
    if len(data) > DATA_URI_MAX_CHARS:
        raise RelayRejection(Reason.PAYLOAD_TOO_LARGE, "payload too large")

    return {
        B_FILE_NAME: filename,
        B_FILE_TYPE: mime,
        B_FILE_SIZE: int(size),
        B_FILE_DATA: data,
    }


class RoomRelay:
    """
    Admission, fan-out, acknowledgement, typing and teardown for rooms.

    Public operations:
    - join: admit a connection into a room
    - send_text / send_file: throttle, validate and fan out a message
    - acknowledge: retire one recipient from a message's pending set
    - set_typing: relay an ephemeral typing signal
    - disconnect: remove a departing connection and its obligations
    """

    def __init__(
        self,
        config: HubRuntimeConfig,
        registry: RoomRegistry,
        sessions: SessionManager,
        *,
        stats: StatsManager | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.registry = registry
        self.sessions = sessions
        self.stats = stats or StatsManager()
        self.clock = clock
        self.log = logging.getLogger("ercd.relay")

    # Admission

    def join(
        self,
        conn_id: str,
        room_id,
        display_name,
        key,
        outgoing: Outgoing,
    ) -> Admitted | Rejected:
        conn = self.sessions.get(conn_id)
        if conn is None:
            return self._reject(conn_id, Reason.INVALID_PARAMETERS, outgoing)

        r = sanitize_room(room_id)
        name = sanitize_name(display_name)
        k = sanitize_key(key)

        with conn.lock:
            if conn.closed:
                return Rejected(Reason.INVALID_PARAMETERS)
            if conn.bound:
                return self._reject(conn_id, Reason.ALREADY_JOINED, outgoing, room=r or None)
            if not r or not name:
                return self._reject(conn_id, Reason.INVALID_PARAMETERS, outgoing)

            while True:
                room = self.registry.get_or_create(r)
                with room.lock:
                    if room.closed:
                        # Torn down between lookup and lock; resolve again.
                        continue
                    outcome = self._admit_locked(conn, room, name, k, outgoing)
                    if isinstance(outcome, Rejected):
                        self.registry.discard_if_empty(room)
                    return outcome

    def _admit_locked(
        self,
        conn: Connection,
        room: Room,
        name: str,
        key: str,
        outgoing: Outgoing,
    ) -> Admitted | Rejected:
        capacity = int(self.config.room_capacity)
        if room.is_full(capacity):
            return self._reject(conn.conn_id, Reason.ROOM_FULL, outgoing, room=room.room_id)

        if not room.members:
            if key:
                room.admission_key = key
        else:
            if room.admission_key and key != room.admission_key:
                return self._reject(
                    conn.conn_id, Reason.KEY_MISMATCH, outgoing, room=room.room_id
                )
            if not room.admission_key and key:
                return self._reject(
                    conn.conn_id, Reason.KEY_SETTING_NOT_ALLOWED, outgoing, room=room.room_id
                )

        others = sorted(room.members)
        room.members.add(conn.conn_id)
        self.sessions.bind(conn, room.room_id, name)
        self.stats.inc("joins")

        admitted = make_envelope(
            T_ADMITTED,
            room=room.room_id,
            nick=name,
            body={
                B_ADMITTED_WELCOME: self.config.greeting,
                B_ADMITTED_KEYED: room.keyed,
                B_ADMITTED_MEMBERS: len(room.members),
                B_ADMITTED_CAPACITY: capacity,
                B_ADMITTED_HUB: self.config.hub_name,
                B_ADMITTED_VER: str(__version__),
            },
        )
        outgoing.append((conn.conn_id, admitted))

        if others:
            peer_joined = make_envelope(
                T_PEER_JOINED, src=conn.conn_id, room=room.room_id, nick=name
            )
            for other in others:
                outgoing.append((other, peer_joined))

        self.log.info(
            "JOIN conn=%s nick=%r room=%s members=%s keyed=%s",
            conn.conn_id,
            name,
            room.room_id,
            len(room.members),
            room.keyed,
        )
        return Admitted(
            room_id=room.room_id,
            display_name=name,
            keyed=room.keyed,
            members=len(room.members),
        )

    # Messages

    def send_text(
        self, conn_id: str, message_id, text, outgoing: Outgoing
    ) -> DeliveryStarted | Rejected:
        return self._relay(conn_id, message_id, T_MSG, lambda: validate_text(text), outgoing)

    def send_file(
        self,
        conn_id: str,
        message_id,
        *,
        name,
        mime_type,
        size,
        data,
        outgoing: Outgoing,
    ) -> DeliveryStarted | Rejected:
        return self._relay(
            conn_id,
            message_id,
            T_FILE,
            lambda: validate_file(name, mime_type, size, data),
            outgoing,
        )

    def _throttle_for(self, room: Room, msg_type: int) -> tuple[SendLog, int, float]:
        if msg_type == T_FILE:
            return (
                room.file_sends,
                int(self.config.file_rate_limit),
                float(self.config.file_rate_window_s),
            )
        return (
            room.text_sends,
            int(self.config.text_rate_limit),
            float(self.config.text_rate_window_s),
        )

    def _relay(
        self,
        conn_id: str,
        message_id,
        msg_type: int,
        validate: Callable[[], object],
        outgoing: Outgoing,
    ) -> DeliveryStarted | Rejected:
        conn, room = self._member_room(conn_id)
        if conn is None or room is None:
            return self._advise(conn_id, Reason.NOT_JOINED, outgoing)

        with room.lock:
            if room.closed or conn_id not in room.members:
                return self._advise(conn_id, Reason.NOT_JOINED, outgoing)

            try:
                mid = validate_message_id(message_id)
                body = validate()
            except RelayRejection as e:
                self.log.debug(
                    "Send rejected conn=%s room=%s reason=%s detail=%s",
                    conn_id,
                    room.room_id,
                    e.reason.value,
                    e.detail,
                )
                return self._advise(conn_id, e.reason, outgoing, room=room.room_id)

            if mid in room.pending:
                return self._advise(
                    conn_id, Reason.DUPLICATE_MESSAGE_ID, outgoing, room=room.room_id, mid=mid
                )

            send_log, limit, window_s = self._throttle_for(room, msg_type)
            now = self.clock()
            if send_log.too_fast(conn_id, limit, window_s, now):
                self.stats.inc("rate_limited")
                self.log.debug(
                    "Rate limited conn=%s room=%s type=%s", conn_id, room.room_id, msg_type
                )
                return self._advise(
                    conn_id, Reason.RATE_LIMITED, outgoing, room=room.room_id, mid=mid
                )

            send_log.record(conn_id, now)

            recipients = room.members - {conn_id}
            room.pending[mid] = set(recipients)

            env = make_envelope(
                msg_type,
                src=conn_id,
                room=room.room_id,
                body=body,
                mid=mid,
                nick=conn.display_name,
            )
            for recipient in sorted(recipients):
                outgoing.append((recipient, env))

            remaining = len(recipients)
            if not remaining:
                del room.pending[mid]
            self._queue_progress(room, mid, remaining, outgoing)

            self.stats.inc("files_forwarded" if msg_type == T_FILE else "msgs_forwarded")
            if self.log.isEnabledFor(logging.DEBUG):
                self.log.debug(
                    "Forwarded t=%s conn=%s room=%s id=%s recipients=%s",
                    msg_type,
                    conn_id,
                    room.room_id,
                    mid,
                    remaining,
                )
            return DeliveryStarted(message_id=mid, remaining=remaining)

    # Acknowledgement

    def acknowledge(self, conn_id: str, message_id, outgoing: Outgoing) -> int | None:
        """Retire ``conn_id`` from a pending set; returns the remaining count.

        Unknown ids and repeated acknowledgements return None and emit nothing.
        """
        conn, room = self._member_room(conn_id)
        if conn is None or room is None:
            return None

        mid = sanitize(message_id, MSG_ID_MAX_CHARS, single_line=True)
        with room.lock:
            if room.closed or conn_id not in room.members:
                return None
            waiting = room.pending.get(mid)
            if waiting is None or conn_id not in waiting:
                return None

            waiting.discard(conn_id)
            remaining = len(waiting)
            if not waiting:
                del room.pending[mid]
            self._queue_progress(room, mid, remaining, outgoing)

        self.stats.inc("acks")
        return remaining

    # Typing

    def set_typing(self, conn_id: str, is_typing, outgoing: Outgoing) -> int:
        """Relay a typing signal to the other members. Returns the fan-out size."""
        conn, room = self._member_room(conn_id)
        if conn is None or room is None:
            return 0

        with room.lock:
            if room.closed or conn_id not in room.members:
                return 0
            others = sorted(room.members - {conn_id})
            env = make_envelope(
                T_TYPING,
                src=conn_id,
                room=room.room_id,
                nick=conn.display_name,
                body=bool(is_typing),
            )
            for other in others:
                outgoing.append((other, env))

        self.stats.inc("typing_relayed")
        return len(others)

    # Teardown

    def disconnect(self, conn_id: str, outgoing: Outgoing) -> str | None:
        """Remove a departed connection from its room.

        Returns the departed display name, or None if it never joined.
        """
        conn = self.sessions.get(conn_id)
        if conn is None:
            return None

        with conn.lock:
            conn.closed = True
            if not conn.bound:
                return None

            room = self.registry.get(conn.room_id)
            if room is None:
                return None

            with room.lock:
                if conn_id not in room.members:
                    return None

                retracted: list[tuple[str, int]] = []
                for mid, waiting in list(room.pending.items()):
                    if conn_id not in waiting:
                        continue
                    waiting.discard(conn_id)
                    retracted.append((mid, len(waiting)))
                    if not waiting:
                        del room.pending[mid]

                room.members.discard(conn_id)

                for mid, remaining in retracted:
                    self._queue_progress(room, mid, remaining, outgoing)

                if room.members:
                    peer_left = make_envelope(
                        T_PEER_LEFT, src=conn_id, room=room.room_id, nick=conn.display_name
                    )
                    for other in sorted(room.members):
                        outgoing.append((other, peer_left))

                removed = self.registry.discard_if_empty(room)

        self.stats.inc("disconnects")
        self.log.info(
            "LEAVE conn=%s nick=%r room=%s retracted=%s room_removed=%s",
            conn_id,
            conn.display_name,
            conn.room_id,
            len(retracted),
            removed,
        )
        return conn.display_name

    # Helpers

    def _member_room(self, conn_id: str) -> tuple[Connection | None, Room | None]:
        conn = self.sessions.get(conn_id)
        if conn is None or not conn.bound:
            return conn, None
        return conn, self.registry.get(conn.room_id)

    def _queue_progress(
        self, room: Room, mid: str, remaining: int, outgoing: Outgoing
    ) -> None:
        env = make_envelope(T_PROGRESS, room=room.room_id, mid=mid, body=remaining)
        for member in sorted(room.members):
            outgoing.append((member, env))

    def _reject(
        self,
        conn_id: str,
        reason: Reason,
        outgoing: Outgoing,
        *,
        room: str | None = None,
    ) -> Rejected:
        self.stats.inc("joins_rejected")
        self.log.info("JOIN rejected conn=%s room=%r reason=%s", conn_id, room, reason.value)
        outgoing.append(
            (conn_id, make_envelope(T_REJECTED, room=room, body={B_REASON: reason.value}))
        )
        return Rejected(reason)

    def _advise(
        self,
        conn_id: str,
        reason: Reason,
        outgoing: Outgoing,
        *,
        room: str | None = None,
        mid: str | None = None,
    ) -> Rejected:
        self.stats.inc("advisories")
        outgoing.append(
            (
                conn_id,
                make_envelope(T_ADVISORY, room=room, mid=mid, body={B_REASON: reason.value}),
            )
        )
        return Rejected(reason)
