from __future__ import annotations

import logging
from typing import Any

from .codec import decode
from .constants import (
    B_FILE_DATA,
    B_FILE_NAME,
    B_FILE_SIZE,
    B_FILE_TYPE,
    B_REASON,
    K_BODY,
    K_NICK,
    K_ROOM,
    K_T,
    T_ACK,
    T_ADVISORY,
    T_FILE,
    T_JOIN,
    T_MSG,
    T_PING,
    T_PONG,
    T_TYPING,
)
from .envelope import envelope_id, make_envelope, validate_envelope
from .errors import Reason
from .relay import Outgoing, RoomRelay
from .session import SessionManager
from .stats import StatsManager


class MessageRouter:
    """
    Decodes inbound envelopes and dispatches them to the relay.

    This class is responsible for:
    - Decoding and validating incoming packets
    - Dispatching by message type (JOIN, MSG, FILE, ACK, TYPING, PING, PONG)
    - Reporting undecodable packets back to the sender
    """

    def __init__(
        self,
        relay: RoomRelay,
        sessions: SessionManager,
        stats: StatsManager,
    ) -> None:
        self.relay = relay
        self.sessions = sessions
        self.stats = stats
        self.log = logging.getLogger("ercd.router")

    def route_packet(self, conn_id: str, data: bytes, outgoing: Outgoing) -> None:
        """Main entry point for an incoming packet or resource payload."""
        conn = self.sessions.get(conn_id)
        if conn is None:
            return

        self.stats.inc("pkts_in")
        self.stats.inc("bytes_in", len(data))

        try:
            env = decode(data)
            validate_envelope(env)
        except Exception as e:
            self.stats.inc("pkts_bad")
            self.stats.inc("advisories")
            self.log.debug("Bad packet conn=%s bytes=%s err=%s", conn_id, len(data), e)
            outgoing.append(
                (
                    conn_id,
                    make_envelope(T_ADVISORY, body={B_REASON: Reason.MALFORMED_PAYLOAD.value}),
                )
            )
            return

        self.dispatch(conn_id, env, outgoing)

    def dispatch(self, conn_id: str, env: dict, outgoing: Outgoing) -> None:
        t = env.get(K_T)
        body = env.get(K_BODY)

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX conn=%s t=%s room=%r body_type=%s",
                conn_id,
                t,
                env.get(K_ROOM),
                type(body).__name__,
            )

        if t == T_JOIN:
            self.relay.join(conn_id, env.get(K_ROOM), env.get(K_NICK), body, outgoing)
        elif t == T_MSG:
            self.relay.send_text(conn_id, envelope_id(env), body, outgoing)
        elif t == T_FILE:
            self._handle_file(conn_id, env, outgoing)
        elif t == T_ACK:
            self.relay.acknowledge(conn_id, envelope_id(env), outgoing)
        elif t == T_TYPING:
            self.relay.set_typing(conn_id, body, outgoing)
        elif t == T_PING:
            self._handle_ping(conn_id, body, outgoing)
        elif t == T_PONG:
            self._handle_pong(conn_id)
        else:
            self.log.debug("Ignoring unknown message type conn=%s t=%s", conn_id, t)

    def _handle_file(self, conn_id: str, env: dict, outgoing: Outgoing) -> None:
        body: Any = env.get(K_BODY)
        if not isinstance(body, dict):
            body = {}
        self.relay.send_file(
            conn_id,
            envelope_id(env),
            name=body.get(B_FILE_NAME),
            mime_type=body.get(B_FILE_TYPE),
            size=body.get(B_FILE_SIZE),
            data=body.get(B_FILE_DATA),
            outgoing=outgoing,
        )

    def _handle_ping(self, conn_id: str, body: Any, outgoing: Outgoing) -> None:
        self.stats.inc("pings_in")
        self.stats.inc("pongs_out")
        outgoing.append((conn_id, make_envelope(T_PONG, body=body)))

    def _handle_pong(self, conn_id: str) -> None:
        self.stats.inc("pongs_in")
        conn = self.sessions.get(conn_id)
        if conn is not None:
            conn.awaiting_pong = None
