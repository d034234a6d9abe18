from __future__ import annotations

import os
import time

from .constants import ERC_VERSION, K_BODY, K_ID, K_NICK, K_ROOM, K_SRC, K_T, K_TS, K_V


def now_ms() -> int:
    return int(time.time() * 1000)


def msg_id() -> str:
    return os.urandom(8).hex()


def make_envelope(
    msg_type: int,
    *,
    src: str | None = None,
    room: str | None = None,
    body=None,
    mid: str | bytes | None = None,
    ts: int | None = None,
    nick: str | None = None,
) -> dict:
    env: dict[int, object] = {
        K_V: ERC_VERSION,
        K_T: int(msg_type),
        K_ID: mid or msg_id(),
        K_TS: ts or now_ms(),
    }
    if src is not None:
        env[K_SRC] = src
    if room is not None:
        env[K_ROOM] = room
    if body is not None:
        env[K_BODY] = body
    if nick is not None:
        env[K_NICK] = nick
    return env


def envelope_id(env: dict) -> str:
    """Return the envelope id as text; byte ids are rendered as hex."""
    mid = env.get(K_ID)
    if isinstance(mid, (bytes, bytearray)):
        return bytes(mid).hex()
    if isinstance(mid, str):
        return mid
    return ""


def validate_envelope(env: dict) -> None:
    if not isinstance(env, dict):
        raise TypeError("envelope must be a CBOR map (dict)")

    for k in env.keys():
        if not isinstance(k, int):
            raise TypeError("envelope keys must be integers")
        if k < 0:
            raise ValueError("envelope keys must be unsigned integers")

    for k in (K_V, K_T, K_ID, K_TS):
        if k not in env:
            raise ValueError(f"missing envelope key {k}")

    v = env[K_V]
    if not isinstance(v, int):
        raise TypeError("protocol version must be an integer")
    if v != ERC_VERSION:
        raise ValueError(f"unsupported version {v}")

    t = env[K_T]
    if not isinstance(t, int):
        raise TypeError("message type must be an integer")

    mid = env[K_ID]
    if not isinstance(mid, (str, bytes, bytearray)):
        raise TypeError("message id must be text or bytes")

    ts = env[K_TS]
    if not isinstance(ts, int):
        raise TypeError("timestamp must be an integer")
    if ts < 0:
        raise ValueError("timestamp must be unsigned")

    if K_SRC in env and not isinstance(env[K_SRC], str):
        raise TypeError("sender id must be a string")

    if K_ROOM in env:
        room = env[K_ROOM]
        if not isinstance(room, str):
            raise TypeError("room name must be a string")
        if room == "":
            raise ValueError("room name must not be empty")

    if K_NICK in env and not isinstance(env[K_NICK], str):
        raise TypeError("nickname must be a string")
