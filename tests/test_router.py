import pytest
from conftest import of_type, recipients

from ercd.codec import encode
from ercd.constants import (
    B_FILE_DATA,
    B_FILE_NAME,
    B_FILE_SIZE,
    B_FILE_TYPE,
    B_REASON,
    K_BODY,
    K_ID,
    K_NICK,
    T_ACK,
    T_ADMITTED,
    T_ADVISORY,
    T_FILE,
    T_JOIN,
    T_MSG,
    T_PING,
    T_PONG,
    T_PROGRESS,
    T_TYPING,
)
from ercd.envelope import make_envelope
from ercd.router import MessageRouter


@pytest.fixture
def router(harness) -> MessageRouter:
    return MessageRouter(harness.relay, harness.sessions, harness.stats)


def _route(router, conn_id, env) -> list:
    out: list = []
    router.route_packet(conn_id, encode(env), out)
    return out


def _join(router, harness, conn_id, room="abc", key=None) -> list:
    harness.connect(conn_id)
    return _route(router, conn_id, make_envelope(T_JOIN, room=room, nick=conn_id, body=key))


def test_join_over_the_wire(router, harness) -> None:
    out = _join(router, harness, "A", key="pw1")
    assert recipients(out, T_ADMITTED) == ["A"]
    assert harness.registry.get("abc").admission_key == "pw1"
    assert harness.stats.get("pkts_in") == 1


def test_message_and_ack_flow(router, harness) -> None:
    _join(router, harness, "A")
    _join(router, harness, "B")

    out = _route(router, "A", make_envelope(T_MSG, mid="m1", body="hi"))
    assert recipients(out, T_MSG) == ["B"]
    assert of_type(out, T_MSG)[0][K_ID] == "m1"

    out = _route(router, "B", make_envelope(T_ACK, mid="m1"))
    assert of_type(out, T_PROGRESS, "A")[0][K_BODY] == 0


def test_byte_message_id_is_hex(router, harness) -> None:
    _join(router, harness, "A")
    _join(router, harness, "B")
    out = _route(router, "A", make_envelope(T_MSG, mid=b"\x00\x01", body="hi"))
    assert of_type(out, T_MSG)[0][K_ID] == "0001"


def test_file_envelope(router, harness) -> None:
    _join(router, harness, "A")
    _join(router, harness, "B")
    body = {
        B_FILE_NAME: "notes.txt",
        B_FILE_TYPE: "text/plain",
        B_FILE_SIZE: 5,
        B_FILE_DATA: "data:text/plain;base64,aGVsbG8=",
    }
    out = _route(router, "A", make_envelope(T_FILE, mid="f1", body=body))
    assert recipients(out, T_FILE) == ["B"]


def test_file_without_body_is_malformed(router, harness) -> None:
    _join(router, harness, "A")
    out = _route(router, "A", make_envelope(T_FILE, mid="f1"))
    assert of_type(out, T_ADVISORY, "A")[0][K_BODY] == {B_REASON: "MalformedPayload"}


def test_typing(router, harness) -> None:
    _join(router, harness, "A")
    _join(router, harness, "B")
    out = _route(router, "A", make_envelope(T_TYPING, body=True))
    assert recipients(out, T_TYPING) == ["B"]
    assert of_type(out, T_TYPING)[0][K_NICK] == "A"


def test_bad_packet_gets_advisory(router, harness) -> None:
    harness.connect("A")
    out: list = []
    router.route_packet("A", b"\x82\x01", out)
    assert recipients(out, T_ADVISORY) == ["A"]
    assert out[0][1][K_BODY] == {B_REASON: "MalformedPayload"}
    assert harness.stats.get("pkts_bad") == 1


def test_invalid_envelope_gets_advisory(router, harness) -> None:
    harness.connect("A")
    out = _route(router, "A", {0: 99, 1: T_MSG, 2: "x", 3: 0})
    assert recipients(out, T_ADVISORY) == ["A"]


def test_unknown_connection_is_ignored(router, harness) -> None:
    out = _route(router, "ghost", make_envelope(T_PING))
    assert out == []
    assert harness.stats.get("pkts_in") == 0


def test_unknown_type_is_ignored(router, harness) -> None:
    harness.connect("A")
    assert _route(router, "A", make_envelope(99)) == []


def test_ping_pong(router, harness) -> None:
    harness.connect("A")
    out = _route(router, "A", make_envelope(T_PING, body=1234))
    assert recipients(out, T_PONG) == ["A"]
    assert out[0][1][K_BODY] == 1234

    conn = harness.sessions.get("A")
    conn.awaiting_pong = 5.0
    _route(router, "A", make_envelope(T_PONG))
    assert conn.awaiting_pong is None
    assert harness.stats.get("pongs_in") == 1
