"""Tests for the hub's link plumbing, using fake links in place of Reticulum."""
import io

import pytest
import RNS

from ercd.codec import decode, encode
from ercd.config import HubRuntimeConfig
from ercd.constants import K_BODY, K_NICK, K_T, T_ADMITTED, T_JOIN, T_MSG, T_PEER_LEFT
from ercd.envelope import make_envelope
from ercd.service import HubService


class FakeLink:
    MDU = 400

    def __init__(self, link_id: bytes) -> None:
        self.link_id = link_id
        self.packet_callback = None
        self.closed_callback = None
        self.resource_strategy = None
        self.torn_down = False

    def set_packet_callback(self, cb) -> None:
        self.packet_callback = cb

    def set_link_closed_callback(self, cb) -> None:
        self.closed_callback = cb

    def set_resource_strategy(self, strategy) -> None:
        self.resource_strategy = strategy

    def set_resource_callback(self, cb) -> None:
        pass

    def set_resource_concluded_callback(self, cb) -> None:
        pass

    def teardown(self) -> None:
        self.torn_down = True


class FakeResource:
    def __init__(self, link, data: bytes = b"", *, size=None, initiator=False) -> None:
        self.link = link
        self.data = io.BytesIO(data)
        self.total_size = len(data) if size is None else size
        self.status = RNS.Resource.COMPLETE
        self.initiator = initiator


@pytest.fixture
def hub(monkeypatch):
    svc = HubService(HubRuntimeConfig(greeting="hello"))
    svc.sent = []
    monkeypatch.setattr(
        svc, "_send_payload", lambda link, payload: svc.sent.append((link, decode(payload)))
    )
    return svc


def _connect(hub, link_id: bytes) -> FakeLink:
    link = FakeLink(link_id)
    hub._on_link(link)
    return link


def _sent_to(hub, link, msg_type=None) -> list[dict]:
    return [
        env for to, env in hub.sent if to is link and (msg_type is None or env[K_T] == msg_type)
    ]


def test_link_registers_session_and_callbacks(hub) -> None:
    link = _connect(hub, b"\x01\x02")
    conn = hub.session_manager.get("0102")
    assert conn is not None
    assert conn.link is link
    assert link.packet_callback is not None
    assert link.closed_callback is not None
    assert link.resource_strategy == RNS.Link.ACCEPT_APP


def test_packets_flow_between_links(hub) -> None:
    a = _connect(hub, b"\x0a")
    b = _connect(hub, b"\x0b")

    a.packet_callback(encode(make_envelope(T_JOIN, room="abc", nick="alice")), None)
    admitted = _sent_to(hub, a, T_ADMITTED)
    assert len(admitted) == 1
    assert admitted[0][K_BODY][0] == "hello"

    b.packet_callback(encode(make_envelope(T_JOIN, room="abc", nick="bob")), None)
    a.packet_callback(encode(make_envelope(T_MSG, mid="m1", body="hi bob")), None)

    delivered = _sent_to(hub, b, T_MSG)
    assert [env[K_BODY] for env in delivered] == ["hi bob"]
    assert delivered[0][K_NICK] == "alice"
    assert hub.stats_manager.get("msgs_forwarded") == 1


def test_link_close_notifies_room(hub) -> None:
    a = _connect(hub, b"\x0a")
    b = _connect(hub, b"\x0b")
    a.packet_callback(encode(make_envelope(T_JOIN, room="abc", nick="alice")), None)
    b.packet_callback(encode(make_envelope(T_JOIN, room="abc", nick="bob")), None)

    b.closed_callback(b)

    left = _sent_to(hub, a, T_PEER_LEFT)
    assert [env[K_NICK] for env in left] == ["bob"]
    assert hub.session_manager.get("0b") is None
    assert hub.registry.get("abc").members == {"0a"}

    a.closed_callback(a)
    assert len(hub.registry) == 0


def test_flush_skips_departed_connections(hub) -> None:
    a = _connect(hub, b"\x0a")
    env = make_envelope(T_MSG, body="x")
    hub._flush([("0a", env), ("gone", env)])
    assert len(hub.sent) == 1
    assert hub.sent[0][0] is a


def test_oversized_resource_is_rejected(hub) -> None:
    link = _connect(hub, b"\x0a")
    big = FakeResource(link, size=hub.config.max_resource_bytes + 1)
    assert hub.resource_manager._resource_advertised(big) is False
    assert hub.stats_manager.get("resources_rejected") == 1


def test_resource_without_session_is_rejected(hub) -> None:
    stray = FakeResource(FakeLink(b"\xff"), b"abc")
    assert hub.resource_manager._resource_advertised(stray) is False


def test_inbound_resource_is_routed(hub, monkeypatch) -> None:
    link = _connect(hub, b"\x0a")
    routed = []
    monkeypatch.setattr(hub, "_on_packet", lambda lnk, data: routed.append((lnk, data)))

    payload = encode(make_envelope(T_JOIN, room="abc", nick="alice"))
    res = FakeResource(link, payload)
    assert hub.resource_manager._resource_advertised(res) is True
    assert hub.resource_manager.active_count() == 1

    hub.resource_manager._resource_concluded(res)
    assert routed == [(link, payload)]
    assert hub.resource_manager.active_count() == 0
    assert hub.stats_manager.get("resources_received") == 1


def test_outbound_resource_conclusion_is_not_routed(hub, monkeypatch) -> None:
    link = _connect(hub, b"\x0a")
    routed = []
    monkeypatch.setattr(hub, "_on_packet", lambda lnk, data: routed.append(data))
    hub.resource_manager._resource_concluded(FakeResource(link, b"x", initiator=True))
    assert routed == []


def test_format_stats(hub) -> None:
    _connect(hub, b"\x0a")
    text = hub.format_stats()
    assert "clients_total=1" in text
    assert "room_capacity=2" in text
