from __future__ import annotations

from dataclasses import replace

import pytest

from ercd.config import HubRuntimeConfig
from ercd.constants import K_T
from ercd.relay import RoomRelay
from ercd.rooms import RoomRegistry
from ercd.session import SessionManager
from ercd.stats import StatsManager


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Harness:
    def __init__(self, **overrides) -> None:
        self.config = replace(HubRuntimeConfig(), **overrides)
        self.sessions = SessionManager()
        self.registry = RoomRegistry()
        self.stats = StatsManager()
        self.clock = FakeClock()
        self.relay = RoomRelay(
            self.config,
            self.registry,
            self.sessions,
            stats=self.stats,
            clock=self.clock,
        )

    def connect(self, *conn_ids: str) -> None:
        for conn_id in conn_ids:
            self.sessions.create(conn_id)

    def join(self, conn_id: str, room: str, nick: str | None = None, key=None):
        out: list[tuple[str, dict]] = []
        if self.sessions.get(conn_id) is None:
            self.connect(conn_id)
        result = self.relay.join(conn_id, room, nick or conn_id, key, out)
        return result, out


def of_type(outgoing, msg_type: int, recipient: str | None = None) -> list[dict]:
    return [
        env
        for to, env in outgoing
        if env[K_T] == msg_type and (recipient is None or to == recipient)
    ]


def recipients(outgoing, msg_type: int) -> list[str]:
    return [to for to, env in outgoing if env[K_T] == msg_type]


@pytest.fixture
def harness() -> Harness:
    return Harness()


@pytest.fixture
def make_harness():
    return Harness
