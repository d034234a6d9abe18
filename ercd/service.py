from __future__ import annotations

import logging
import os
import signal
import threading
import time
from typing import Any

import RNS

from .codec import encode
from .config import HubRuntimeConfig
from .constants import T_PING
from .envelope import make_envelope
from .relay import Outgoing, RoomRelay
from .resources import ResourceManager
from .rooms import RoomRegistry
from .router import MessageRouter
from .session import SessionManager
from .stats import StatsManager
from .util import expand_path


class HubService:
    """Composition root: owns the registry, session table and Reticulum lifecycle."""

    def __init__(self, config: HubRuntimeConfig) -> None:
        self.config = config
        self.log = logging.getLogger("ercd.hub")

        self._shutdown = threading.Event()

        self.stats_manager = StatsManager()
        self.session_manager = SessionManager()
        self.registry = RoomRegistry()
        self.relay = RoomRelay(
            config, self.registry, self.session_manager, stats=self.stats_manager
        )
        self.router = MessageRouter(self.relay, self.session_manager, self.stats_manager)
        self.resource_manager = ResourceManager(self)

        self.identity: RNS.Identity | None = None
        self.destination: RNS.Destination | None = None

        self._threads: list[threading.Thread] = []

    def _fmt_link_id(self, link: RNS.Link) -> str:
        lid = getattr(link, "link_id", None)
        if isinstance(lid, (bytes, bytearray)):
            return bytes(lid).hex()
        h = getattr(link, "hash", None)
        if isinstance(h, (bytes, bytearray)):
            return bytes(h).hex()
        return "-"

    def _packet_would_fit(self, link: RNS.Link, payload: bytes) -> bool:
        """Check if payload fits within link MDU without creating/packing packets."""
        try:
            if hasattr(link, "MDU") and link.MDU is not None:
                return len(payload) <= link.MDU
            pkt = RNS.Packet(link, payload)
            pkt.pack()
            return True
        except Exception:
            return False

    # Lifecycle

    def start(self) -> None:
        self.log.info("Starting Reticulum")
        self.stats_manager.set_start_time()
        RNS.Reticulum(configdir=self.config.configdir, require_shared_instance=False)

        if not self.config.identity_path:
            raise RuntimeError("identity_path is not set")
        self.identity = self._load_identity(self.config.identity_path)

        parts = [p for p in str(self.config.dest_name).split(".") if p]
        if not parts:
            raise ValueError("dest_name must not be empty")
        app_name, aspects = parts[0], parts[1:]

        self.destination = RNS.Destination(
            self.identity,
            RNS.Destination.IN,
            RNS.Destination.SINGLE,
            app_name,
            *aspects,
        )
        self.destination.set_link_established_callback(self._on_link)

        if self.config.announce_on_start:
            self._announce_once()

        self.log.info(
            "Hub running dest_name=%s dest_hash=%s",
            self.config.dest_name,
            self.destination.hash.hex() if self.destination else "-",
        )
        self.log.info(
            "Policy room_capacity=%s text_rate=%s/%ss file_rate=%s/%ss max_resource_bytes=%s",
            self.config.room_capacity or "unbounded",
            self.config.text_rate_limit,
            self.config.text_rate_window_s,
            self.config.file_rate_limit,
            self.config.file_rate_window_s,
            self.config.max_resource_bytes,
        )

        if self.config.announce_period_s and self.config.announce_period_s > 0:
            self._spawn(self._announce_loop, "ercd-announce")
        if self.config.ping_interval_s and self.config.ping_interval_s > 0:
            self._spawn(self._ping_loop, "ercd-ping")
        if self.config.send_log_prune_interval_s and self.config.send_log_prune_interval_s > 0:
            self._spawn(self._prune_loop, "ercd-prune")
        if self.config.stats_interval_s and self.config.stats_interval_s > 0:
            self._spawn(self._stats_loop, "ercd-stats")

    def _spawn(self, target, name: str) -> None:
        t = threading.Thread(target=target, name=name, daemon=True)
        t.start()
        self._threads.append(t)

    def run_forever(self) -> None:
        if self.destination is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()
        self.log.info("Stopping hub\n%s", self.format_stats())

        links = self.session_manager.clear_all()
        self.registry.clear_all()
        self.resource_manager.clear_all()

        for link in links:
            try:
                link.teardown()
            except Exception:
                pass

    def _load_identity(self, path: str) -> RNS.Identity:
        p = expand_path(path)
        if not os.path.exists(p):
            raise RuntimeError(f"Identity not found at {p}")
        ident = RNS.Identity.from_file(p)
        if ident is None:
            raise RuntimeError(f"Failed to load identity from {p}")
        return ident

    # Link callbacks

    def _on_link(self, link: RNS.Link) -> None:
        conn_id = self._fmt_link_id(link)
        self.session_manager.create(conn_id, link)
        self.resource_manager.on_link_established(link)

        link.set_packet_callback(lambda data, pkt: self._on_packet(link, data))
        link.set_link_closed_callback(lambda closed_link: self._on_close(closed_link))
        self.resource_manager.configure_link_callbacks(link)

        self.log.info("Link established link_id=%s", conn_id)

    def _on_close(self, link: RNS.Link) -> None:
        conn = self.session_manager.get_by_link(link)
        self.resource_manager.on_link_closed(link)
        if conn is None:
            return

        outgoing: Outgoing = []
        nick = self.relay.disconnect(conn.conn_id, outgoing)
        self.session_manager.remove(conn.conn_id)
        self._flush(outgoing)

        self.log.info(
            "Link closed conn=%s nick=%r room=%s",
            conn.conn_id,
            nick,
            conn.room_id,
        )

    def _on_packet(self, link: RNS.Link, data: bytes) -> None:
        # State mutations happen under per-room locks inside the relay; sending
        # happens afterwards with no lock held.
        conn = self.session_manager.get_by_link(link)
        if conn is None:
            return

        outgoing: Outgoing = []
        try:
            self.router.route_packet(conn.conn_id, data, outgoing)
        except Exception:
            self.log.exception("Failed to route packet conn=%s", conn.conn_id)
            return

        if self.log.isEnabledFor(logging.DEBUG) and outgoing:
            self.log.debug("Sending %d event(s) for conn=%s", len(outgoing), conn.conn_id)
        self._flush(outgoing)

    # Outbound

    def _flush(self, outgoing: Outgoing) -> None:
        if not outgoing:
            return

        links = self.session_manager.links_for({conn_id for conn_id, _ in outgoing})
        encoded: dict[int, bytes] = {}
        for conn_id, env in outgoing:
            link = links.get(conn_id)
            if link is None:
                continue
            payload = encoded.get(id(env))
            if payload is None:
                payload = encode(env)
                encoded[id(env)] = payload
            self._send_payload(link, payload)

    def _send_payload(self, link: RNS.Link, payload: bytes) -> None:
        self.stats_manager.inc("bytes_out", len(payload))
        if not self._packet_would_fit(link, payload):
            self.resource_manager.send_via_resource(link, payload)
            return
        try:
            RNS.Packet(link, payload).send()
        except OSError as e:
            # Common failure mode on low-MTU links: packet too large.
            self.log.warning(
                "Send failed link_id=%s bytes=%s err=%s",
                self._fmt_link_id(link),
                len(payload),
                e,
            )
        except Exception:
            self.log.debug(
                "Send failed link_id=%s bytes=%s",
                self._fmt_link_id(link),
                len(payload),
                exc_info=True,
            )

    # Background workers

    def _announce_once(self) -> None:
        if self.destination is None:
            return
        try:
            self.destination.announce(
                app_data=encode({"proto": "erc", "v": 1, "hub": self.config.hub_name})
            )
            self.stats_manager.inc("announces")
        except Exception:
            self.log.exception("Announce failed")

    def _announce_loop(self) -> None:
        while not self._shutdown.wait(float(self.config.announce_period_s)):
            self._announce_once()

    def _ping_loop(self) -> None:
        interval = float(self.config.ping_interval_s)
        timeout = float(self.config.ping_timeout_s)
        while not self._shutdown.wait(interval):
            now = time.monotonic()
            to_teardown: list[Any] = []
            to_ping: list[Any] = []

            for conn in self.session_manager.snapshot():
                if conn.link is None:
                    continue
                awaiting = conn.awaiting_pong
                if timeout > 0 and awaiting is not None and (now - awaiting) > timeout:
                    to_teardown.append(conn.link)
                    continue
                if awaiting is None:
                    conn.awaiting_pong = now
                    to_ping.append(conn.link)

            # Teardown fires the link closed callback, which runs the
            # disconnect reconciler.
            for link in to_teardown:
                self.log.info("Ping timeout link_id=%s", self._fmt_link_id(link))
                try:
                    link.teardown()
                except Exception:
                    pass

            for link in to_ping:
                self.stats_manager.inc("pings_out")
                self._send_payload(link, encode(make_envelope(T_PING, body=now)))

    def _prune_loop(self) -> None:
        while not self._shutdown.wait(float(self.config.send_log_prune_interval_s)):
            dropped = self.registry.prune_send_logs(
                text_window_s=float(self.config.text_rate_window_s),
                file_window_s=float(self.config.file_rate_window_s),
                now=time.monotonic(),
            )
            if dropped:
                self.log.debug("Pruned %d throttle entries", dropped)

    def _stats_loop(self) -> None:
        while not self._shutdown.wait(float(self.config.stats_interval_s)):
            self.log.info("%s", self.format_stats())

    def format_stats(self) -> str:
        limits = (
            f"room_capacity={self.config.room_capacity} "
            f"text_rate={self.config.text_rate_limit}/{self.config.text_rate_window_s}s "
            f"file_rate={self.config.file_rate_limit}/{self.config.file_rate_window_s}s"
        )
        return self.stats_manager.format_stats(
            session_stats=self.session_manager.get_stats(),
            room_stats=self.registry.get_stats(),
            limits=limits,
        )
