"""Large envelope transfer over RNS Resources.

File envelopes rarely fit a single link packet. Clients send them as an
``RNS.Resource`` whose data is one encoded envelope, and the hub delivers
oversized outbound envelopes the same way.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

import RNS

if TYPE_CHECKING:
    from ercd.service import HubService


class ResourceManager:
    """Manages RNS Resource transfers for the hub."""

    def __init__(self, hub: HubService) -> None:
        self.hub = hub
        self.log = logging.getLogger("ercd.resources")
        self._lock = threading.Lock()
        self._active_resources: dict[RNS.Link, set[RNS.Resource]] = {}

    def on_link_established(self, link: RNS.Link) -> None:
        with self._lock:
            self._active_resources[link] = set()

    def on_link_closed(self, link: RNS.Link) -> None:
        with self._lock:
            self._active_resources.pop(link, None)

    def clear_all(self) -> None:
        """Clear all resource state (called during shutdown)."""
        with self._lock:
            self._active_resources.clear()

    def active_count(self) -> int:
        with self._lock:
            return sum(len(s) for s in self._active_resources.values())

    def configure_link_callbacks(self, link: RNS.Link) -> None:
        """Accept inbound resources on a link, subject to the size cap."""
        try:
            link.set_resource_strategy(RNS.Link.ACCEPT_APP)
            link.set_resource_callback(self._resource_advertised)
            link.set_resource_concluded_callback(self._resource_concluded)
        except Exception as e:
            self.log.warning(
                "Failed to set resource callbacks link_id=%s: %s",
                self.hub._fmt_link_id(link),
                e,
            )

    def _resource_advertised(self, resource: RNS.Resource) -> bool:
        """Return True to accept an advertised resource."""
        link = resource.link
        size = resource.total_size if hasattr(resource, "total_size") else resource.size

        if size > self.hub.config.max_resource_bytes:
            self.log.warning(
                "Rejecting resource (too large: %s > %s) link_id=%s",
                size,
                self.hub.config.max_resource_bytes,
                self.hub._fmt_link_id(link),
            )
            self.hub.stats_manager.inc("resources_rejected")
            return False

        if self.hub.session_manager.get_by_link(link) is None:
            self.log.debug(
                "Rejecting resource (no session) link_id=%s",
                self.hub._fmt_link_id(link),
            )
            self.hub.stats_manager.inc("resources_rejected")
            return False

        with self._lock:
            self._active_resources.setdefault(link, set()).add(resource)
        return True

    def _resource_concluded(self, resource: RNS.Resource) -> None:
        link = resource.link
        with self._lock:
            active_set = self._active_resources.get(link)
            if active_set:
                active_set.discard(resource)

        if resource.status != RNS.Resource.COMPLETE:
            self.log.warning(
                "Resource transfer failed link_id=%s status=%s",
                self.hub._fmt_link_id(link),
                resource.status,
            )
            return

        # Outbound resources conclude here too; only inbound ones carry data to route.
        if getattr(resource, "initiator", False):
            return

        try:
            payload = resource.data.read() if hasattr(resource.data, "read") else resource.data
            if isinstance(payload, bytearray):
                payload = bytes(payload)
        except Exception as e:
            self.log.error(
                "Failed to read resource data link_id=%s: %s",
                self.hub._fmt_link_id(link),
                e,
            )
            return

        self.hub.stats_manager.inc("resources_received")
        self.log.debug(
            "Resource received link_id=%s size=%s",
            self.hub._fmt_link_id(link),
            len(payload),
        )
        self.hub._on_packet(link, payload)

    def send_via_resource(self, link: RNS.Link, payload: bytes) -> bool:
        """Send an encoded envelope as a Resource. Returns True if initiated."""
        try:
            resource = RNS.Resource(
                payload,
                link,
                advertise=True,
                auto_compress=False,
                callback=self._resource_concluded,
            )
        except Exception as e:
            self.log.error(
                "Failed to create resource link_id=%s: %s",
                self.hub._fmt_link_id(link),
                e,
            )
            return False

        with self._lock:
            self._active_resources.setdefault(link, set()).add(resource)

        self.hub.stats_manager.inc("resources_sent")
        self.log.debug(
            "Sent resource link_id=%s size=%s",
            self.hub._fmt_link_id(link),
            len(payload),
        )
        return True
