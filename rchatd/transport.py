"""Reticulum link adapter for the connection interface."""

from __future__ import annotations

import logging
from collections.abc import Callable

import RNS

from .errors import DeadTransport
from .stats import StatsManager


def fmt_link_id(link: RNS.Link) -> str:
    lid = getattr(link, "link_id", None)
    if isinstance(lid, (bytes, bytearray)):
        return bytes(lid).hex()
    h = getattr(link, "hash", None)
    if isinstance(h, (bytes, bytearray)):
        return bytes(h).hex()
    return "-"


class LinkConnection:
    """
    One client's RNS link.

    Events that fit the link MDU go out as single packets; larger ones (long
    messages, images as data URLs) go out as an RNS.Resource. Inbound
    resources up to `max_resource_bytes` are accepted and handed to the same
    payload callback as packets.
    """

    def __init__(
        self,
        link: RNS.Link,
        *,
        max_resource_bytes: int,
        stats: StatsManager | None = None,
    ) -> None:
        self.link = link
        self.connection_id = fmt_link_id(link)
        self.max_resource_bytes = int(max_resource_bytes)
        self.stats = stats or StatsManager()
        self.log = logging.getLogger("rchatd.transport")

    def is_alive(self) -> bool:
        return getattr(self.link, "status", None) == RNS.Link.ACTIVE

    def _packet_would_fit(self, payload: bytes) -> bool:
        """Check if payload fits within link MDU without creating/packing packets."""
        try:
            if hasattr(self.link, "MDU") and self.link.MDU is not None:
                return len(payload) <= self.link.MDU
            pkt = RNS.Packet(self.link, payload)
            pkt.pack()
            return True
        except Exception:
            return False

    def send(self, payload: bytes) -> None:
        if not self.is_alive():
            raise DeadTransport(self.connection_id)

        if self._packet_would_fit(payload):
            RNS.Packet(self.link, payload).send()
            self.stats.inc("bytes_out", len(payload))
            return

        if len(payload) > self.max_resource_bytes:
            raise OSError(
                f"event too large ({len(payload)} > {self.max_resource_bytes} bytes)"
            )

        RNS.Resource(payload, self.link, advertise=True, auto_compress=False)
        self.stats.inc("resources_sent")
        self.stats.inc("bytes_out", len(payload))
        self.log.debug(
            "Sent event as resource link_id=%s bytes=%s", self.connection_id, len(payload)
        )

    def close(self) -> None:
        try:
            self.link.teardown()
        except Exception:
            self.log.debug("Teardown failed link_id=%s", self.connection_id, exc_info=True)

    def configure_callbacks(
        self,
        on_payload: Callable[[bytes], None],
        on_closed: Callable[[], None],
    ) -> None:
        link = self.link
        link.set_packet_callback(lambda data, pkt: on_payload(bytes(data)))
        link.set_link_closed_callback(lambda closed_link: on_closed())

        def _resource_advertised(resource: RNS.Resource) -> bool:
            size = resource.total_size if hasattr(resource, "total_size") else resource.size
            if size > self.max_resource_bytes:
                self.stats.inc("resources_rejected")
                self.log.warning(
                    "Rejecting resource (too large: %s > %s) link_id=%s",
                    size,
                    self.max_resource_bytes,
                    self.connection_id,
                )
                return False
            return True

        def _resource_concluded(resource: RNS.Resource) -> None:
            if resource.status != RNS.Resource.COMPLETE:
                self.log.warning(
                    "Resource transfer failed link_id=%s status=%s",
                    self.connection_id,
                    resource.status,
                )
                return
            try:
                data = resource.data.read() if hasattr(resource.data, "read") else resource.data
            except Exception as e:
                self.log.error(
                    "Failed to read resource data link_id=%s: %s", self.connection_id, e
                )
                return
            self.stats.inc("resources_received")
            on_payload(bytes(data))

        try:
            link.set_resource_strategy(RNS.Link.ACCEPT_APP)
            link.set_resource_callback(_resource_advertised)
            link.set_resource_concluded_callback(_resource_concluded)
        except Exception as e:
            self.log.warning(
                "Failed to set resource callbacks link_id=%s: %s", self.connection_id, e
            )
