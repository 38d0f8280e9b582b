from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass

from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric

from wireguard_exporter.services.wireguard import MALFORMED, Device, Peer

logger = logging.getLogger("wireguard_exporter.collector")

DeviceLister = Callable[[], Sequence[Device]]

# Handshake age reported for peers that never completed a handshake.
NEVER_HANDSHAKE_AGE = -1.0

_PEER_LABELS = ["device", "public_key", "name"]


class MalformedRecordError(ValueError):
    pass


@dataclass(frozen=True)
class _DeviceRow:
    name: str
    public_key: str
    listen_port: int
    firewall_mark: int


@dataclass(frozen=True)
class _PeerRow:
    public_key: str
    name: str
    endpoint: str
    allowed_ips: tuple[str, ...]
    receive_bytes: int
    transmit_bytes: int
    last_handshake: float
    handshake_age: float
    persistent_keepalive: int


class _Families:
    def __init__(self) -> None:
        self.scrape_error = GaugeMetricFamily(
            "wireguard_scrape_error",
            "1 if listing WireGuard devices failed during this scrape, 0 otherwise",
        )
        self.skipped = GaugeMetricFamily(
            "wireguard_scrape_skipped_records",
            "Number of malformed device or peer records skipped during this scrape",
        )
        self.device_info = GaugeMetricFamily(
            "wireguard_device_info",
            "Metadata about a device",
            labels=["device", "public_key"],
        )
        self.device_peers = GaugeMetricFamily(
            "wireguard_device_peers",
            "Number of peers reported for a device, excluding malformed peer records",
            labels=["device"],
        )
        self.device_listen_port = GaugeMetricFamily(
            "wireguard_device_listen_port",
            "UDP listen port of a device (0 when unset)",
            labels=["device"],
        )
        self.device_firewall_mark = GaugeMetricFamily(
            "wireguard_device_firewall_mark",
            "Firewall mark of a device (0 when unset)",
            labels=["device"],
        )
        self.peer_info = GaugeMetricFamily(
            "wireguard_peer_info",
            "Metadata about a peer. The public_key label on peer metrics refers to the peer's public key, not the device's",
            labels=["device", "public_key", "endpoint", "name"],
        )
        self.peer_allowed_ips = GaugeMetricFamily(
            "wireguard_peer_allowed_ips_info",
            "Metadata about each of a peer's allowed IP subnets for a given device",
            labels=["device", "public_key", "allowed_ips", "name"],
        )
        self.peer_rx = CounterMetricFamily(
            "wireguard_peer_receive_bytes",
            "Number of bytes received from a given peer",
            labels=_PEER_LABELS,
        )
        self.peer_tx = CounterMetricFamily(
            "wireguard_peer_transmit_bytes",
            "Number of bytes transmitted to a given peer",
            labels=_PEER_LABELS,
        )
        self.peer_last_handshake = GaugeMetricFamily(
            "wireguard_peer_last_handshake_seconds",
            "UNIX timestamp of the last handshake with a given peer (0 if none)",
            labels=_PEER_LABELS,
        )
        self.peer_handshake_age = GaugeMetricFamily(
            "wireguard_peer_handshake_age_seconds",
            "Seconds since the last handshake with a given peer (-1 if none)",
            labels=_PEER_LABELS,
        )
        self.peer_keepalive = GaugeMetricFamily(
            "wireguard_peer_persistent_keepalive_seconds",
            "Configured persistent keepalive interval for a given peer (0 when disabled)",
            labels=_PEER_LABELS,
        )

    def indicators(self) -> list[Metric]:
        return [self.scrape_error, self.skipped]

    def device_level(self) -> list[Metric]:
        return [self.device_info, self.device_peers, self.device_listen_port, self.device_firewall_mark]

    def peer_level(self) -> list[Metric]:
        return [
            self.peer_info,
            self.peer_allowed_ips,
            self.peer_rx,
            self.peer_tx,
            self.peer_last_handshake,
            self.peer_handshake_age,
            self.peer_keepalive,
        ]

    def all(self) -> list[Metric]:
        return self.indicators() + self.device_level() + self.peer_level()


def _reject_malformed(value: object, field_name: str) -> None:
    if value is MALFORMED:
        raise MalformedRecordError(f"{field_name} could not be parsed")


def _require_int(value: object, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise MalformedRecordError(f"{field_name} must be a non-negative integer, got {value!r}")
    return value


def _device_row(device: Device) -> _DeviceRow:
    name = getattr(device, "name", None)
    if not isinstance(name, str) or not name:
        raise MalformedRecordError("device name is missing")
    public_key = getattr(device, "public_key", None) or ""
    listen_port = getattr(device, "listen_port", None)
    firewall_mark = getattr(device, "firewall_mark", None)
    _reject_malformed(listen_port, "listen_port")
    _reject_malformed(firewall_mark, "firewall_mark")
    return _DeviceRow(
        name=name,
        public_key=str(public_key),
        listen_port=_require_int(listen_port or 0, "listen_port"),
        firewall_mark=_require_int(firewall_mark or 0, "firewall_mark"),
    )


def _peer_row(peer: Peer, names: Mapping[str, str], now: float) -> _PeerRow:
    public_key = getattr(peer, "public_key", None)
    if not isinstance(public_key, str) or not public_key:
        raise MalformedRecordError("peer public key is missing")

    last_handshake = 0.0
    handshake_age = NEVER_HANDSHAKE_AGE
    when = getattr(peer, "last_handshake", None)
    _reject_malformed(when, "last_handshake")
    if when is not None:
        last_handshake = float(when.timestamp())
        if last_handshake > 0:
            # Clock skew must not produce negative ages.
            handshake_age = max(0.0, now - last_handshake)
        else:
            last_handshake = 0.0

    return _PeerRow(
        public_key=public_key,
        name=names.get(public_key, ""),
        endpoint=str(getattr(peer, "endpoint", None) or ""),
        allowed_ips=tuple(str(ip) for ip in (getattr(peer, "allowed_ips", None) or ())),
        receive_bytes=_require_int(getattr(peer, "receive_bytes", None), "receive_bytes"),
        transmit_bytes=_require_int(getattr(peer, "transmit_bytes", None), "transmit_bytes"),
        last_handshake=last_handshake,
        handshake_age=handshake_age,
        persistent_keepalive=_require_int(getattr(peer, "persistent_keepalive", None), "persistent_keepalive"),
    )


class WireGuardCollector:
    """
    Prometheus collector that lists WireGuard devices on every scrape.

    The collector keeps no per-scrape state: concurrent `collect()` calls only share the device
    lister and the read-only peer names mapping. Scrape timeouts are left to the caller.
    """

    def __init__(
        self,
        list_devices: DeviceLister,
        peer_names: Mapping[str, str] | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._list_devices = list_devices
        self._peer_names: Mapping[str, str] = peer_names if peer_names is not None else {}
        self._clock = clock

    def describe(self) -> list[Metric]:
        return _Families().all()

    def collect(self) -> Iterator[Metric]:
        families = _Families()
        now = self._clock()

        try:
            devices = list(self._list_devices())
        except Exception as exc:  # noqa: BLE001
            logger.warning("wireguard_devices_list_failed error=%s", exc)
            families.scrape_error.add_metric([], 1)
            families.skipped.add_metric([], 0)
            yield from families.indicators()
            return

        skipped = 0
        for device in devices:
            try:
                row = _device_row(device)
            except (MalformedRecordError, AttributeError, TypeError, ValueError) as exc:
                logger.debug("wireguard_device_skipped error=%s", exc)
                skipped += 1
                continue

            peer_rows: list[_PeerRow] = []
            for peer in getattr(device, "peers", None) or ():
                try:
                    peer_rows.append(_peer_row(peer, self._peer_names, now))
                except (MalformedRecordError, AttributeError, TypeError, ValueError, OverflowError, OSError) as exc:
                    logger.debug("wireguard_peer_skipped device=%s error=%s", row.name, exc)
                    skipped += 1

            families.device_info.add_metric([row.name, row.public_key], 1)
            families.device_peers.add_metric([row.name], len(peer_rows))
            families.device_listen_port.add_metric([row.name], row.listen_port)
            families.device_firewall_mark.add_metric([row.name], row.firewall_mark)

            for p in peer_rows:
                labels = [row.name, p.public_key, p.name]
                families.peer_info.add_metric([row.name, p.public_key, p.endpoint, p.name], 1)
                for allowed_ip in p.allowed_ips:
                    families.peer_allowed_ips.add_metric([row.name, p.public_key, allowed_ip, p.name], 1)
                families.peer_rx.add_metric(labels, p.receive_bytes)
                families.peer_tx.add_metric(labels, p.transmit_bytes)
                families.peer_last_handshake.add_metric(labels, p.last_handshake)
                families.peer_handshake_age.add_metric(labels, p.handshake_age)
                families.peer_keepalive.add_metric(labels, p.persistent_keepalive)

        families.scrape_error.add_metric([], 0)
        families.skipped.add_metric([], skipped)
        yield from families.all()
