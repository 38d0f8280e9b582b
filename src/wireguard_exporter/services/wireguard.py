from __future__ import annotations

import logging
import subprocess
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("wireguard_exporter.wireguard")

_ABSENT = {"", "(none)", "off"}


class _Malformed:
    def __repr__(self) -> str:
        return "MALFORMED"


# Stands in for a field that `wg` printed but that could not be parsed.
MALFORMED: Any = _Malformed()


class DeviceListingError(RuntimeError):
    pass


@dataclass(frozen=True)
class Peer:
    public_key: str
    endpoint: str | None = None
    allowed_ips: tuple[str, ...] = ()
    last_handshake: datetime | None = None
    receive_bytes: int | None = 0
    transmit_bytes: int | None = 0
    persistent_keepalive: int | None = 0


@dataclass(frozen=True)
class Device:
    name: str
    public_key: str | None = None
    listen_port: int | None = None
    firewall_mark: int | None = None
    peers: tuple[Peer, ...] = field(default_factory=tuple)


def _optional(raw: str) -> str | None:
    value = (raw or "").strip()
    if value in _ABSENT:
        return None
    return value


def _int_or_none(raw: str, *, base: int = 10) -> int | None:
    try:
        return int((raw or "").strip(), base)
    except ValueError:
        return None


def _handshake(raw: str) -> datetime | None:
    seconds = _int_or_none(raw)
    if seconds is None or seconds < 0:
        return MALFORMED
    if seconds == 0:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return MALFORMED


def _unset_or_int(raw: str, *, base: int = 10) -> int | None:
    # `wg` prints 0 or "off" for an unset port or fwmark.
    if _optional(raw) is None:
        return None
    value = _int_or_none(raw, base=base)
    if value is None or value < 0:
        return MALFORMED
    return value or None


def _keepalive(raw: str) -> int | None:
    if _optional(raw) is None:
        return 0
    return _int_or_none(raw)


def _parse_device(fields: list[str]) -> Device:
    # iface, private_key, public_key, listen_port, fwmark. The private key is never kept.
    return Device(
        name=fields[0].strip(),
        public_key=_optional(fields[2]),
        listen_port=_unset_or_int(fields[3]),
        firewall_mark=_unset_or_int(fields[4], base=0),
    )


def _parse_peer(fields: list[str]) -> Peer:
    # iface, public_key, preshared_key, endpoint, allowed_ips, latest_handshake, rx, tx, keepalive
    allowed = _optional(fields[4])
    return Peer(
        public_key=fields[1].strip(),
        endpoint=_optional(fields[3]),
        allowed_ips=tuple(ip.strip() for ip in allowed.split(",") if ip.strip()) if allowed else (),
        last_handshake=_handshake(fields[5]),
        receive_bytes=_int_or_none(fields[6]),
        transmit_bytes=_int_or_none(fields[7]),
        persistent_keepalive=_keepalive(fields[8]),
    )


def parse_wg_dump(text: str) -> list[Device]:
    """
    Parse `wg show all dump` output into devices, keeping the order `wg` prints them in.

    Interface rows have 5 tab-separated fields:
      iface, private_key, public_key, listen_port, fwmark
    Peer rows have 9:
      iface, public_key, preshared_key, endpoint, allowed_ips, latest_handshake,
      transfer_rx, transfer_tx, persistent_keepalive
    """
    order: list[str] = []
    headers: dict[str, Device] = {}
    peers: dict[str, list[Peer]] = {}

    for raw in text.splitlines():
        line = raw.rstrip("\r\n")
        if not line.strip():
            continue
        fields = line.split("\t")
        iface = fields[0].strip()
        if len(fields) == 5:
            if iface not in headers:
                order.append(iface)
            headers[iface] = _parse_device(fields)
            peers.setdefault(iface, [])
        elif len(fields) == 9:
            if iface not in headers:
                logger.debug("wg_dump_orphan_peer iface=%s", iface)
                continue
            peers[iface].append(_parse_peer(fields))
        else:
            logger.debug("wg_dump_unexpected_row iface=%s fields=%s", iface, len(fields))

    return [
        Device(
            name=headers[name].name,
            public_key=headers[name].public_key,
            listen_port=headers[name].listen_port,
            firewall_mark=headers[name].firewall_mark,
            peers=tuple(peers[name]),
        )
        for name in order
    ]


class WgCommandDeviceLister:
    """Lists WireGuard devices through `wg show all dump`. Holds no state between calls."""

    def __init__(self, wg_binary: str = "wg") -> None:
        self.wg_binary = wg_binary

    def __call__(self) -> list[Device]:
        try:
            proc = subprocess.run([self.wg_binary, "show", "all", "dump"], capture_output=True, text=True)
        except FileNotFoundError as exc:
            raise DeviceListingError(f"{self.wg_binary} binary not found") from exc
        except OSError as exc:
            raise DeviceListingError(str(exc)) from exc
        if proc.returncode != 0:
            raise DeviceListingError(proc.stderr.strip() or "wg show all dump failed")
        return parse_wg_dump(proc.stdout)
