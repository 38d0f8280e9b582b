from __future__ import annotations

import logging
import tomllib
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any, BinaryIO

logger = logging.getLogger("wireguard_exporter.peer_names")


class PeerNamesError(ValueError):
    pass


def parse_peer_names(value: str) -> dict[str, str]:
    """
    Parse an inline `keyA:foo,keyB:bar` list of public keys and friendly names.

    Every element must contain exactly one colon. Later duplicates overwrite earlier ones.
    """
    names: dict[str, str] = {}
    raw = str(value or "").strip()
    if not raw:
        return names
    for item in raw.split(","):
        parts = item.split(":")
        if len(parts) != 2:
            raise PeerNamesError(f"failed to parse {item!r} as a valid public key and peer name")
        names[parts[0]] = parts[1]
    return names


def _section_name(key: str, section: Any) -> str:
    if not isinstance(section, dict):
        raise PeerNamesError(f"peer {key!r} must be a table with a name field")
    name = section.get("name")
    if not isinstance(name, str):
        raise PeerNamesError(f"peer {key!r} is missing a string name field")
    return name


def _peer_list_names(rows: Any) -> dict[str, str]:
    # Array-of-tables form: [[peer]] public_key = "..." name = "...".
    if not isinstance(rows, list):
        raise PeerNamesError("peer must be an array of tables")
    names: dict[str, str] = {}
    for row in rows:
        if not isinstance(row, dict):
            raise PeerNamesError("peer entries must be tables")
        public_key = row.get("public_key")
        name = row.get("name")
        if not isinstance(public_key, str) or not isinstance(name, str):
            raise PeerNamesError("peer entries require string public_key and name fields")
        names[public_key] = name
    return names


def parse_peer_file(stream: BinaryIO) -> dict[str, str]:
    """
    Parse a TOML peer names document.

    Top-level tables are keyed by peer public key and carry a `name` field:

        ["xTIBA5rboUvnH4htodjb6e697QjLERt1NAB4mZqp8Dg="]
        name = "alice"

    The `[[peer]]` array form with `public_key`/`name` fields is accepted too.
    """
    try:
        data = tomllib.load(stream)
    except tomllib.TOMLDecodeError as exc:
        raise PeerNamesError(f"failed to parse peer names file: {exc}") from exc

    names: dict[str, str] = {}
    for key, section in data.items():
        if key == "peer" and isinstance(section, list):
            names.update(_peer_list_names(section))
            continue
        names[key] = _section_name(key, section)
    return names


def build_peer_names(inline: str | None = None, document: BinaryIO | None = None) -> Mapping[str, str]:
    """Merge inline and file peer names; file entries win on key collision."""
    names = parse_peer_names(inline or "")
    if names:
        logger.info("peer_names_loaded source=inline count=%s", len(names))

    if document is not None:
        from_file = parse_peer_file(document)
        logger.info("peer_names_loaded source=file count=%s", len(from_file))
        names.update(from_file)

    return MappingProxyType(names)


def load_peer_names(inline: str | None, path: str | Path | None) -> Mapping[str, str]:
    """Build the peer names mapping from the inline list and an optional TOML file path."""
    if not path:
        return build_peer_names(inline)
    try:
        with open(path, "rb") as f:
            names = build_peer_names(inline, f)
    except OSError as exc:
        raise PeerNamesError(f"failed to open peer names file: {exc}") from exc
    logger.info("peer_names_file path=%s total=%s", path, len(names))
    return names
