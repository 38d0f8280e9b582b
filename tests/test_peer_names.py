import io
from pathlib import Path

import pytest

from wireguard_exporter.services.peer_names import (
    PeerNamesError,
    build_peer_names,
    load_peer_names,
    parse_peer_file,
    parse_peer_names,
)


def test_parse_peer_names_pairs() -> None:
    assert parse_peer_names("abc:alice,def:bob") == {"abc": "alice", "def": "bob"}


def test_parse_peer_names_empty() -> None:
    assert parse_peer_names("") == {}
    assert parse_peer_names("   ") == {}


def test_parse_peer_names_last_duplicate_wins() -> None:
    assert parse_peer_names("abc:alice,abc:carol") == {"abc": "carol"}


@pytest.mark.parametrize("value", ["abc:alice,broken", "abc:alice:extra", "abc:alice,"])
def test_parse_peer_names_rejects_malformed_elements(value: str) -> None:
    with pytest.raises(PeerNamesError):
        parse_peer_names(value)


def test_parse_peer_file_tables_keyed_by_public_key() -> None:
    document = b"""
["xTIBA5rboUvnH4htodjb6e697QjLERt1NAB4mZqp8Dg="]
name = "alice"

["TrMvSoP4jYQlY6RIzBgbssQqY3vxI2Pi+y71lOWWXX0="]
name = "bob"
"""
    assert parse_peer_file(io.BytesIO(document)) == {
        "xTIBA5rboUvnH4htodjb6e697QjLERt1NAB4mZqp8Dg=": "alice",
        "TrMvSoP4jYQlY6RIzBgbssQqY3vxI2Pi+y71lOWWXX0=": "bob",
    }


def test_parse_peer_file_peer_array_form() -> None:
    document = b"""
[[peer]]
public_key = "abc"
name = "alice"

[[peer]]
public_key = "abc"
name = "carol"
"""
    assert parse_peer_file(io.BytesIO(document)) == {"abc": "carol"}


def test_parse_peer_file_empty_document() -> None:
    assert parse_peer_file(io.BytesIO(b"")) == {}


@pytest.mark.parametrize(
    "document",
    [
        b"[abc\nname = 'alice'",
        b"abc = 'alice'",
        b"[abc]\nlabel = 'alice'",
        b"[abc]\nname = 42",
        b"[[peer]]\nname = 'alice'",
    ],
)
def test_parse_peer_file_rejects_malformed_documents(document: bytes) -> None:
    with pytest.raises(PeerNamesError):
        parse_peer_file(io.BytesIO(document))


def test_build_peer_names_document_wins_over_inline() -> None:
    names = build_peer_names("abc:alice,def:bob", io.BytesIO(b'[abc]\nname = "carol"\n'))
    assert dict(names) == {"abc": "carol", "def": "bob"}


def test_build_peer_names_is_read_only() -> None:
    names = build_peer_names("abc:alice")
    with pytest.raises(TypeError):
        names["def"] = "bob"  # type: ignore[index]


def test_build_peer_names_without_sources() -> None:
    assert dict(build_peer_names(None, None)) == {}


def test_load_peer_names_reads_file(tmp_path: Path) -> None:
    path = tmp_path / "peers.toml"
    path.write_text('[def]\nname = "dave"\n', encoding="utf-8")

    names = load_peer_names("abc:alice,def:bob", path)
    assert dict(names) == {"abc": "alice", "def": "dave"}


def test_load_peer_names_missing_file(tmp_path: Path) -> None:
    with pytest.raises(PeerNamesError):
        load_peer_names("", tmp_path / "missing.toml")
