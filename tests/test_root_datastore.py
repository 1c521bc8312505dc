from __future__ import annotations

import logging
import os
from pathlib import Path

import pytest

from acctstore.constants import DATASTORE_FILENAME, IN_MEMORY_DIR, KEY_SIZE
from acctstore.errors import ErrorCode, StorageError
from acctstore.storage.datastore import MapDatastore, MutexDatastore
from acctstore.storage.root import get_datastore_dir, get_root_datastore_for_path
from acctstore.storage.sqlcipher import (
    SQLITE_HEADER,
    EncryptionState,
    build_db_url,
    is_encrypted,
    parse_db_url,
    probe_encryption_state,
)


def _fake_encrypted_db(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"\x8f" * 4096)


def test_in_memory_sentinel_is_map_backed_and_private() -> None:
    a = get_root_datastore_for_path(IN_MEMORY_DIR, None)
    b = get_root_datastore_for_path(IN_MEMORY_DIR, b"k" * KEY_SIZE)

    assert isinstance(a, MutexDatastore)
    assert isinstance(a.child, MapDatastore)

    a.put("/x", b"1")
    assert not b.has("/x")


def test_get_datastore_dir(tmp_path: Path) -> None:
    with pytest.raises(StorageError) as ei:
        get_datastore_dir("")
    assert ei.value.code == ErrorCode.INVALID_INPUT

    assert get_datastore_dir(IN_MEMORY_DIR) == IN_MEMORY_DIR
    assert not Path(IN_MEMORY_DIR).exists()

    target = tmp_path / "a" / "b"
    assert get_datastore_dir(str(target)) == str(target)
    assert target.is_dir()


def test_plaintext_created_then_reopened(tmp_path: Path) -> None:
    ds = get_root_datastore_for_path(tmp_path, None)
    ds.put("/blocks/a", b"data")
    ds.close()

    db = tmp_path / DATASTORE_FILENAME
    assert db.read_bytes()[: len(SQLITE_HEADER)] == SQLITE_HEADER
    assert probe_encryption_state(db) is EncryptionState.PLAINTEXT

    ds = get_root_datastore_for_path(tmp_path, None)
    assert ds.get("/blocks/a") == b"data"
    ds.close()


def test_no_key_logs_encryption_disabled(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING):
        ds = get_root_datastore_for_path(tmp_path, None)
    ds.close()

    assert any("root_datastore_encryption_disabled" in r.getMessage() for r in caplog.records)


def test_key_with_plaintext_db_is_invalid_input(tmp_path: Path) -> None:
    get_root_datastore_for_path(tmp_path, None).close()
    before = (tmp_path / DATASTORE_FILENAME).read_bytes()

    with pytest.raises(StorageError) as ei:
        get_root_datastore_for_path(tmp_path, os.urandom(KEY_SIZE))

    assert ei.value.code == ErrorCode.INVALID_INPUT
    assert "NOT encrypted" in ei.value.reason
    assert (tmp_path / DATASTORE_FILENAME).read_bytes() == before


def test_missing_key_with_encrypted_db_is_invalid_input(tmp_path: Path) -> None:
    _fake_encrypted_db(tmp_path / DATASTORE_FILENAME)

    with pytest.raises(StorageError) as ei:
        get_root_datastore_for_path(tmp_path, None)

    assert ei.value.code == ErrorCode.INVALID_INPUT
    assert ei.value.reason == "missing storage key, db is encrypted"


def test_is_encrypted_edge_cases(tmp_path: Path) -> None:
    empty = tmp_path / "empty.sqlite"
    empty.write_bytes(b"")
    assert is_encrypted(empty) is False

    short = tmp_path / "short.sqlite"
    short.write_bytes(SQLITE_HEADER[:5])
    with pytest.raises(OSError):
        is_encrypted(short)

    with pytest.raises(OSError):
        is_encrypted(tmp_path / "missing.sqlite")


def test_probe_failure_is_treated_as_plaintext(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    short = tmp_path / "short.sqlite"
    short.write_bytes(b"abc")

    assert probe_encryption_state(tmp_path / "missing.sqlite") is EncryptionState.ABSENT
    with caplog.at_level(logging.WARNING):
        assert probe_encryption_state(short) is EncryptionState.PLAINTEXT
    assert any("encryption_probe_failed" in r.getMessage() for r in caplog.records)


def test_db_url_convention() -> None:
    key = bytes(range(KEY_SIZE))
    assert build_db_url("/d/datastore.sqlite", None) == "/d/datastore.sqlite"

    url = build_db_url("/d/datastore.sqlite", key)
    assert url == f"file:/d/datastore.sqlite?_pragma_key=x'{key.hex()}'&_pragma_cipher_page_size=4096"

    target, pragmas, params = parse_db_url(url)
    assert target == "file:/d/datastore.sqlite"
    assert pragmas == {"key": f"x'{key.hex()}'", "cipher_page_size": "4096"}
    assert params == {}


def test_url_keeps_key_when_path_contains_query_chars() -> None:
    key = bytes(range(KEY_SIZE))
    path = "/tmp/w?x#y%z/datastore.sqlite"

    target, pragmas, _ = parse_db_url(build_db_url(path, key))

    assert target == "file:/tmp/w%3Fx%23y%25z/datastore.sqlite"
    assert pragmas["key"] == f"x'{key.hex()}'"

    # Bare paths are never split.
    assert parse_db_url(path) == (path, {}, {})


def test_plaintext_store_in_dir_with_question_mark(tmp_path: Path) -> None:
    store_dir = tmp_path / "acct?1"

    ds = get_root_datastore_for_path(store_dir, None)
    ds.put("/blocks/a", b"1")
    ds.close()

    assert sorted(p.name for p in tmp_path.iterdir()) == ["acct?1"]
    assert (store_dir / DATASTORE_FILENAME).is_file()

    with pytest.raises(StorageError) as ei:
        get_root_datastore_for_path(store_dir, os.urandom(KEY_SIZE))
    assert ei.value.code == ErrorCode.INVALID_INPUT


def test_encrypted_created_then_reopened(tmp_path: Path) -> None:
    pytest.importorskip("sqlcipher3")
    key = os.urandom(KEY_SIZE)

    ds = get_root_datastore_for_path(tmp_path, key)
    ds.put("/blocks/a", b"secret")
    ds.close()

    db = tmp_path / DATASTORE_FILENAME
    assert probe_encryption_state(db) is EncryptionState.ENCRYPTED
    assert b"secret" not in db.read_bytes()

    ds = get_root_datastore_for_path(tmp_path, key)
    assert ds.get("/blocks/a") == b"secret"
    ds.close()

    with pytest.raises(StorageError) as ei:
        get_root_datastore_for_path(tmp_path, None)
    assert ei.value.code == ErrorCode.INVALID_INPUT


def test_encrypted_wrong_key_fails_to_open(tmp_path: Path) -> None:
    pytest.importorskip("sqlcipher3")
    get_root_datastore_for_path(tmp_path, os.urandom(KEY_SIZE)).close()

    with pytest.raises(StorageError) as ei:
        get_root_datastore_for_path(tmp_path, os.urandom(KEY_SIZE))
    assert ei.value.code == ErrorCode.DB_OPEN


def test_encrypted_store_in_dir_with_question_mark(tmp_path: Path) -> None:
    pytest.importorskip("sqlcipher3")
    store_dir = tmp_path / "acct?1"
    key = os.urandom(KEY_SIZE)

    ds = get_root_datastore_for_path(store_dir, key)
    ds.put("/blocks/a", b"secret")
    ds.close()

    assert sorted(p.name for p in tmp_path.iterdir()) == ["acct?1"]
    assert probe_encryption_state(store_dir / DATASTORE_FILENAME) is EncryptionState.ENCRYPTED

    ds = get_root_datastore_for_path(store_dir, key)
    assert ds.get("/blocks/a") == b"secret"
    ds.close()
