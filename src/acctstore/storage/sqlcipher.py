# src/acctstore/storage/sqlcipher.py
"""SQLite / SQLCipher connection helpers.

Connection URL convention shared by the datastore and the relational stores:

  unencrypted:  <path>
  encrypted:    file:<percent-encoded path>?_pragma_key=x'<hex key>'&_pragma_cipher_page_size=4096
  in-memory:    file:memdb<unique>?mode=memory&cache=shared

`_pragma_*` parameters are applied as PRAGMA statements right after the
connection is opened. The key pragma must run first.
"""

from __future__ import annotations

import enum
import logging
import re
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
from urllib.parse import parse_qsl, quote, urlencode

from acctstore.constants import CIPHER_PAGE_SIZE
from acctstore.errors import ErrorCode, StorageError
from acctstore.structured_logging import get_logger, log_event

# Plaintext SQLite databases always start with this 16-byte header.
SQLITE_HEADER = b"SQLite format 3\x00"

_PRAGMA_PREFIX = "_pragma_"
_RAW_KEY_RE = re.compile(r"^x'[0-9a-fA-F]+'$")


class EncryptionState(enum.Enum):
    ABSENT = "absent"
    PLAINTEXT = "plaintext"
    ENCRYPTED = "encrypted"


def is_encrypted(db_path: str | Path) -> bool:
    """Return True if db_path does not start with the plaintext SQLite header.

    An empty file is a fresh plaintext database. Raises OSError if the
    header cannot be read (missing file, truncated header, permission error).
    """
    with open(db_path, "rb") as f:
        header = f.read(len(SQLITE_HEADER))
    if not header:
        return False
    if len(header) != len(SQLITE_HEADER):
        raise OSError(f"short sqlite header in {db_path}")
    return header != SQLITE_HEADER


def probe_encryption_state(db_path: str | Path, logger: Optional[logging.Logger] = None) -> EncryptionState:
    """Classify db_path as absent, plaintext or encrypted.

    A probe failure on an existing file is reported as PLAINTEXT and logged,
    so an unreadable header never blocks opening a legitimate plaintext
    database.
    """
    p = Path(db_path)
    if not p.exists():
        return EncryptionState.ABSENT
    try:
        return EncryptionState.ENCRYPTED if is_encrypted(p) else EncryptionState.PLAINTEXT
    except OSError as e:
        log_event(
            get_logger(__name__, logger),
            "encryption_probe_failed",
            level=logging.WARNING,
            path=str(p),
            error=str(e),
        )
        return EncryptionState.PLAINTEXT


def build_db_url(db_path: str, key: Optional[bytes] = None) -> str:
    """Return the connection URL for db_path.

    Without a key the bare path is returned. With a key the path is
    percent-encoded into a `file:` URI, so characters such as '?' or '#' in
    directory names can never be mistaken for the query.
    """
    if not key and not db_path.startswith("file:"):
        return db_path
    uri = f"file:{quote(db_path)}"
    if not key:
        return uri
    params = {
        f"{_PRAGMA_PREFIX}key": f"x'{key.hex()}'",
        f"{_PRAGMA_PREFIX}cipher_page_size": str(CIPHER_PAGE_SIZE),
    }
    query = urlencode(params, safe="'")
    return f"{uri}?{query}"


def parse_db_url(db_url: str) -> Tuple[str, Dict[str, str], Dict[str, str]]:
    """Split a db URL into (target, pragmas, other query params).

    Only `file:` URIs carry a query; anything else is a bare path and is
    returned untouched. `file:` URIs keep their non-pragma params in the
    target so sqlite can interpret them (mode=memory, cache=shared, ...).
    """
    if not db_url.startswith("file:"):
        return db_url, {}, {}
    target, sep, query = db_url.partition("?")
    if not sep:
        return target, {}, {}
    pragmas: Dict[str, str] = {}
    params: Dict[str, str] = {}
    for name, value in parse_qsl(query, keep_blank_values=True):
        if name.startswith(_PRAGMA_PREFIX):
            pragmas[name[len(_PRAGMA_PREFIX):]] = value
        else:
            params[name] = value
    if params:
        target = f"{target}?{urlencode(params)}"
        params = {}
    return target, pragmas, params


def is_memory_url(db_url: str) -> bool:
    target, _, _ = parse_db_url(db_url)
    return target == ":memory:" or "mode=memory" in target


def _driver_for(pragmas: Dict[str, str]) -> Any:
    """Return the DB-API module needed for the given pragmas."""
    if "key" not in pragmas:
        return sqlite3
    try:
        import sqlcipher3
    except ImportError as e:
        raise StorageError(
            ErrorCode.DB_OPEN,
            "encrypted database requested but sqlcipher3 is not installed",
            {"hint": "pip install sqlcipher3-binary"},
        ) from e
    return sqlcipher3


def driver_for_url(db_url: str) -> Any:
    _, pragmas, _ = parse_db_url(db_url)
    return _driver_for(pragmas)


def _apply_pragmas(conn: Any, pragmas: Dict[str, str]) -> None:
    ordered = sorted(pragmas.items(), key=lambda kv: kv[0] != "key")
    for name, value in ordered:
        if name == "key":
            if not _RAW_KEY_RE.match(value):
                raise ValueError("_pragma_key must be a raw hex key (x'...')")
            conn.execute(f'PRAGMA key = "{value}"')
        elif name.isidentifier():
            conn.execute(f"PRAGMA {name} = {int(value)}")
        else:
            raise ValueError(f"invalid pragma name: {name!r}")


def connect_db_url(db_url: str) -> Any:
    """Open a DB-API connection for db_url.

    The connection may be shared across threads; callers serialize access.
    The first read forces SQLCipher to validate the key, so a wrong key
    fails here rather than on first use.
    """
    target, pragmas, _ = parse_db_url(db_url)
    driver = _driver_for(pragmas)
    try:
        conn = driver.connect(target, check_same_thread=False, uri=target.startswith("file:"))
    except Exception as e:
        raise StorageError(ErrorCode.DB_OPEN, "unable to open database", {"target": _redact(target)}) from e
    try:
        _apply_pragmas(conn, pragmas)
        conn.execute("SELECT count(*) FROM sqlite_master").fetchone()
    except Exception as e:
        conn.close()
        raise StorageError(ErrorCode.DB_OPEN, "unable to open database", {"target": _redact(target)}) from e
    return conn


def _redact(target: str) -> str:
    return target.split("?", 1)[0]
