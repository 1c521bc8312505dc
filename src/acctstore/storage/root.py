# src/acctstore/storage/root.py
"""Root datastore selection for an account.

The on-disk encryption state of datastore.sqlite is probed before anything
is opened, and must agree with the caller's key:

  file state   | key given | result
  -------------+-----------+------------------------------
  absent       | yes / no  | created (encrypted iff key)
  plaintext    | no        | opened
  plaintext    | yes       | invalid_input
  encrypted    | yes       | opened (driver checks the key)
  encrypted    | no        | invalid_input
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from acctstore.constants import DATASTORE_FILENAME, DATASTORE_TABLE_NAME, DIR_MODE, IN_MEMORY_DIR
from acctstore.errors import ErrorCode, StorageError
from acctstore.storage.datastore import Datastore, MapDatastore, MutexDatastore
from acctstore.storage.sql_datastore import Queries, SqlDatastore, ensure_table
from acctstore.storage.sqlcipher import EncryptionState, build_db_url, connect_db_url, probe_encryption_state
from acctstore.structured_logging import get_logger, log_event


def get_datastore_dir(store_dir: str) -> str:
    if not store_dir:
        raise StorageError(ErrorCode.INVALID_INPUT, "store dir is empty")
    if store_dir == IN_MEMORY_DIR:
        return IN_MEMORY_DIR

    try:
        Path(store_dir).mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(ErrorCode.FILESYSTEM, "unable to create store dir", {"dir": store_dir}) from e
    return store_dir


def check_encryption_consistency(state: EncryptionState, key: Optional[bytes], db_path: str) -> None:
    if key and state is EncryptionState.PLAINTEXT:
        raise StorageError(
            ErrorCode.INVALID_INPUT,
            "storage key provided while datastore db is NOT encrypted",
            {"path": db_path},
        )
    if not key and state is EncryptionState.ENCRYPTED:
        raise StorageError(
            ErrorCode.INVALID_INPUT,
            "missing storage key, db is encrypted",
            {"path": db_path},
        )


def get_root_datastore_for_path(
    store_dir: str | os.PathLike[str],
    key: Optional[bytes],
    logger: Optional[logging.Logger] = None,
) -> Datastore:
    log = get_logger(__name__, logger)

    if str(store_dir) == IN_MEMORY_DIR:
        return MutexDatastore(MapDatastore())

    try:
        Path(store_dir).mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(ErrorCode.FILESYSTEM, "unable to create datastore dir", {"dir": str(store_dir)}) from e

    db_path = str(Path(store_dir) / DATASTORE_FILENAME)
    state = probe_encryption_state(db_path, logger=log)
    check_encryption_consistency(state, key, db_path)

    if not key:
        log_event(
            log,
            "root_datastore_encryption_disabled",
            level=logging.WARNING,
            reason="no key provided",
            path=db_path,
        )

    queries = Queries(DATASTORE_TABLE_NAME)
    conn = connect_db_url(build_db_url(db_path, key))
    try:
        ensure_table(conn, queries)
    except StorageError:
        conn.close()
        raise

    return MutexDatastore(SqlDatastore(conn, queries))
