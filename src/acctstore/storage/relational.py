# src/acctstore/storage/relational.py
from __future__ import annotations

import itertools
import logging
import os
import threading
import time
from functools import partial
from pathlib import Path
from typing import Callable, Optional, Tuple

from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.pool import QueuePool, StaticPool

from acctstore.constants import IN_MEMORY_DIR, MESSENGER_DATABASE_FILENAME, REPLICATION_DATABASE_FILENAME
from acctstore.errors import ErrorCode, StorageError
from acctstore.storage.sqlcipher import build_db_url, connect_db_url, driver_for_url, is_memory_url
from acctstore.structured_logging import get_logger, log_event

CloseFn = Callable[[], None]

_memdb_seq = itertools.count()


def memory_db_url() -> str:
    """Return a shared-cache memory URI that no other call returns."""
    return f"file:memdb{time.time_ns()}_{next(_memdb_seq)}?mode=memory&cache=shared"


def _closer(engine: Optional[Engine]) -> CloseFn:
    lock = threading.Lock()
    closed = False

    def close() -> None:
        nonlocal closed
        with lock:
            if closed or engine is None:
                return
            closed = True
        engine.dispose()

    return close


def get_messenger_db_for_path(
    store_dir: str | os.PathLike[str],
    key: Optional[bytes],
    logger: Optional[logging.Logger] = None,
) -> Tuple[Engine, CloseFn]:
    db_path = str(store_dir)
    if db_path != IN_MEMORY_DIR:
        db_path = str(Path(db_path) / MESSENGER_DATABASE_FILENAME)
    return get_engine_for_path(db_path, key, logger)


def get_replication_db_for_path(
    store_dir: str | os.PathLike[str],
    logger: Optional[logging.Logger] = None,
) -> Tuple[Engine, CloseFn]:
    db_path = str(store_dir)
    if db_path != IN_MEMORY_DIR:
        db_path = str(Path(db_path) / REPLICATION_DATABASE_FILENAME)
    return get_engine_for_path(db_path, None, logger)


def get_engine_for_path(
    db_path: str,
    key: Optional[bytes],
    logger: Optional[logging.Logger] = None,
) -> Tuple[Engine, CloseFn]:
    """Open a SQLAlchemy engine for db_path.

    IN_MEMORY_DIR yields a fresh private memory database on every call (any
    key is ignored). Otherwise the db URL follows the datastore convention,
    so a keyed database is opened through SQLCipher with the same raw key and
    page size. The engine is connected once before returning so that a bad
    path or wrong key fails here.
    """
    log = get_logger(__name__, logger).getChild("sql")

    if db_path == IN_MEMORY_DIR:
        db_url = memory_db_url()
    else:
        db_url = build_db_url(db_path, key)

    memory = is_memory_url(db_url)
    engine = create_engine(
        "sqlite://",
        creator=partial(connect_db_url, db_url),
        module=driver_for_url(db_url),
        poolclass=StaticPool if memory else QueuePool,
        echo=log.isEnabledFor(logging.DEBUG),
    )
    close = _closer(engine)

    try:
        with engine.connect():
            pass
    except StorageError:
        close()
        raise
    except Exception as e:
        close()
        raise StorageError(ErrorCode.DB_OPEN, "unable to open relational store", {"memory": memory}) from e

    log_event(log, "relational_store_opened", memory=memory, encrypted=bool(key) and not memory)
    return engine, close


def migrate(engine: Engine, metadata: MetaData) -> None:
    """Create all tables in metadata with foreign key enforcement off.

    Tables may then be declared in any order regardless of the references
    between them. The previous foreign_keys setting is restored afterwards.
    """
    try:
        with engine.connect() as conn:
            row = conn.exec_driver_sql("PRAGMA foreign_keys").fetchone()
            previous = int(row[0]) if row is not None else 0
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            try:
                metadata.create_all(conn)
                conn.commit()
            finally:
                conn.exec_driver_sql(f"PRAGMA foreign_keys={'ON' if previous else 'OFF'}")
    except Exception as e:
        raise StorageError(ErrorCode.DB_WRITE, "relational store migration failed") from e
