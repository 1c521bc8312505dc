# src/acctstore/bootstrap.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from sqlalchemy.engine import Engine

from acctstore.accounts import check_account_id
from acctstore.constants import DEFAULT_PUSH_KEY_FILENAME, IN_MEMORY_DIR
from acctstore.crypto.push_key import PushKeyPair, generate_push_key_pair, get_device_push_key_for_path
from acctstore.keystore import NativeKeystore, get_or_create_storage_key
from acctstore.storage.datastore import Datastore
from acctstore.storage.relational import get_messenger_db_for_path, get_replication_db_for_path
from acctstore.storage.root import get_datastore_dir, get_root_datastore_for_path
from acctstore.structured_logging import get_logger, log_event


@dataclass
class AccountStores:
    """Everything opened for one account. close() releases it all once."""

    account_id: str
    account_dir: str
    push_key: PushKeyPair
    root_datastore: Datastore
    messenger_db: Engine
    replication_db: Engine
    encrypted: bool
    _closers: List[Callable[[], None]] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def close(self) -> None:
        with self._lock:
            closers, self._closers = self._closers, []
        _close_all(closers)


def _close_all(closers: List[Callable[[], None]]) -> None:
    # Reverse open order; keep going on failure, then re-raise the first error.
    first: Optional[BaseException] = None
    for fn in reversed(closers):
        try:
            fn()
        except Exception as e:
            if first is None:
                first = e
    if first is not None:
        raise first


def open_account(
    root_dir: str,
    account_id: str,
    *,
    keystore: Optional[NativeKeystore] = None,
    logger: Optional[logging.Logger] = None,
) -> AccountStores:
    """Open the push key, datastore and relational stores of one account.

    The storage key comes from `keystore`; without one every store is opened
    unencrypted. If any step fails, whatever was already opened is closed
    before the error propagates.
    """
    log = get_logger(__name__, logger)

    root = get_datastore_dir(root_dir)
    in_memory = root == IN_MEMORY_DIR
    if not in_memory:
        check_account_id(account_id)
    account_dir = IN_MEMORY_DIR if in_memory else str(Path(root) / account_id)

    if in_memory:
        push_key = generate_push_key_pair()
    else:
        push_key = get_device_push_key_for_path(
            Path(account_dir) / DEFAULT_PUSH_KEY_FILENAME, create_if_missing=True, logger=log
        )

    key = get_or_create_storage_key(keystore, logger=log) if keystore is not None else None

    closers: List[Callable[[], None]] = []
    try:
        ds = get_root_datastore_for_path(account_dir, key, logger=log)
        closers.append(ds.close)

        messenger_db, close_messenger = get_messenger_db_for_path(account_dir, key, logger=log)
        closers.append(close_messenger)

        replication_db, close_replication = get_replication_db_for_path(account_dir, logger=log)
        closers.append(close_replication)
    except BaseException as e:
        try:
            _close_all(closers)
        except Exception as close_err:
            e.add_note(f"cleanup after failed open also failed: {close_err}")
        raise

    log_event(log, "account_opened", account_id=account_id, in_memory=in_memory, encrypted=bool(key))
    return AccountStores(
        account_id=account_id,
        account_dir=account_dir,
        push_key=push_key,
        root_datastore=ds,
        messenger_db=messenger_db,
        replication_db=replication_db,
        encrypted=bool(key),
        _closers=closers,
    )
