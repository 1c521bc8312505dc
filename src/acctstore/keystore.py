# src/acctstore/keystore.py
"""Storage key retrieval from a platform keystore capability.

The keystore is an injected dependency: callers pass whatever secure storage
the platform offers (OS keychain bridge, HSM shim, MemoryKeystore in tests).
It only needs to expose:

  get(name) -> bytes      raises if the entry is missing or unreadable
  put(name, data) -> None raises on failure

A freshly generated key is stored and then read back. The keystore may wrap
or transform what it holds, so the only key ever returned is the one the
keystore confirms it can produce.
"""

from __future__ import annotations

import logging
import secrets
import threading
from typing import Dict, Optional, Protocol

from acctstore.constants import KEY_SIZE, STORAGE_KEY_NAME
from acctstore.errors import ErrorCode, StorageError
from acctstore.structured_logging import get_logger, log_event


class NativeKeystore(Protocol):
    def get(self, name: str) -> bytes: ...

    def put(self, name: str, data: bytes) -> None: ...


class KeystoreEntryNotFound(KeyError):
    pass


class MemoryKeystore:
    """Process-local keystore. Entries are lost when the process exits."""

    def __init__(self) -> None:
        self._entries: Dict[str, bytes] = {}
        self._lock = threading.Lock()

    def get(self, name: str) -> bytes:
        with self._lock:
            data = self._entries.get(name)
        if data is None:
            raise KeystoreEntryNotFound(name)
        return bytes(data)

    def put(self, name: str, data: bytes) -> None:
        with self._lock:
            self._entries[name] = bytes(data)


def get_or_create_storage_key(ks: NativeKeystore, logger: Optional[logging.Logger] = None) -> bytes:
    try:
        return ks.get(STORAGE_KEY_NAME)
    except Exception as get_err:
        first_err = get_err

    try:
        key_data = secrets.token_bytes(KEY_SIZE)
    except Exception as e:
        raise StorageError(ErrorCode.CRYPTO_KEY_GENERATION, "unable to generate storage key") from e

    try:
        ks.put(STORAGE_KEY_NAME, key_data)
    except Exception as put_err:
        raise StorageError(
            ErrorCode.KEYSTORE_ACCESS,
            "unable to store storage key",
            {"stage": "put", "get_error": str(first_err), "put_error": str(put_err)},
        ) from ExceptionGroup("keystore get/put failed", [first_err, put_err])

    try:
        key = ks.get(STORAGE_KEY_NAME)
    except Exception as confirm_err:
        raise StorageError(
            ErrorCode.KEYSTORE_ACCESS,
            "unable to read back storage key",
            {"stage": "confirm", "get_error": str(first_err), "confirm_error": str(confirm_err)},
        ) from ExceptionGroup("keystore get/confirm failed", [first_err, confirm_err])

    log_event(get_logger(__name__, logger), "storage_key_created", name=STORAGE_KEY_NAME)
    return key
