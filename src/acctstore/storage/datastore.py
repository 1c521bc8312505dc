# src/acctstore/storage/datastore.py
"""Batching key/value datastore used for content-addressed blocks.

Keys are slash-separated paths ("/blocks/<cid>"). Every key is normalized
to a single leading slash with no trailing slash and no empty segments, so
"a//b/" and "/a/b" address the same entry.

Implementations:
  - MapDatastore:   in-memory dict, no persistence
  - SqlDatastore:   SQLite table (see sql_datastore.py)
  - MutexDatastore: wraps any of the above and serializes every call
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple

from acctstore.errors import ErrorCode, StorageError


def normalize_key(key: str) -> str:
    parts = [p for p in str(key).split("/") if p]
    return "/" + "/".join(parts)


def key_not_found(key: str) -> StorageError:
    return StorageError(ErrorCode.NOT_FOUND, "datastore: key not found", {"key": key})


@dataclass(frozen=True)
class Entry:
    key: str
    value: Optional[bytes]
    size: int


@dataclass(frozen=True)
class Query:
    prefix: str = "/"
    limit: int = 0  # 0 means no limit
    offset: int = 0
    keys_only: bool = False


def _prefix_matches(prefix: str, key: str) -> bool:
    p = normalize_key(prefix)
    if p == "/":
        return True
    return key == p or key.startswith(p + "/")


class Batch(ABC):
    @abstractmethod
    def put(self, key: str, value: bytes) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def commit(self) -> None: ...


class Datastore(ABC):
    @abstractmethod
    def get(self, key: str) -> bytes: ...

    @abstractmethod
    def has(self, key: str) -> bool: ...

    @abstractmethod
    def get_size(self, key: str) -> int: ...

    @abstractmethod
    def put(self, key: str, value: bytes) -> None: ...

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove key. Deleting a missing key is not an error."""

    @abstractmethod
    def query(self, q: Query = Query()) -> List[Entry]: ...

    @abstractmethod
    def batch(self) -> Batch: ...

    def sync(self, prefix: str = "/") -> None:
        return None

    def close(self) -> None:
        return None

    def __enter__(self) -> "Datastore":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class BasicBatch(Batch):
    """Buffers operations and replays them against a datastore on commit."""

    def __init__(self, ds: Datastore) -> None:
        self._ds = ds
        self._ops: Dict[str, Optional[bytes]] = {}

    def put(self, key: str, value: bytes) -> None:
        self._ops[normalize_key(key)] = bytes(value)

    def delete(self, key: str) -> None:
        self._ops[normalize_key(key)] = None

    def ops(self) -> Iterator[Tuple[str, Optional[bytes]]]:
        return iter(self._ops.items())

    def commit(self) -> None:
        for key, value in self._ops.items():
            if value is None:
                self._ds.delete(key)
            else:
                self._ds.put(key, value)
        self._ops.clear()


class MapDatastore(Datastore):
    def __init__(self) -> None:
        self._values: Dict[str, bytes] = {}

    def get(self, key: str) -> bytes:
        k = normalize_key(key)
        try:
            return self._values[k]
        except KeyError:
            raise key_not_found(k) from None

    def has(self, key: str) -> bool:
        return normalize_key(key) in self._values

    def get_size(self, key: str) -> int:
        return len(self.get(key))

    def put(self, key: str, value: bytes) -> None:
        self._values[normalize_key(key)] = bytes(value)

    def delete(self, key: str) -> None:
        self._values.pop(normalize_key(key), None)

    def query(self, q: Query = Query()) -> List[Entry]:
        keys = sorted(k for k in self._values if _prefix_matches(q.prefix, k))
        keys = keys[max(0, q.offset):]
        if q.limit > 0:
            keys = keys[: q.limit]
        out: List[Entry] = []
        for k in keys:
            v = self._values[k]
            out.append(Entry(key=k, value=None if q.keys_only else v, size=len(v)))
        return out

    def batch(self) -> Batch:
        return BasicBatch(self)


class _SyncBatch(Batch):
    def __init__(self, inner: Batch, lock: threading.RLock) -> None:
        self._inner = inner
        self._lock = lock

    def put(self, key: str, value: bytes) -> None:
        with self._lock:
            self._inner.put(key, value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._inner.delete(key)

    def commit(self) -> None:
        with self._lock:
            self._inner.commit()


class MutexDatastore(Datastore):
    """Serializes all access to the wrapped datastore behind one lock."""

    def __init__(self, child: Datastore) -> None:
        self._child = child
        self._lock = threading.RLock()

    @property
    def child(self) -> Datastore:
        return self._child

    def get(self, key: str) -> bytes:
        with self._lock:
            return self._child.get(key)

    def has(self, key: str) -> bool:
        with self._lock:
            return self._child.has(key)

    def get_size(self, key: str) -> int:
        with self._lock:
            return self._child.get_size(key)

    def put(self, key: str, value: bytes) -> None:
        with self._lock:
            self._child.put(key, value)

    def delete(self, key: str) -> None:
        with self._lock:
            self._child.delete(key)

    def query(self, q: Query = Query()) -> List[Entry]:
        with self._lock:
            return self._child.query(q)

    def batch(self) -> Batch:
        with self._lock:
            return _SyncBatch(self._child.batch(), self._lock)

    def sync(self, prefix: str = "/") -> None:
        with self._lock:
            self._child.sync(prefix)

    def close(self) -> None:
        with self._lock:
            self._child.close()
