# src/acctstore/storage/sql_datastore.py
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Sequence

from acctstore.constants import DATASTORE_TABLE_NAME
from acctstore.errors import ErrorCode, StorageError
from acctstore.storage.datastore import (
    BasicBatch,
    Batch,
    Datastore,
    Entry,
    Query,
    key_not_found,
    normalize_key,
)

_TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


@dataclass(frozen=True)
class Queries:
    """SQL statements for a `(key TEXT PRIMARY KEY, data BLOB)` table."""

    table: str

    def __post_init__(self) -> None:
        if not _TABLE_NAME_RE.match(self.table):
            raise ValueError(f"invalid table name: {self.table!r}")

    def create(self) -> str:
        return f"CREATE TABLE IF NOT EXISTS {self.table} (key TEXT PRIMARY KEY, data BLOB) WITHOUT ROWID;"

    def get(self) -> str:
        return f"SELECT data FROM {self.table} WHERE key = ?;"

    def exists(self) -> str:
        return f"SELECT EXISTS(SELECT 1 FROM {self.table} WHERE key = ?);"

    def get_size(self) -> str:
        return f"SELECT length(data) FROM {self.table} WHERE key = ?;"

    def put(self) -> str:
        return (
            f"INSERT INTO {self.table} (key, data) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET data = excluded.data;"
        )

    def delete(self) -> str:
        return f"DELETE FROM {self.table} WHERE key = ?;"

    def query(self, *, keys_only: bool, with_prefix: bool) -> str:
        cols = "key, length(data)" if keys_only else "key, data"
        where = " WHERE key = ? OR key LIKE ? ESCAPE '\\'" if with_prefix else ""
        return f"SELECT {cols} FROM {self.table}{where} ORDER BY key LIMIT ? OFFSET ?;"


def _like_escape(s: str) -> str:
    return s.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def ensure_table(conn: Any, queries: Queries) -> None:
    try:
        conn.execute(queries.create())
        conn.commit()
    except Exception as e:
        raise StorageError(ErrorCode.DB_WRITE, "unable to create datastore table", {"table": queries.table}) from e


class _SqlBatch(BasicBatch):
    def __init__(self, ds: "SqlDatastore") -> None:
        super().__init__(ds)
        self._sql = ds

    def commit(self) -> None:
        self._sql._apply_batch(list(self.ops()))
        self._ops.clear()


class SqlDatastore(Datastore):
    """Datastore over a DB-API connection (sqlite3 or sqlcipher3).

    The connection is not thread-safe on its own; wrap the datastore in
    MutexDatastore before sharing it.
    """

    def __init__(self, conn: Any, queries: Queries | None = None) -> None:
        self._conn = conn
        self._q = queries or Queries(DATASTORE_TABLE_NAME)

    def _fetch(self, sql: str, params: Sequence[Any], *, one: bool) -> Any:
        try:
            cur = self._conn.execute(sql, params)
            return cur.fetchone() if one else cur.fetchall()
        except Exception as e:
            raise StorageError(ErrorCode.DB_READ, "datastore read failed", {"table": self._q.table}) from e

    def _write(self, sql: str, params: Sequence[Any], key: str) -> None:
        try:
            self._conn.execute(sql, params)
            self._conn.commit()
        except Exception as e:
            self._rollback(e)
            raise StorageError(ErrorCode.DB_WRITE, "datastore write failed", {"key": key}) from e

    def _rollback(self, err: Exception) -> None:
        try:
            self._conn.rollback()
        except Exception as rb_err:
            err.add_note(f"rollback also failed: {rb_err}")

    def get(self, key: str) -> bytes:
        k = normalize_key(key)
        row = self._fetch(self._q.get(), (k,), one=True)
        if row is None:
            raise key_not_found(k)
        return bytes(row[0])

    def has(self, key: str) -> bool:
        row = self._fetch(self._q.exists(), (normalize_key(key),), one=True)
        return bool(row[0]) if row is not None else False

    def get_size(self, key: str) -> int:
        k = normalize_key(key)
        row = self._fetch(self._q.get_size(), (k,), one=True)
        if row is None:
            raise key_not_found(k)
        return int(row[0] or 0)

    def put(self, key: str, value: bytes) -> None:
        k = normalize_key(key)
        self._write(self._q.put(), (k, bytes(value)), k)

    def delete(self, key: str) -> None:
        k = normalize_key(key)
        self._write(self._q.delete(), (k,), k)

    def query(self, q: Query = Query()) -> List[Entry]:
        prefix = normalize_key(q.prefix)
        with_prefix = prefix != "/"
        params: list[Any] = []
        if with_prefix:
            params += [prefix, _like_escape(prefix) + "/%"]
        params += [q.limit if q.limit > 0 else -1, max(0, q.offset)]

        rows = self._fetch(self._q.query(keys_only=q.keys_only, with_prefix=with_prefix), params, one=False)
        out: List[Entry] = []
        for k, v in rows:
            if q.keys_only:
                out.append(Entry(key=str(k), value=None, size=int(v or 0)))
            else:
                data = bytes(v) if v is not None else b""
                out.append(Entry(key=str(k), value=data, size=len(data)))
        return out

    def batch(self) -> Batch:
        return _SqlBatch(self)

    def _apply_batch(self, ops: list[tuple[str, bytes | None]]) -> None:
        try:
            for key, value in ops:
                if value is None:
                    self._conn.execute(self._q.delete(), (key,))
                else:
                    self._conn.execute(self._q.put(), (key, value))
            self._conn.commit()
        except Exception as e:
            self._rollback(e)
            raise StorageError(ErrorCode.DB_WRITE, "datastore batch commit failed", {"ops": len(ops)}) from e

    def close(self) -> None:
        self._conn.close()
