# src/acctstore/errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


class ErrorCode:
    """Stable error codes carried by StorageError.code."""

    NOT_FOUND = "not_found"
    PUSH_KEY_UNREADABLE = "push_key_unreadable"
    INTERNAL = "internal"
    FILESYSTEM = "filesystem_error"
    ACCOUNT_DATA_NOT_FOUND = "account_data_not_found"
    INVALID_INPUT = "invalid_input"
    CRYPTO_KEY_GENERATION = "crypto_key_generation"
    KEYSTORE_ACCESS = "keystore_access"
    DESERIALIZATION = "deserialization"
    DB_OPEN = "db_open"
    DB_READ = "db_read"
    DB_WRITE = "db_write"


@dataclass(eq=False)
class StorageError(Exception):
    """Canonical error type for the account storage layer.

    The underlying exception (if any) is attached as __cause__ by raising
    with `raise StorageError(...) from err`.
    """

    code: str
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        cause = self.__cause__
        if cause is None:
            return f"{self.code}: {self.reason}"
        return f"{self.code}: {self.reason}: {cause}"


def has_code(err: BaseException, code: str) -> bool:
    return isinstance(err, StorageError) and err.code == code
