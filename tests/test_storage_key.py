from __future__ import annotations

from typing import Dict

import pytest

from acctstore.constants import KEY_SIZE, STORAGE_KEY_NAME
from acctstore.errors import ErrorCode, StorageError
from acctstore.keystore import KeystoreEntryNotFound, MemoryKeystore, get_or_create_storage_key


class _WrappingKeystore:
    """Stores a transformed form of what it is given, like a wrapping keychain."""

    def __init__(self) -> None:
        self.entries: Dict[str, bytes] = {}
        self.puts = 0

    def get(self, name: str) -> bytes:
        if name not in self.entries:
            raise KeystoreEntryNotFound(name)
        return bytes(b ^ 0xFF for b in self.entries[name])

    def put(self, name: str, data: bytes) -> None:
        self.puts += 1
        self.entries[name] = bytes(data)


class _ReadOnlyKeystore:
    def get(self, name: str) -> bytes:
        raise KeystoreEntryNotFound(name)

    def put(self, name: str, data: bytes) -> None:
        raise PermissionError("keystore is read-only")


class _ForgetfulKeystore:
    def __init__(self) -> None:
        self.puts = 0

    def get(self, name: str) -> bytes:
        raise KeystoreEntryNotFound(name)

    def put(self, name: str, data: bytes) -> None:
        self.puts += 1


def test_existing_key_returned_without_writing() -> None:
    ks = MemoryKeystore()
    ks.put(STORAGE_KEY_NAME, b"k" * KEY_SIZE)

    assert get_or_create_storage_key(ks) == b"k" * KEY_SIZE


def test_missing_key_is_generated_and_stable() -> None:
    ks = MemoryKeystore()

    first = get_or_create_storage_key(ks)
    assert len(first) == KEY_SIZE
    assert ks.get(STORAGE_KEY_NAME) == first

    assert get_or_create_storage_key(ks) == first


def test_returned_key_is_what_keystore_reads_back() -> None:
    ks = _WrappingKeystore()

    key = get_or_create_storage_key(ks)

    assert ks.puts == 1
    assert key == ks.get(STORAGE_KEY_NAME)
    assert key != ks.entries[STORAGE_KEY_NAME]
    assert get_or_create_storage_key(ks) == key
    assert ks.puts == 1


def test_put_failure_is_keystore_access_with_both_causes() -> None:
    with pytest.raises(StorageError) as ei:
        get_or_create_storage_key(_ReadOnlyKeystore())

    err = ei.value
    assert err.code == ErrorCode.KEYSTORE_ACCESS
    assert err.details["stage"] == "put"
    assert isinstance(err.__cause__, ExceptionGroup)
    kinds = {type(e) for e in err.__cause__.exceptions}
    assert kinds == {KeystoreEntryNotFound, PermissionError}


def test_confirm_failure_is_keystore_access() -> None:
    ks = _ForgetfulKeystore()

    with pytest.raises(StorageError) as ei:
        get_or_create_storage_key(ks)

    assert ks.puts == 1
    assert ei.value.code == ErrorCode.KEYSTORE_ACCESS
    assert ei.value.details["stage"] == "confirm"


def test_generation_failure_is_crypto_key_generation(monkeypatch: pytest.MonkeyPatch) -> None:
    import acctstore.keystore as keystore_mod

    def boom(n: int) -> bytes:
        raise OSError("no entropy")

    monkeypatch.setattr(keystore_mod.secrets, "token_bytes", boom)

    with pytest.raises(StorageError) as ei:
        get_or_create_storage_key(MemoryKeystore())

    assert ei.value.code == ErrorCode.CRYPTO_KEY_GENERATION
