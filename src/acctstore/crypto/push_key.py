# src/acctstore/crypto/push_key.py
"""Per-account push keypair persisted as a flat file.

File format:
  exactly 2 * KEY_SIZE bytes, public key first, secret key second.
  No header, no versioning.

The file is published atomically: a fully written temporary file is
hard-linked into place, so readers only ever observe a complete keypair or
no file at all. When two callers race on first creation, the loser adopts
the winner's keypair.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import NamedTuple, Optional

from cryptography.hazmat.primitives.asymmetric import x25519

from acctstore.constants import DIR_MODE, KEY_SIZE
from acctstore.errors import ErrorCode, StorageError
from acctstore.structured_logging import get_logger, log_event


class PushKeyPair(NamedTuple):
    public_key: bytes
    secret_key: bytes

    def to_bytes(self) -> bytes:
        return self.public_key + self.secret_key


def generate_push_key_pair() -> PushKeyPair:
    """Generate a fresh X25519 keypair from the OS CSPRNG."""
    try:
        sk = x25519.X25519PrivateKey.generate()
        return PushKeyPair(
            public_key=sk.public_key().public_bytes_raw(),
            secret_key=sk.private_bytes_raw(),
        )
    except Exception as e:
        raise StorageError(ErrorCode.CRYPTO_KEY_GENERATION, "unable to generate push keypair") from e


def _split(contents: bytes, path: Path) -> PushKeyPair:
    if len(contents) != 2 * KEY_SIZE:
        raise StorageError(
            ErrorCode.PUSH_KEY_UNREADABLE,
            "malformed device push key file",
            {"path": str(path), "size": len(contents), "expected": 2 * KEY_SIZE},
        )
    return PushKeyPair(public_key=contents[:KEY_SIZE], secret_key=contents[KEY_SIZE:])


def _read(path: Path) -> PushKeyPair:
    try:
        contents = path.read_bytes()
    except OSError as e:
        raise StorageError(
            ErrorCode.PUSH_KEY_UNREADABLE, "unable to get device push key", {"path": str(path)}
        ) from e
    return _split(contents, path)


def _publish(path: Path, kp: PushKeyPair) -> bool:
    """Write kp next to path and link it into place.

    Returns False if another writer published first.
    """
    # mkstemp creates the file readable and writable by the owner only.
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(kp.to_bytes())
            f.flush()
            os.fsync(f.fileno())
        try:
            os.link(tmp_name, path)
        except FileExistsError:
            return False
        return True
    finally:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass


def get_device_push_key_for_path(
    file_path: str | os.PathLike[str],
    create_if_missing: bool,
    logger: Optional[logging.Logger] = None,
) -> PushKeyPair:
    """Return the push keypair stored at file_path.

    - existing file: read and split at the midpoint
    - missing file, create_if_missing=False: StorageError(not_found)
    - missing file, create_if_missing=True: generate, persist, return
    """
    path = Path(file_path)

    if path.exists():
        return _read(path)

    if not create_if_missing:
        raise StorageError(ErrorCode.NOT_FOUND, "device push key not found", {"path": str(path)})

    try:
        path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
    except OSError as e:
        raise StorageError(ErrorCode.INTERNAL, "unable to create push key directory", {"path": str(path)}) from e

    kp = generate_push_key_pair()

    try:
        published = _publish(path, kp)
    except OSError as e:
        raise StorageError(ErrorCode.INTERNAL, "unable to write device push key", {"path": str(path)}) from e

    if not published:
        return _read(path)

    log_event(get_logger(__name__, logger), "push_key_created", path=str(path))
    return kp
