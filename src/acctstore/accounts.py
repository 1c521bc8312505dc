# src/acctstore/accounts.py
"""Account metadata registry.

Layout:
  <root>/<account_id>/account_meta

The metadata file holds canonical JSON bytes. Field names on the wire are
mapped explicitly (see _WIRE_FIELDS) rather than derived from the dataclass,
so renaming a Python attribute never changes the file format. The directory
name is authoritative for account_id: whatever the file says is replaced on
read.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from acctstore.constants import ACCOUNT_METAFILE_NAME, DIR_MODE
from acctstore.errors import ErrorCode, StorageError
from acctstore.structured_logging import get_logger, log_event

Json = Dict[str, Any]


@dataclass
class AccountMetadata:
    account_id: str
    name: str = ""
    avatar_cid: str = ""
    public_key: str = ""
    last_opened: int = 0  # unix ms
    creation_date: int = 0  # unix ms
    error: str = ""


# (attribute, wire name, type)
_WIRE_FIELDS: Tuple[Tuple[str, str, type], ...] = (
    ("account_id", "accountId", str),
    ("name", "name", str),
    ("avatar_cid", "avatarCid", str),
    ("public_key", "publicKey", str),
    ("last_opened", "lastOpened", int),
    ("creation_date", "creationDate", int),
    ("error", "error", str),
)


def account_meta_to_wire(meta: AccountMetadata) -> Json:
    out: Json = {}
    for attr, wire, _ in _WIRE_FIELDS:
        v = getattr(meta, attr)
        # Zero values are omitted.
        if v:
            out[wire] = v
    return out


def account_meta_from_wire(obj: Any) -> AccountMetadata:
    if not isinstance(obj, dict):
        raise ValueError("account metadata must be an object")
    kwargs: Json = {}
    for attr, wire, typ in _WIRE_FIELDS:
        if wire not in obj:
            continue
        v = obj[wire]
        # bool is an int subclass; reject it explicitly.
        if not isinstance(v, typ) or isinstance(v, bool):
            raise ValueError(f"field {wire!r} must be {typ.__name__}")
        kwargs[attr] = v
    kwargs.setdefault("account_id", "")
    return AccountMetadata(**kwargs)


def encode_account_meta(meta: AccountMetadata) -> bytes:
    return json.dumps(
        account_meta_to_wire(meta), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    ).encode("utf-8")


def decode_account_meta(raw: bytes) -> AccountMetadata:
    return account_meta_from_wire(json.loads(raw.decode("utf-8")))


def check_account_id(account_id: str) -> None:
    if not account_id or account_id in {".", ".."} or "/" in account_id or os.sep in account_id:
        raise StorageError(ErrorCode.INVALID_INPUT, "invalid account id", {"account_id": account_id})


def account_metafile_path(root_dir: str | os.PathLike[str], account_id: str) -> Path:
    check_account_id(account_id)
    return Path(root_dir) / account_id / ACCOUNT_METAFILE_NAME


def get_account_meta_for_name(
    root_dir: str | os.PathLike[str],
    account_id: str,
    logger: Optional[logging.Logger] = None,
) -> AccountMetadata:
    path = account_metafile_path(root_dir, account_id)

    try:
        raw = path.read_bytes()
    except FileNotFoundError:
        raise StorageError(
            ErrorCode.ACCOUNT_DATA_NOT_FOUND, "account metadata not found", {"account_id": account_id}
        ) from None
    except OSError as e:
        log_event(
            get_logger(__name__, logger),
            "account_meta_read_failed",
            level=logging.WARNING,
            account_id=account_id,
            error=str(e),
        )
        raise StorageError(
            ErrorCode.FILESYSTEM, "unable to read account metadata", {"account_id": account_id}
        ) from e

    try:
        meta = decode_account_meta(raw)
    except (UnicodeDecodeError, ValueError, RecursionError) as e:
        raise StorageError(
            ErrorCode.DESERIALIZATION, "unable to unmarshal account metadata", {"account_id": account_id}
        ) from e

    meta.account_id = account_id
    return meta


def list_accounts(root_dir: str | os.PathLike[str], logger: Optional[logging.Logger] = None) -> List[AccountMetadata]:
    """List every account directory under root_dir.

    A missing root yields an empty list. An account whose metadata cannot be
    loaded is still listed, with only account_id and error set.
    """
    root = Path(root_dir)
    try:
        root.stat()
    except FileNotFoundError:
        return []
    except OSError as e:
        raise StorageError(ErrorCode.FILESYSTEM, "unable to stat accounts root", {"root": str(root)}) from e

    try:
        with os.scandir(root) as it:
            subdirs = [entry.name for entry in it if entry.is_dir()]
    except OSError as e:
        raise StorageError(ErrorCode.FILESYSTEM, "unable to list accounts root", {"root": str(root)}) from e

    accounts: List[AccountMetadata] = []
    for name in subdirs:
        try:
            accounts.append(get_account_meta_for_name(root, name, logger))
        except StorageError as e:
            accounts.append(AccountMetadata(account_id=name, error=str(e)))
    return accounts


def write_account_meta(root_dir: str | os.PathLike[str], meta: AccountMetadata) -> Path:
    """Atomically write meta to <root>/<meta.account_id>/account_meta."""
    path = account_metafile_path(root_dir, meta.account_id)
    try:
        path.parent.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(encode_account_meta(meta))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
    except OSError as e:
        raise StorageError(
            ErrorCode.FILESYSTEM, "unable to write account metadata", {"account_id": meta.account_id}
        ) from e
    return path
