# src/acctstore/constants.py
from __future__ import annotations

from typing import Final

# Reserved directory value selecting transient in-memory storage.
IN_MEMORY_DIR: Final[str] = ":memory:"

# Size in bytes of each half of a push keypair, and of the storage key.
KEY_SIZE: Final[int] = 32

DEFAULT_PUSH_KEY_FILENAME: Final[str] = "push.key"
ACCOUNT_METAFILE_NAME: Final[str] = "account_meta"
DATASTORE_FILENAME: Final[str] = "datastore.sqlite"
MESSENGER_DATABASE_FILENAME: Final[str] = "messenger.sqlite"
REPLICATION_DATABASE_FILENAME: Final[str] = "replication.sqlite"
STORAGE_KEY_NAME: Final[str] = "storage"

DATASTORE_TABLE_NAME: Final[str] = "blocks"

# Must match between writer and reader of an encrypted database.
CIPHER_PAGE_SIZE: Final[int] = 4096

# Owner-only permissions for account directories.
DIR_MODE: Final[int] = 0o700
