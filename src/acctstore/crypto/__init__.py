# src/acctstore/crypto/__init__.py
from acctstore.crypto.push_key import PushKeyPair, generate_push_key_pair, get_device_push_key_for_path

__all__ = ["PushKeyPair", "generate_push_key_pair", "get_device_push_key_for_path"]
