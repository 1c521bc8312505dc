# src/acctstore/__init__.py
"""Per-account key material, metadata and encrypted storage."""

__version__ = "0.1.0"
