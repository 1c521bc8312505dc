# src/acctstore/storage/__init__.py
"""
Account storage backends.

- datastore.py / sql_datastore.py: batching key/value store for blocks
- sqlcipher.py: encryption probe and connection URL convention
- root.py: root datastore selection with encryption consistency checks
- relational.py: SQLAlchemy engines for messenger and replication data
"""
