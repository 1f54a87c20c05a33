"""
Datastore module - the live SQLite file and its connection lifecycle.

This module handles:
- The connection manager contract used by every recovery component
- The SQLite implementation of that contract
- The recovery tables created inside the datastore

Invariants:
    - The datastore is a single local file, the unit of backup and restore
    - Recovery tables are created idempotently on every open
"""

from .connection import DatastoreConnection, SqliteDatastore
from .schema import apply_schema, quote_identifier

__all__ = [
    "DatastoreConnection",
    "SqliteDatastore",
    "apply_schema",
    "quote_identifier",
]
