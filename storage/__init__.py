"""
Storage Package.

This package manages all indexer persistence.

Modules:
- database: Async engine, sessions and transaction scopes
- models/: ORM models (storage contract)
- repositories/: Data access layer
"""

from storage.database import (
    Database,
    DatabaseConfig,
    DatabaseConnectionError,
    DatabaseError,
    DatabaseInitializationError,
    DatabasePersistenceError,
    get_database_url,
)


__all__ = [
    "Database",
    "DatabaseConfig",
    "DatabaseError",
    "DatabaseConnectionError",
    "DatabasePersistenceError",
    "DatabaseInitializationError",
    "get_database_url",
]
