"""PostgreSQL request store bootstrap."""

from acmesync.db.init import SchemaMissingError, init_database, verify_schema

__all__ = [
    "SchemaMissingError",
    "init_database",
    "verify_schema",
]
