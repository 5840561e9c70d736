"""PostgreSQL connection and schema bootstrap for the request store.

``storage.backend: database`` keeps certificate requests in the
``certificate_requests`` table.  With ``auto_setup`` the bundled
``schema.sql`` is applied on first connect; without it the table and
the partial unique index that enforces one live request per
certificate must already exist, and :func:`init_database` refuses to
start otherwise.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from pypgkit import Database, DatabaseConfig

if TYPE_CHECKING:
    from acmesync.config.settings import DatabaseSettings

_SCHEMA_PATH = Path(__file__).parent / "schema.sql"

REQUESTS_TABLE = "certificate_requests"
ACTIVE_INDEX = "uq_certificate_requests_active"

log = logging.getLogger(__name__)


class SchemaMissingError(RuntimeError):
    """The request table or its dedup index is absent."""


def _pool_config(settings: DatabaseSettings) -> DatabaseConfig:
    return DatabaseConfig(
        host=settings.host,
        port=settings.port,
        database=settings.database,
        user=settings.user,
        password=settings.password,
        sslmode=settings.sslmode,
        min_connections=settings.min_connections,
        max_connections=settings.max_connections,
        connection_timeout=settings.connection_timeout,
    )


def verify_schema(db: Database) -> None:
    """Check that the request table and its active-request index exist.

    Raises
    ------
    SchemaMissingError
        Naming the missing object; enable ``database.auto_setup`` or
        apply ``schema.sql`` by hand.

    """
    table = db.fetch_one(
        "SELECT to_regclass(%s) AS oid",
        (REQUESTS_TABLE,),
        as_dict=True,
    )
    if not table or table["oid"] is None:
        msg = f"Table '{REQUESTS_TABLE}' does not exist; enable database.auto_setup or apply schema.sql"
        raise SchemaMissingError(msg)

    index = db.fetch_one(
        "SELECT 1 AS present FROM pg_indexes WHERE tablename = %s AND indexname = %s",
        (REQUESTS_TABLE, ACTIVE_INDEX),
        as_dict=True,
    )
    if not index:
        # Without the partial index concurrent creates can duplicate requests.
        msg = f"Index '{ACTIVE_INDEX}' is missing on '{REQUESTS_TABLE}'; apply schema.sql"
        raise SchemaMissingError(msg)


def init_database(settings: DatabaseSettings) -> Database:
    """Connect the :class:`Database` singleton used by the request repository.

    An already initialised singleton is reused as is.
    """
    if Database.is_initialized():
        return Database.get_instance()

    log.info(
        "Connecting request store to %s@%s:%s/%s (auto_setup=%s)",
        settings.user,
        settings.host,
        settings.port,
        settings.database,
        settings.auto_setup,
    )
    db = Database.init(
        config=_pool_config(settings),
        schema_path=_SCHEMA_PATH if settings.auto_setup else None,
        auto_setup=settings.auto_setup,
        interactive=False,
    )
    if not settings.auto_setup:
        verify_schema(db)
    return db
