"""Versioned schema migrations, applied once at deploy time.

The services assume the schema produced by the latest migration; they never
probe for columns at runtime.
"""

import logging
from typing import Callable, List, Tuple

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, func, insert, select
from sqlalchemy.engine import Connection

from ..models.registry import Base
from ..services.logging import log_event
from ..utils.clock import utcnow
from .session import Database

logger = logging.getLogger(__name__)

_version_metadata = MetaData()

schema_version = Table(
    "schema_version",
    _version_metadata,
    Column("version", Integer, primary_key=True),
    Column("description", String(255), nullable=False),
    Column("applied_at", DateTime, nullable=False),
)


def _initial_schema(conn: Connection) -> None:
    Base.metadata.create_all(conn)


MIGRATIONS: List[Tuple[int, str, Callable[[Connection], None]]] = [
    (1, "order engine tables", _initial_schema),
]

LATEST_VERSION = MIGRATIONS[-1][0]


def current_version(db: Database) -> int:
    with db.engine.begin() as conn:
        schema_version.create(conn, checkfirst=True)
        return conn.execute(select(func.max(schema_version.c.version))).scalar() or 0


def migrate(db: Database) -> int:
    """Apply pending migrations and return the resulting schema version."""
    with db.engine.begin() as conn:
        schema_version.create(conn, checkfirst=True)
        applied = conn.execute(select(func.max(schema_version.c.version))).scalar() or 0
        for version, description, apply in MIGRATIONS:
            if version <= applied:
                continue
            apply(conn)
            conn.execute(
                insert(schema_version).values(version=version, description=description, applied_at=utcnow())
            )
            applied = version
            log_event("info", "schema.migrated", version=version, description=description)
    return applied


def reset(db: Database) -> None:
    """Drop every table; local tooling and tests only."""
    with db.engine.begin() as conn:
        Base.metadata.drop_all(conn)
        schema_version.drop(conn, checkfirst=True)
    logger.info("schema dropped for %s", db.dialect)
