import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import StoreError, TransientStoreError

logger = logging.getLogger(__name__)


def _ensure_sqlite_parent(url: str) -> None:
    # avoid 'unable to open database file' for a fresh data directory
    if not url.startswith("sqlite:///") or ":memory:" in url:
        return
    db_path = url.split("sqlite:///")[-1]
    Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)


def _serialize_sqlite_writers(engine: Engine) -> None:
    """Start every SQLite transaction with BEGIN IMMEDIATE.

    SQLite has no row locks; taking the write lock up front makes a
    read-then-decrement sequence behave like SELECT ... FOR UPDATE.
    """

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # let the begin event below own transaction control
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """Owns the engine and session factory for one database.

    Open it at startup, pass ``db.session`` to the services, and call
    ``dispose()`` at shutdown.
    """

    def __init__(self, url: str, lock_timeout_seconds: float = 5.0):
        self.url = url
        self.lock_timeout_seconds = lock_timeout_seconds
        self.engine = self._create_engine()
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False, future=True
        )

    def _create_engine(self) -> Engine:
        if self.url.startswith("sqlite"):
            _ensure_sqlite_parent(self.url)
            engine = create_engine(
                self.url,
                future=True,
                connect_args={"timeout": self.lock_timeout_seconds, "check_same_thread": False},
            )
            _serialize_sqlite_writers(engine)
            return engine
        connect_args = {}
        if self.url.startswith("postgresql"):
            # a blocked FOR UPDATE fails fast instead of queueing forever
            connect_args["options"] = f"-c lock_timeout={int(self.lock_timeout_seconds * 1000)}"
        return create_engine(self.url, future=True, pool_pre_ping=True, connect_args=connect_args)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @contextmanager
    def session(self) -> Iterator[Session]:
        """One transaction: commit on success, full rollback on any error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except StoreError:
            session.rollback()
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("transaction rolled back after %s", exc.__class__.__name__)
            raise TransientStoreError() from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()
