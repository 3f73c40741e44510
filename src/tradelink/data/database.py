"""Database connection and session management."""

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tradelink.data.schema import Base


def _set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite connections."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """Database manager for the marketplace store."""

    def __init__(self, url: str = "sqlite:///data/tradelink.db"):
        """Initialize database connection.

        Args:
            url: SQLAlchemy database URL. ``sqlite://`` gives a shared
                in-memory database.
        """
        self.url = make_url(url)
        is_sqlite = self.url.get_backend_name() == "sqlite"
        engine_kwargs: dict = {"echo": False}

        if is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            database = self.url.database
            if not database or database == ":memory:":
                engine_kwargs["poolclass"] = StaticPool
            else:
                Path(database).parent.mkdir(parents=True, exist_ok=True)

        self.engine = create_engine(self.url, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _set_sqlite_pragma)

        self.SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    def create_tables(self) -> None:
        """Create all tables defined in the schema."""
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self) -> None:
        """Drop all tables from the database."""
        Base.metadata.drop_all(bind=self.engine)

    def get_session(self) -> Session:
        """Get a new database session."""
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Transactional scope: commit on success, rollback on error."""
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        """Check the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def dispose(self) -> None:
        self.engine.dispose()


# Default database instance
_default_db: Database | None = None


def get_database(url: str | None = None) -> Database:
    """Get or create default database instance.

    Args:
        url: Database URL; defaults to ``Settings.database_url``.
    """
    global _default_db
    if _default_db is None:
        if url is None:
            from tradelink.models.config import get_settings

            url = get_settings().database_url
        _default_db = Database(url)
    return _default_db


def init_database(url: str | None = None) -> Database:
    """Initialize database and create tables."""
    db = get_database(url)
    db.create_tables()
    return db
