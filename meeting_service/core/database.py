"""Database configuration and session management.

The engine is configured for SQLite by default with WAL mode and foreign
key enforcement. Every entity lives in its own flat table keyed by UID, so
version checks and upserts operate on independent rows rather than on an
embedded object graph.

SQLite Configuration Choices:
    - **WAL (Write-Ahead Logging)**: Readers are not blocked while the
      webhook reconciler or the occurrence refresh job is writing.

    - **Foreign Keys**: Disabled by default in SQLite. Enabled so that
      registrants, RSVPs and past meeting children always reference an
      existing parent row.

    - **check_same_thread=False**: FastAPI and the background scheduler
      may hand a connection to a different thread than the one that
      created it.
"""

from sqlalchemy import event as sa_event
from sqlmodel import Session, SQLModel, create_engine

from meeting_service.core.config import settings

connect_args = (
    {"check_same_thread": False} if settings.database_url.startswith("sqlite") else {}
)

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.debug,  # Log SQL statements when DEBUG=true
)


@sa_event.listens_for(engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Configure SQLite pragmas on each new connection.

    These settings are connection-level, not database-level, so they must
    be set each time a new connection is established from the pool.
    """
    if not settings.database_url.startswith("sqlite"):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_and_tables():
    """Create all database tables."""
    # Importing the models registers every table on SQLModel.metadata
    import meeting_service.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    """Dependency for getting database session."""
    with Session(engine) as session:
        yield session
