"""Database engine and session management.

The schedule tables live in SQLite by default. Two connection-level pragmas
are applied whenever the URL points at SQLite:

    - **WAL (Write-Ahead Logging)**: readers are not blocked while an
      attendance save or an invitation batch is being written. Viewing the
      event list triggers reconciliation writes, so reads and writes overlap
      constantly.

    - **Foreign Keys**: invitations, attendance records and points entries
      reference their event definition; SQLite only enforces that when the
      pragma is on.

``check_same_thread=False`` lets FastAPI hand a session to a worker thread
other than the one that opened the connection.
"""

from sqlalchemy import event as sa_event
from sqlmodel import Session, SQLModel, create_engine

from training_schedule.core.config import settings

is_sqlite = settings.database_url.startswith("sqlite")
connect_args = {"check_same_thread": False} if is_sqlite else {}

engine = create_engine(
    settings.database_url,
    connect_args=connect_args,
    echo=settings.debug,  # Log SQL statements when DEBUG=true
)


if is_sqlite:

    @sa_event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        """Configure SQLite pragmas on each new pooled connection."""
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_and_tables():
    """Create all database tables."""
    # Import for the side effect of registering the tables on the metadata
    import training_schedule.models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def get_session():
    """Dependency for getting database session."""
    with Session(engine) as session:
        yield session
