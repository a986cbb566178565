from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from app.core.config import settings
from app.db.base import Base

# Determine which kind of database we're connecting to
is_sqlite_db = settings.DATABASE_URL.startswith("sqlite")
is_local_db = is_sqlite_db or "localhost" in settings.DATABASE_URL or "127.0.0.1" in settings.DATABASE_URL

# Configure connection arguments based on environment
if is_sqlite_db:
    # SQLite sessions are opened from worker threads by the repository gateway
    connect_args = {"check_same_thread": False}
    engine_kwargs = {}
elif is_local_db:
    # Local database - no SSL required
    connect_args = {}
    engine_kwargs = {"pool_size": 10, "max_overflow": 20}
else:
    # Remote database - require SSL with keepalives
    connect_args = {
        "sslmode": "require",
        "keepalives": 1,
        "keepalives_idle": 30,
        "keepalives_interval": 10,
        "keepalives_count": 5,
    }
    engine_kwargs = {"pool_size": 10, "max_overflow": 20}

engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,      # health-check connections before use
    pool_recycle=1800,       # recycle connections every 30 minutes to avoid stale SSL
    connect_args=connect_args,
    **engine_kwargs,
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def enable_sqlite_foreign_keys(target_engine) -> None:
    """SQLite ignores ON DELETE CASCADE unless the pragma is set per connection."""

    @event.listens_for(target_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


if is_sqlite_db:
    enable_sqlite_foreign_keys(engine)


def init_db(bind=None) -> None:
    """Create all tables. Production databases are managed by alembic."""
    # Import models so they register on Base.metadata
    from app.models import user_model, project_model  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
