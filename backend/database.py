from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from config import get_settings

settings = get_settings()


def build_engine(url: str):
    """Create an engine; SQLite gets a thread-tolerant connection, Postgres a sized pool."""
    if url.startswith("sqlite"):
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20
    )


engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind=None):
    """Initialize database tables and the system settings row."""
    from models import (  # noqa: F401
        user, instrument, wallet, position, trade, price_snapshot, system_settings
    )
    bind = bind or engine
    Base.metadata.create_all(bind=bind)

    # Add last_trading_day column if missing (for existing databases)
    from sqlalchemy import inspect, text
    columns = [c["name"] for c in inspect(bind).get_columns("system_settings")]
    if "last_trading_day" not in columns:
        with bind.connect() as conn:
            conn.execute(text("ALTER TABLE system_settings ADD COLUMN last_trading_day DATE"))
            conn.commit()

    Session = sessionmaker(autocommit=False, autoflush=False, bind=bind)
    db = Session()
    try:
        system_settings.ensure_settings_row(db)
    finally:
        db.close()
