from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from .config import settings

# check_same_thread=False: sessions are handed to worker threads (asyncio.to_thread)
engine = create_engine(
    settings.resolved_database_url,
    connect_args={"check_same_thread": False},
)


@event.listens_for(engine, "connect")
def enable_sqlite_fk(dbapi_connection, _):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def init_db() -> None:
    """Create missing tables."""
    from .models.generated import Base

    Base.metadata.create_all(bind=engine)


# Dependency for FastAPI
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
