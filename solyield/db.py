from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool


def make_engine(database_url: str):
    """Build the engine for the embedded store.

    In-memory SQLite gets a StaticPool so every session shares one connection.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, future=True, **kwargs)
    return create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
        pool_recycle=3600,  # Recycle connections after 1 hour
    )


def make_session_factory(bind):
    # expire_on_commit=False: snapshots are read after the write scope closes
    return sessionmaker(bind=bind, autoflush=False, autocommit=False, future=True, expire_on_commit=False)


Base = declarative_base()
