from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine, text

from .settings import settings


def _make_engine():
    url = settings.database_url
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        # In-memory databases live in a single connection
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, **kwargs)
    return create_engine(url, pool_pre_ping=True)


engine = _make_engine()


def create_db_and_tables() -> None:
    # Import for table registration on SQLModel.metadata
    from . import models  # noqa: F401

    SQLModel.metadata.create_all(engine)


def check_db_connection() -> None:
    with Session(engine) as session:
        session.execute(text("SELECT 1"))


def get_session():
    with Session(engine) as session:
        yield session
