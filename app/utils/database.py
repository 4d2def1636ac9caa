from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

from app.core.config import DATABASE_URL


def engine_kwargs(url: str) -> dict:
    # SQLite (tests / local) has no server-side pool to tune
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return kwargs

    return {
        "pool_pre_ping": True,  # drops dead connections automatically
        "pool_size": 5,
        "max_overflow": 10,
    }


def make_engine(url: str = DATABASE_URL):
    return create_engine(url, echo=False, future=True, **engine_kwargs(url))


def make_session_factory(bind):
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
    )


# ---------------------
# SQLAlchemy engine / session / Base
# ---------------------
engine = make_engine()

SessionLocal = make_session_factory(engine)

Base = declarative_base()
