import uuid
import datetime
from typing import Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

Base = declarative_base()


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def create_session_factory(database_url: str) -> sessionmaker:
    """
    Build a session factory for the given database URL.

    :param database_url: SQLAlchemy URL of the hosted database.
    :return: A ``sessionmaker`` bound to a new engine.
    """
    connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
    engine: Engine = create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db(request: Request) -> Iterator[Session]:
    """FastAPI dependency yielding a session scoped to one request."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
