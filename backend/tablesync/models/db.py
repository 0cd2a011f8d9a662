from contextlib import contextmanager
from functools import lru_cache
import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from tablesync.core.config import settings
from tablesync.models.tables import Base


def _ensure_sqlite_path(url: str) -> None:
    if url.startswith("sqlite:///"):
        # Convert sqlite:///./data/tablesync.db -> ./data/tablesync.db
        path = url[len("sqlite:///") :]
        directory = os.path.dirname(path)
        if directory and not os.path.exists(directory):
            os.makedirs(directory, exist_ok=True)


def create_db_engine(url: str) -> Engine:
    _ensure_sqlite_path(url)
    engine = create_engine(url, pool_pre_ping=True)
    # The store is a single table; create it on first use
    Base.metadata.create_all(bind=engine)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker:
    return make_session_factory(create_db_engine(settings.database_url))


@contextmanager
def get_session(factory: sessionmaker | None = None):
    session: Session = (factory or get_session_factory())()
    try:
        yield session
    finally:
        session.close()
