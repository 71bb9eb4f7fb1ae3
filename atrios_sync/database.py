"""SQLite engine and session management for the on-device cache."""

from __future__ import annotations

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from .config import settings
from .models import Base


def build_engine(url: str | None = None, echo: bool | None = None) -> Engine:
    return create_engine(
        url or settings.cache_database_url,
        echo=settings.echo_sql if echo is None else echo,
    )


def create_tables(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def build_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(engine, expire_on_commit=False)
