from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, create_engine, func
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

Base = declarative_base()


class FormStateRow(Base):
    """Последнее состояние наблюдаемой формы. Одна строка на форму."""

    __tablename__ = "form_state"

    form_key = Column(String(1024), primary_key=True)
    accepting = Column(Boolean, nullable=True)
    # ISO-строка: SQLite теряет tzinfo у DateTime, а нам нужен точный round-trip.
    last_checked_at = Column(String(64), nullable=True)
    updated_at = Column(DateTime, nullable=False, server_default=func.now(), onupdate=func.now())


class DeliveryLogRow(Base):
    """Аудит попыток доставки уведомлений (кольцевой буфер)."""

    __tablename__ = "delivery_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    at = Column(String(64), nullable=False)
    ok = Column(Boolean, nullable=False)
    detail = Column(Text, nullable=False, default="")


@dataclass(frozen=True)
class DbState:
    """Упаковываем движок и фабрику сессий, чтобы передавать как единый объект."""

    engine: Engine
    session_factory: sessionmaker


def _is_sqlite_memory(database_url: str) -> bool:
    return database_url in {"sqlite://", "sqlite:///:memory:"}


def create_db_state(database_url: str) -> DbState:
    """
    Создаём SQLAlchemy engine и фабрику сессий.

    In-memory SQLite живёт в одном соединении, поэтому для неё StaticPool.
    """
    if _is_sqlite_memory(database_url):
        engine = create_engine(
            database_url,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(database_url, future=True)
    session_factory = sessionmaker(bind=engine, expire_on_commit=False, class_=Session)
    logger.info("[state] database engine initialised: %s", engine.url.render_as_string(hide_password=True))
    return DbState(engine=engine, session_factory=session_factory)


def init_db(state: DbState) -> None:
    """Создаём таблицы, если их ещё нет."""
    logger.info("[state] create_all for form_state/delivery_log")
    Base.metadata.create_all(state.engine)


def dump_ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def load_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value)
