from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import delete, func, select

from formwatch.db import DbState, DeliveryLogRow, dump_ts, load_ts
from formwatch.models import DeliveryLogEntry

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 200


class DeliveryLog(Protocol):
    def append(self, entry: DeliveryLogEntry) -> None: ...

    def recent(self, limit: int = 50) -> list[DeliveryLogEntry]: ...


class SqlDeliveryLog:
    """
    Append-only журнал доставок с ограничением на max_entries.

    Вставка и обрезка старых записей идут в одной транзакции.
    """

    def __init__(self, db: DbState, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be > 0")
        self._db = db
        self._max_entries = max_entries

    def append(self, entry: DeliveryLogEntry) -> None:
        with self._db.session_factory() as session:
            with session.begin():
                session.add(DeliveryLogRow(at=dump_ts(entry.at), ok=entry.ok, detail=entry.detail))
                session.flush()
                # id самой новой записи, которая уже не влезает в буфер.
                cutoff = session.scalar(
                    select(DeliveryLogRow.id)
                    .order_by(DeliveryLogRow.id.desc())
                    .offset(self._max_entries)
                    .limit(1)
                )
                if cutoff is not None:
                    result = session.execute(delete(DeliveryLogRow).where(DeliveryLogRow.id <= cutoff))
                    logger.debug("[delivery_log] evicted %s oldest entries", result.rowcount)

    def recent(self, limit: int = 50) -> list[DeliveryLogEntry]:
        """Последние записи, новые первыми."""
        with self._db.session_factory() as session:
            rows = session.scalars(
                select(DeliveryLogRow).order_by(DeliveryLogRow.id.desc()).limit(limit)
            ).all()
            return [DeliveryLogEntry(at=load_ts(row.at), ok=row.ok, detail=row.detail) for row in rows]

    def count(self) -> int:
        with self._db.session_factory() as session:
            return int(session.scalar(select(func.count()).select_from(DeliveryLogRow)) or 0)
