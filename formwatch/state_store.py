from __future__ import annotations

import logging
from typing import Protocol

from formwatch.db import DbState, FormStateRow, dump_ts, load_ts
from formwatch.models import PersistedState

logger = logging.getLogger(__name__)


class StateStore(Protocol):
    """Хранилище последнего состояния одной формы."""

    def load(self) -> PersistedState: ...

    def save(self, state: PersistedState) -> None: ...


class SqlStateStore:
    """
    StateStore поверх SQLAlchemy.

    Запись целиком перезаписывается в одной транзакции: либо commit,
    либо rollback, частичных состояний снаружи не видно.
    """

    def __init__(self, db: DbState, form_key: str) -> None:
        self._db = db
        self._form_key = form_key

    def load(self) -> PersistedState:
        with self._db.session_factory() as session:
            row = session.get(FormStateRow, self._form_key)
            if row is None:
                logger.info("[state] no previous record for form, cold start")
                return PersistedState(accepting=None, last_checked_at=None)
            state = PersistedState(accepting=row.accepting, last_checked_at=load_ts(row.last_checked_at))
        logger.debug("[state] loaded accepting=%s last_checked_at=%s", state.accepting, state.last_checked_at)
        return state

    def save(self, state: PersistedState) -> None:
        with self._db.session_factory() as session:
            with session.begin():
                row = session.get(FormStateRow, self._form_key)
                if row is None:
                    row = FormStateRow(form_key=self._form_key)
                    session.add(row)
                row.accepting = state.accepting
                row.last_checked_at = dump_ts(state.last_checked_at)
        logger.info("[state] saved accepting=%s last_checked_at=%s", state.accepting, state.last_checked_at)
