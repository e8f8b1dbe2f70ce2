from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Пропускаем тесты хранилища, если SQLAlchemy не установлен.
pytest.importorskip("sqlalchemy")

from formwatch.db import create_db_state, init_db
from formwatch.models import PersistedState
from formwatch.state_store import SqlStateStore

FORM_KEY = "https://docs.google.com/forms/d/e/abc/viewform"


def _store(tmp_path: Path, form_key: str = FORM_KEY) -> SqlStateStore:
    state = create_db_state(f"sqlite:///{tmp_path / 'state.db'}")
    init_db(state)
    return SqlStateStore(state, form_key=form_key)


def test_load_without_record_is_cold_start(tmp_path: Path) -> None:
    # Отсутствие записи — не ошибка, а «ни разу не классифицировали».
    assert _store(tmp_path).load() == PersistedState(accepting=None, last_checked_at=None)


def test_save_then_load_roundtrip(tmp_path: Path) -> None:
    store = _store(tmp_path)
    checked = datetime(2026, 3, 4, 5, 6, 7, 890123, tzinfo=timezone.utc)

    for state in (
        PersistedState(accepting=True, last_checked_at=checked),
        PersistedState(accepting=False, last_checked_at=checked + timedelta(minutes=2)),
        PersistedState(accepting=None, last_checked_at=None),
    ):
        store.save(state)
        assert store.load() == state


def test_save_overwrites_single_record(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.save(PersistedState(accepting=False, last_checked_at=datetime(2026, 1, 1, tzinfo=timezone.utc)))
    store.save(PersistedState(accepting=True, last_checked_at=datetime(2026, 1, 2, tzinfo=timezone.utc)))

    # Новый store поверх той же базы видит только последнюю запись.
    reopened = _store(tmp_path)
    assert reopened.load().accepting is True
    assert reopened.load().last_checked_at == datetime(2026, 1, 2, tzinfo=timezone.utc)


def test_records_are_keyed_by_form(tmp_path: Path) -> None:
    _store(tmp_path).save(PersistedState(accepting=True))

    assert _store(tmp_path, form_key="https://other").load().accepting is None


def test_in_memory_database_keeps_state_between_sessions() -> None:
    state = create_db_state("sqlite://")
    init_db(state)
    store = SqlStateStore(state, form_key=FORM_KEY)

    store.save(PersistedState(accepting=False))

    assert store.load().accepting is False
