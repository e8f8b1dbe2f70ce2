from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

pytest.importorskip("sqlalchemy")

from formwatch.db import create_db_state, init_db
from formwatch.delivery_log import DEFAULT_MAX_ENTRIES, SqlDeliveryLog
from formwatch.models import DeliveryLogEntry

START = datetime(2026, 1, 1, tzinfo=timezone.utc)


def _log(tmp_path: Path, max_entries: int = DEFAULT_MAX_ENTRIES) -> SqlDeliveryLog:
    state = create_db_state(f"sqlite:///{tmp_path / 'log.db'}")
    init_db(state)
    return SqlDeliveryLog(state, max_entries=max_entries)


def _entry(i: int) -> DeliveryLogEntry:
    return DeliveryLogEntry(at=START + timedelta(seconds=i), ok=i % 2 == 0, detail=f"entry-{i}")


def test_log_never_exceeds_cap_and_drops_oldest(tmp_path: Path) -> None:
    # Кольцевой буфер: после 205 записей остаются последние 200.
    log = _log(tmp_path)
    for i in range(205):
        log.append(_entry(i))

    assert log.count() == 200
    entries = log.recent(limit=200)
    assert entries[0].detail == "entry-204"
    assert entries[-1].detail == "entry-5"


def test_small_cap_keeps_latest_entries(tmp_path: Path) -> None:
    log = _log(tmp_path, max_entries=3)
    for i in range(5):
        log.append(_entry(i))

    assert [e.detail for e in log.recent()] == ["entry-4", "entry-3", "entry-2"]


def test_recent_returns_full_entries(tmp_path: Path) -> None:
    log = _log(tmp_path)
    log.append(_entry(0))

    assert log.recent() == [_entry(0)]


def test_non_positive_cap_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        _log(tmp_path, max_entries=0)
