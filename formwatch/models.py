from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional


class Verdict(str, Enum):
    """Классификация состояния формы по одному полученному представлению."""

    ACCEPTING = "accepting"
    CLOSED = "closed"
    BLOCKED = "blocked"
    AMBIGUOUS = "ambiguous"


class NotificationKind(str, Enum):
    """Тип уведомления, которое решил отправить движок переходов."""

    TRANSITION = "transition"
    DEGRADED_STATUS = "degraded_status"
    FORCED_TEST = "forced_test"


@dataclass(frozen=True)
class FormSnapshot:
    """
    Результат разбора одного представления формы.

    source — URL или идентификатор источника (например, forms-api:<id>),
    reason_code — стабильный код причины, который уходит в ответ и в логи.
    """

    verdict: Verdict
    reason_code: str
    source: str = ""


@dataclass(frozen=True)
class PersistedState:
    """
    Последнее известное состояние формы.

    accepting=None означает «ни разу не удалось классифицировать».
    """

    accepting: Optional[bool] = None
    last_checked_at: Optional[datetime] = None


@dataclass(frozen=True)
class NotificationDecision:
    """Решение одного цикла проверки. Никогда не сохраняется."""

    should_notify: bool
    kind: Optional[NotificationKind]
    message: str
    new_state: PersistedState
    reason_code: str


@dataclass(frozen=True)
class DeliveryLogEntry:
    """Запись аудита доставки (успех или ошибка)."""

    at: datetime
    ok: bool
    detail: str


@dataclass(frozen=True)
class DeliveryOutcome:
    """Результат успешного вызова транспорта уведомлений."""

    ok: bool
    status: Optional[int]
    detail: str


@dataclass(frozen=True)
class CheckResult:
    """
    Итог одной проверки для внешнего слоя (HTTP/CLI).

    delivery_error заполняется, если решение было «уведомить»,
    но транспорт вернул ошибку. Состояние к этому моменту уже сохранено.
    """

    notified: bool
    accepting: bool
    reason_code: str
    checked_at: datetime
    kind: Optional[NotificationKind] = None
    delivery_error: Optional[str] = None

    def as_dict(self) -> dict:
        payload = {
            "ok": self.delivery_error is None,
            "notified": self.notified,
            "accepting": self.accepting,
            "reason": self.reason_code,
            "last_checked": self.checked_at.isoformat(),
            "kind": self.kind.value if self.kind else None,
        }
        if self.delivery_error is not None:
            payload["error"] = self.delivery_error
        return payload
