from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from formwatch.models import FormSnapshot, NotificationDecision, NotificationKind, PersistedState, Verdict

logger = logging.getLogger(__name__)


class AmbiguousPolicy(str, Enum):
    """
    Как трактовать AMBIGUOUS (ни одного признака на странице).

    CLOSED — строгий режим по умолчанию: без ложных срабатываний.
    ACCEPTING — явное решение конкретной инсталляции.
    """

    CLOSED = "closed"
    ACCEPTING = "accepting"


def verdict_to_accepting(verdict: Verdict, ambiguous_policy: AmbiguousPolicy) -> bool:
    if verdict is Verdict.ACCEPTING:
        return True
    if verdict is Verdict.AMBIGUOUS:
        return ambiguous_policy is AmbiguousPolicy.ACCEPTING
    return False


def build_transition_message(locator: str, now: datetime, reason_code: str) -> str:
    return f"✅ Google Form activated\n{locator}\nChecked at: {now.isoformat()}\nReason: {reason_code}"


def build_degraded_message(locator: str, now: datetime, reason_code: str) -> str:
    return (
        "⚠️ Google Form may be open (visibility could not be fully verified: sign-in wall)\n"
        f"{locator}\nChecked at: {now.isoformat()}\nReason: {reason_code}"
    )


def build_forced_message(locator: str, now: datetime, reason_code: str, accepting: bool) -> str:
    return (
        "🔔 Forced test notification\n"
        f"{locator}\naccepting={accepting}\nChecked at: {now.isoformat()}\nReason: {reason_code}"
    )


def _silent(state: PersistedState, reason_code: str) -> NotificationDecision:
    return NotificationDecision(should_notify=False, kind=None, message="", new_state=state, reason_code=reason_code)


def decide(
    snapshot: FormSnapshot,
    alternate: Optional[FormSnapshot],
    previous: PersistedState,
    forced: bool,
    forced_enabled: bool,
    *,
    now: datetime,
    locator: str,
    ambiguous_policy: AmbiguousPolicy = AmbiguousPolicy.CLOSED,
    degraded_enabled: bool = True,
) -> NotificationDecision:
    """
    Решение одного цикла проверки.

    Порядок правил:
    1. CLOSED — сохраняем accepting=False, молчим.
    2. BLOCKED — если проба альтернатив дала ACCEPTING, идём в п.3 с ней;
       иначе при прошлом False/None шлём одно DEGRADED_STATUS и считаем форму открытой,
       при прошлом True — молчим.
    3. ACCEPTING/AMBIGUOUS — уведомляем только на переходе False -> True
       (или по forced, если он разрешён конфигом).

    Холодный старт (previous.accepting is None) переходом не считается.
    """
    if snapshot.verdict is Verdict.CLOSED:
        logger.info("[decide] closed: %s", snapshot.reason_code)
        return _silent(PersistedState(accepting=False, last_checked_at=now), snapshot.reason_code)

    if snapshot.verdict is Verdict.BLOCKED:
        if alternate is not None and alternate.verdict is Verdict.ACCEPTING:
            logger.info("[decide] blocked primary, alternate %s is accepting", alternate.source)
            snapshot = alternate
        elif not degraded_enabled:
            # Строгий режим: стена логина ничего не меняет в сохранённом знании.
            logger.info("[decide] blocked, strict mode keeps accepting=%s", previous.accepting)
            return _silent(PersistedState(accepting=previous.accepting, last_checked_at=now), snapshot.reason_code)
        elif previous.accepting is not True:
            logger.info("[decide] blocked, previous=%s -> degraded status notification", previous.accepting)
            return NotificationDecision(
                should_notify=True,
                kind=NotificationKind.DEGRADED_STATUS,
                message=build_degraded_message(locator, now, snapshot.reason_code),
                new_state=PersistedState(accepting=True, last_checked_at=now),
                reason_code=snapshot.reason_code,
            )
        else:
            logger.info("[decide] blocked, already alerted (previous=True)")
            return _silent(PersistedState(accepting=True, last_checked_at=now), snapshot.reason_code)

    current = verdict_to_accepting(snapshot.verdict, ambiguous_policy)
    changed = previous.accepting is not None and current is True and previous.accepting is False
    new_state = PersistedState(accepting=current, last_checked_at=now)
    force = forced and forced_enabled

    if forced and not forced_enabled:
        logger.info("[decide] forced check requested but disabled by config, treating as normal check")

    logger.info(
        "[decide] verdict=%s previous=%s current=%s changed=%s forced=%s",
        snapshot.verdict.value,
        previous.accepting,
        current,
        changed,
        force,
    )

    if changed:
        return NotificationDecision(
            should_notify=True,
            kind=NotificationKind.TRANSITION,
            message=build_transition_message(locator, now, snapshot.reason_code),
            new_state=new_state,
            reason_code=snapshot.reason_code,
        )
    if force:
        return NotificationDecision(
            should_notify=True,
            kind=NotificationKind.FORCED_TEST,
            message=build_forced_message(locator, now, snapshot.reason_code, current),
            new_state=new_state,
            reason_code=snapshot.reason_code,
        )
    return _silent(new_state, snapshot.reason_code)
