from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional, Protocol, Sequence

from formwatch.db import DbState
from formwatch.decision import AmbiguousPolicy, decide
from formwatch.delivery_log import SqlDeliveryLog
from formwatch.errors import DeliveryFailure, FetchError
from formwatch.http import HttpClient
from formwatch.models import CheckResult, DeliveryOutcome, FormSnapshot, Verdict
from formwatch.notifier import TelegramNotifier
from formwatch.prober import AlternateProber
from formwatch.signals import VerdictSource, default_sources, resolve_verdict
from formwatch.state_store import SqlStateStore, StateStore

logger = logging.getLogger(__name__)

REASON_NO_VERDICT = "no-verdict-source"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Notifier(Protocol):
    async def deliver(self, session: Any, message: str) -> DeliveryOutcome: ...


@dataclass(frozen=True)
class CheckerConfig:
    """Параметры ядра, собранные из Settings один раз при старте."""

    locator: str
    forced_enabled: bool = False
    ambiguous_policy: AmbiguousPolicy = AmbiguousPolicy.CLOSED
    degraded_enabled: bool = True


class FormChecker:
    """
    Один цикл проверки формы: вердикт -> проба альтернатив -> решение -> состояние -> уведомление.

    Одновременно выполняется не больше одной проверки: второй вызов во время
    работающей присоединяется к ней и получает тот же результат (или ту же ошибку),
    иначе load/decide/save двух проверок перемешались бы.
    """

    def __init__(
        self,
        *,
        http: HttpClient,
        sources: Sequence[VerdictSource],
        store: StateStore,
        notifier: Notifier,
        config: CheckerConfig,
        prober: Optional[AlternateProber] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._http = http
        self._sources = list(sources)
        self._store = store
        self._notifier = notifier
        self._config = config
        self._prober = prober
        self._clock = clock
        self._inflight: Optional[asyncio.Future] = None

    @property
    def config(self) -> CheckerConfig:
        return self._config

    async def run_check(self, forced: bool = False) -> CheckResult:
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            logger.info("[check] check already in flight, joining it (forced=%s ignored)", forced)
            return await asyncio.shield(inflight)

        task = asyncio.ensure_future(self._run_check(forced))
        self._inflight = task
        return await asyncio.shield(task)

    async def _run_check(self, forced: bool) -> CheckResult:
        now = self._clock()
        previous = await asyncio.to_thread(self._store.load)
        logger.info("[check] start forced=%s previous=%s", forced, previous.accepting)

        async with self._http.create_session() as session:
            try:
                snapshot = await resolve_verdict(self._sources, session)
            except FetchError as exc:
                # Состояние не трогаем, повтор остаётся за планировщиком.
                logger.error("[check] primary fetch failed: %s", exc)
                raise

            if snapshot is None:
                logger.warning("[check] no verdict source produced a snapshot")
                snapshot = FormSnapshot(verdict=Verdict.AMBIGUOUS, reason_code=REASON_NO_VERDICT)

            alternate = None
            if snapshot.verdict is Verdict.BLOCKED and self._prober is not None:
                alternate = await self._prober.probe_alternatives(session, self._config.locator)

            decision = decide(
                snapshot,
                alternate,
                previous,
                forced,
                self._config.forced_enabled,
                now=now,
                locator=self._config.locator,
                ambiguous_policy=self._config.ambiguous_policy,
                degraded_enabled=self._config.degraded_enabled,
            )
            await asyncio.to_thread(self._store.save, decision.new_state)

            notified = False
            delivery_error = None
            if decision.should_notify:
                try:
                    await self._notifier.deliver(session, decision.message)
                    notified = True
                except DeliveryFailure as exc:
                    # Состояние уже сохранено, повторная проверка не пришлёт дубль.
                    delivery_error = exc.detail

        result = CheckResult(
            notified=notified,
            accepting=bool(decision.new_state.accepting),
            reason_code=decision.reason_code,
            checked_at=now,
            kind=decision.kind,
            delivery_error=delivery_error,
        )
        logger.info(
            "[check] done accepting=%s notified=%s kind=%s reason=%s",
            result.accepting,
            result.notified,
            result.kind.value if result.kind else None,
            result.reason_code,
        )
        return result

    async def run_forced_test_notification(self) -> DeliveryOutcome:
        """Тест связи с мессенджером: мимо логики решений, состояние не трогаем."""
        now = self._clock()
        message = f"🔔 Test notification from form-checker\n{self._config.locator}\nSent at: {now.isoformat()}"
        logger.info("[check] forced test notification requested")
        async with self._http.create_session() as session:
            return await self._notifier.deliver(session, message)


def build_checker(settings, db: DbState) -> FormChecker:
    """Собирает FormChecker из Settings: все зависимости создаются здесь один раз."""
    runtime = settings.runtime
    app = settings.app

    http = HttpClient(
        rps=app.http_rps,
        total_timeout_s=app.http_timeout_s,
        user_agent=app.http_user_agent,
    )
    sources = default_sources(
        http,
        runtime.form_url,
        forms_api_form_id=runtime.forms_api_form_id,
        forms_api_token=runtime.forms_api_token,
    )
    delivery_log = SqlDeliveryLog(db, max_entries=app.delivery_log_max_entries)
    notifier = TelegramNotifier(
        http,
        bot_token=runtime.telegram_bot_token,
        chat_id=runtime.telegram_chat_id,
        delivery_log=delivery_log,
        clock=utc_now,
    )
    prober = AlternateProber(http, max_alternatives=app.probe_max_alternatives) if app.probe_enabled else None

    return FormChecker(
        http=http,
        sources=sources,
        store=SqlStateStore(db, form_key=runtime.form_url),
        notifier=notifier,
        config=CheckerConfig(
            locator=runtime.form_url,
            forced_enabled=runtime.forced_notify_enabled,
            ambiguous_policy=app.ambiguous_policy,
            degraded_enabled=app.degraded_notify,
        ),
        prober=prober,
    )
