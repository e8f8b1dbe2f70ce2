from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from formwatch.delivery_log import DeliveryLog
from formwatch.errors import DeliveryFailure, FetchError
from formwatch.http import HttpClient
from formwatch.models import DeliveryLogEntry, DeliveryOutcome

logger = logging.getLogger(__name__)

TELEGRAM_SEND_URL_TEMPLATE = "https://api.telegram.org/bot{token}/sendMessage"
MAX_MESSAGE_LENGTH = 4000


class TelegramNotifier:
    """
    Отправка одного сообщения через Telegram Bot API.

    Каждая попытка (успех или ошибка) пишется в журнал доставок.
    Ошибка журнала не маскирует результат доставки.
    """

    def __init__(
        self,
        http: HttpClient,
        *,
        bot_token: str,
        chat_id: str,
        delivery_log: DeliveryLog,
        clock: Callable[[], datetime],
    ) -> None:
        self._http = http
        self._url = TELEGRAM_SEND_URL_TEMPLATE.format(token=bot_token)
        self._chat_id = chat_id
        self._delivery_log = delivery_log
        self._clock = clock

    async def _record(self, ok: bool, detail: str) -> None:
        entry = DeliveryLogEntry(at=self._clock(), ok=ok, detail=detail)
        try:
            await asyncio.to_thread(self._delivery_log.append, entry)
        except Exception:
            # Любая ошибка журнала только логируется, исход доставки не меняется.
            logger.exception("[notify] failed to write delivery log entry (ok=%s)", ok)

    async def _send(self, session: Any, message: str) -> DeliveryOutcome:
        payload = {
            "chat_id": self._chat_id,
            "text": message[:MAX_MESSAGE_LENGTH],
            "disable_web_page_preview": True,
        }
        try:
            status, body = await self._http.post_json(session, self._url, payload)
        except FetchError as exc:
            raise DeliveryFailure(f"transport error: {exc.reason_code} {exc.detail}".strip()) from exc

        if not 200 <= status <= 299:
            description = body.get("description") if isinstance(body, dict) else None
            raise DeliveryFailure(f"telegram returned HTTP {status}: {description or 'no description'}", status=status)
        if isinstance(body, dict) and body.get("ok") is False:
            raise DeliveryFailure(f"telegram rejected message: {body.get('description')}", status=status)

        message_id: Optional[int] = None
        if isinstance(body, dict):
            message_id = (body.get("result") or {}).get("message_id")
        return DeliveryOutcome(ok=True, status=status, detail=f"message_id={message_id}")

    async def deliver(self, session: Any, message: str) -> DeliveryOutcome:
        """Одна попытка без ретраев. При ошибке транспорта — DeliveryFailure."""
        try:
            outcome = await self._send(session, message)
        except DeliveryFailure as exc:
            logger.error("[notify] delivery failed: %s", exc.detail)
            await self._record(False, exc.detail)
            raise

        logger.info("[notify] delivered via Telegram (%s)", outcome.detail)
        await self._record(True, outcome.detail)
        return outcome
