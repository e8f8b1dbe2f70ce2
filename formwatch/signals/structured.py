from __future__ import annotations

import logging
from typing import Any, Optional

from formwatch.errors import FetchError, StructuredApiError
from formwatch.http import HttpClient
from formwatch.models import FormSnapshot, Verdict

from .base import VerdictSource

logger = logging.getLogger(__name__)

FORMS_API_URL_TEMPLATE = "https://forms.googleapis.com/v1/forms/{form_id}"
REASON_API_ACCEPTING = "structured-api:accepting"


def extract_accepting_flag(payload: Any) -> Optional[bool]:
    """
    Достаёт publishSettings.publishState.isAcceptingResponses из ответа Forms API.

    Возвращает None, если поля нет (старые формы без publishSettings).
    """
    node = payload
    for key in ("publishSettings", "publishState"):
        if not isinstance(node, dict):
            raise StructuredApiError(f"forms api payload: expected object before {key!r}, got {type(node).__name__}")
        node = node.get(key)
        if node is None:
            return None
    if not isinstance(node, dict):
        raise StructuredApiError(f"forms api payload: publishState is {type(node).__name__}, expected object")
    flag = node.get("isAcceptingResponses")
    if flag is None:
        return None
    if not isinstance(flag, bool):
        raise StructuredApiError(f"unexpected isAcceptingResponses value: {flag!r}")
    return flag


class StructuredApiSource(VerdictSource):
    """
    Приоритетный источник: авторизованный Forms API.

    Даёт только ACCEPTING или «нет сигнала». Любая ошибка проглатывается,
    и проверка уходит в эвристику по HTML.
    """

    key = "forms_api"

    def __init__(self, http: HttpClient, form_id: str, token: str) -> None:
        self._http = http
        self._form_id = form_id
        self._token = token

    async def _fetch(self, session: Any) -> Optional[bool]:
        url = FORMS_API_URL_TEMPLATE.format(form_id=self._form_id)
        try:
            status, payload = await self._http.get_json(
                session,
                url,
                headers={"Authorization": f"Bearer {self._token}", "Accept": "application/json"},
            )
        except FetchError as exc:
            raise StructuredApiError(str(exc)) from exc
        if not 200 <= status <= 299:
            raise StructuredApiError(f"forms api returned HTTP {status}")
        return extract_accepting_flag(payload)

    async def lookup(self, session: Any) -> Optional[FormSnapshot]:
        try:
            accepting = await self._fetch(session)
        except StructuredApiError as exc:
            logger.warning("[forms_api] lookup failed, falling back to heuristics: %s", exc)
            return None

        if accepting is True:
            return FormSnapshot(
                verdict=Verdict.ACCEPTING,
                reason_code=REASON_API_ACCEPTING,
                source=f"forms-api:{self._form_id}",
            )
        logger.info("[forms_api] no usable signal (isAcceptingResponses=%s)", accepting)
        return None
