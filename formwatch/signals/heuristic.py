from __future__ import annotations

import logging
from typing import Any

from formwatch.http import HttpClient
from formwatch.models import FormSnapshot

from .base import VerdictSource
from .rules import classify

logger = logging.getLogger(__name__)


class HeuristicSource(VerdictSource):
    """
    Скачивает страницу формы и классифицирует её по фразам.

    Всегда даёт вердикт. FetchError пробрасывается: без страницы проверка прерывается.
    """

    key = "heuristic"

    def __init__(self, http: HttpClient, locator: str) -> None:
        self._http = http
        self._locator = locator

    async def lookup(self, session: Any) -> FormSnapshot:
        content = await self._http.fetch_text(session, self._locator)
        logger.debug("[heuristic] fetched %s chars from %s", len(content), self._locator)
        return classify(content, source=self._locator)
