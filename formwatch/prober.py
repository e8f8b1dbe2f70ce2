from __future__ import annotations

import logging
import re
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from formwatch.errors import FetchError, ProbeError
from formwatch.http import HttpClient
from formwatch.models import FormSnapshot, Verdict
from formwatch.signals.rules import classify

logger = logging.getLogger(__name__)

DEFAULT_MAX_ALTERNATIVES = 6

# Параметры, с которыми Google отдаёт ту же форму другим представлением.
ALTERNATE_QUERY_PARAMS: tuple[tuple[str, str], ...] = (
    ("usp", "sf_link"),
    ("embedded", "true"),
    ("hl", "en"),
)

FORM_PATH_VARIANTS: tuple[str, ...] = ("viewform", "formResponse")

# /forms/d/e/<id>/viewform (опубликованная) или /forms/d/<id>/edit|viewform
_FORM_PATH_RE = re.compile(r"^(?P<prefix>(?:/u/\d+)?/forms/d/(?:e/)?)(?P<form_id>[\w-]+)(?:/[^?#]*)?$")


def _with_query_param(url: str, key: str, value: str) -> str:
    parsed = urlparse(url)
    params = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != key]
    params.append((key, value))
    return urlunparse(parsed._replace(query=urlencode(params)))


def _path_variants(url: str) -> list[str]:
    parsed = urlparse(url)
    match = _FORM_PATH_RE.match(parsed.path)
    if match is None:
        return []
    base = f"{match.group('prefix')}{match.group('form_id')}"
    variants = []
    for tail in FORM_PATH_VARIANTS:
        plain = urlunparse(parsed._replace(path=f"{base}/{tail}", query="", fragment=""))
        variants.append(plain)
        variants.append(_with_query_param(plain, "usp", "sf_link"))
    return variants


def derive_alternatives(primary: str, max_alternatives: int = DEFAULT_MAX_ALTERNATIVES) -> list[str]:
    """
    Альтернативные ссылки на ту же форму: доп. параметры и эквивалентные пути.

    Список без дублей, без основной ссылки, порядок стабильный.
    """
    candidates = [_with_query_param(primary, key, value) for key, value in ALTERNATE_QUERY_PARAMS]
    candidates.extend(_path_variants(primary))

    seen = {primary}
    result: list[str] = []
    for candidate in candidates:
        if candidate in seen:
            continue
        seen.add(candidate)
        result.append(candidate)
        if len(result) >= max_alternatives:
            break
    return result


class AlternateProber:
    """
    Пробует альтернативные представления формы, когда основное упёрлось в логин.

    Возвращает только явный ACCEPTING, поэтому ложного срабатывания не добавляет.
    """

    def __init__(self, http: HttpClient, *, max_alternatives: int = DEFAULT_MAX_ALTERNATIVES) -> None:
        self._http = http
        self._max_alternatives = max_alternatives

    async def _probe_one(self, session: Any, url: str) -> FormSnapshot:
        try:
            content = await self._http.fetch_text(session, url)
        except FetchError as exc:
            raise ProbeError(url, exc) from exc
        return classify(content, source=url)

    async def probe_alternatives(self, session: Any, primary: str) -> Optional[FormSnapshot]:
        alternatives = derive_alternatives(primary, self._max_alternatives)
        logger.info("[probe] primary blocked, trying %s alternatives", len(alternatives))

        for url in alternatives:
            try:
                snapshot = await self._probe_one(session, url)
            except ProbeError as exc:
                logger.warning("[probe] skipped: %s", exc)
                continue

            logger.info("[probe] %s -> %s (%s)", url, snapshot.verdict.value, snapshot.reason_code)
            if snapshot.verdict is Verdict.ACCEPTING:
                return snapshot

        logger.info("[probe] no alternative is accepting")
        return None
