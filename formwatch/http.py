from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp
from aiolimiter import AsyncLimiter

from formwatch.errors import FetchError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "form-checker/1.0"
BODY_CHUNK_BYTES = 64 * 1024

# Токен бота Telegram живёт прямо в пути URL.
_BOT_TOKEN_RE = re.compile(r"/bot[^/]+/")


@dataclass(frozen=True)
class HttpResponse:
    """
    Ответ HTTP.

    Тело храним уже декодированным: ядру нужен только текст страницы
    или JSON ответа API.
    """

    status: int
    final_url: str
    text: str
    request_url: str = ""
    method: str = "GET"
    elapsed_ms: Optional[int] = None


@dataclass(frozen=True)
class HttpFetchResult:
    """
    Подробный результат запроса.
    Если ok=False, response=None и заполнены reason_code/error_text.
    """

    ok: bool
    response: Optional[HttpResponse]
    reason_code: Optional[str]
    error_text: Optional[str]
    elapsed_ms: Optional[int]


class HttpClient:
    """
    HTTP-клиент проверок формы.

    Основные особенности:
    - Лимит RPS (через AsyncLimiter), чтобы пробы альтернатив не долбили сервер.
    - Один фиксированный дедлайн на каждый запрос (ClientTimeout.total).
    - Ретраев нет: повтор проверки — забота внешнего планировщика.
    - Сетевые ошибки нормализуются в стабильные reason_code.
    """

    def __init__(
        self,
        rps: float,
        total_timeout_s: float,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        read_limit_bytes: int = 5_000_000,
    ) -> None:
        self._limiter = AsyncLimiter(max_rate=rps, time_period=1.0)
        self._total_timeout_s = float(total_timeout_s)
        self._user_agent = user_agent
        self._read_limit_bytes = int(read_limit_bytes)
        self._timeout = aiohttp.ClientTimeout(total=self._total_timeout_s)

        logger.info(
            "HttpClient init rps=%s total_timeout_s=%s user_agent=%s",
            rps,
            self._total_timeout_s,
            self._user_agent,
        )

    def create_session(self) -> aiohttp.ClientSession:
        """
        Фабрика ClientSession с нашими таймаутами.

        Использование:
            async with http.create_session() as session:
                text = await http.fetch_text(session, url)
        """
        return aiohttp.ClientSession(timeout=self._timeout)

    def _classify_error(self, exc: BaseException) -> tuple[str, str]:
        """
        Нормализация сетевых ошибок в стабильные коды.
        Коды уходят в FetchError и в логи.
        """
        # ServerTimeoutError наследует asyncio.TimeoutError, проверяем раньше.
        if isinstance(exc, aiohttp.ServerTimeoutError):
            return "timeout_server", str(exc)

        if isinstance(exc, asyncio.TimeoutError):
            return "timeout_total", str(exc)

        if isinstance(exc, aiohttp.ClientSSLError):
            return "tls_error", str(exc)

        if isinstance(exc, aiohttp.ClientConnectorError):
            inner = getattr(exc, "os_error", None)
            if inner is not None:
                name = inner.__class__.__name__.lower()
                if "gaierror" in name:
                    return "dns_error", str(exc)
                if "connectionrefusederror" in name:
                    return "connection_refused", str(exc)
            return "connect_error", str(exc)

        if isinstance(exc, aiohttp.TooManyRedirects):
            return "too_many_redirects", str(exc)

        if isinstance(exc, aiohttp.InvalidURL):
            return "invalid_url", str(exc)

        if isinstance(exc, aiohttp.ClientError):
            return "client_error", str(exc)

        return "unknown_error", str(exc)

    async def _read_body(self, resp: aiohttp.ClientResponse) -> Optional[bytes]:
        """
        Тело целиком до EOF. Больше read_limit_bytes: None, префикс не отдаём.
        """
        chunks: list[bytes] = []
        size = 0
        async for chunk in resp.content.iter_chunked(BODY_CHUNK_BYTES):
            size += len(chunk)
            if size > self._read_limit_bytes:
                return None
            chunks.append(chunk)
        return b"".join(chunks)

    async def fetch_ex(
        self,
        session: aiohttp.ClientSession,
        url: str,
        *,
        method: str = "GET",
        headers: Optional[dict[str, str]] = None,
        json_body: Any = None,
    ) -> HttpFetchResult:
        """
        Один запрос без ретраев:
        - reason_code/error_text при сетевых ошибках
        - тело читается до EOF; больше read_limit_bytes — ошибка body_too_large
        - статус ответа не проверяется, это решают вызывающие
        """
        req_headers = {
            "User-Agent": self._user_agent,
            "Accept": "text/html,application/xhtml+xml,application/json;q=0.9,*/*;q=0.8",
        }
        if headers:
            req_headers.update(headers)

        t0 = time.monotonic()
        async with self._limiter:
            try:
                async with session.request(
                    method,
                    url,
                    timeout=self._timeout,
                    allow_redirects=True,
                    headers=req_headers,
                    json=json_body,
                ) as resp:
                    raw = await self._read_body(resp)
                    elapsed_ms = int((time.monotonic() - t0) * 1000)
                    if raw is None:
                        logger.warning(
                            "HTTP %s %s body exceeds %s bytes, rejected",
                            method,
                            redact_url(url),
                            self._read_limit_bytes,
                        )
                        return HttpFetchResult(
                            ok=False,
                            response=None,
                            reason_code="body_too_large",
                            error_text=f"body exceeds {self._read_limit_bytes} bytes",
                            elapsed_ms=elapsed_ms,
                        )
                    text = decode_body(raw, resp.charset)

                    logger.debug(
                        "HTTP %s %s -> %s elapsed=%sms bytes=%s",
                        method,
                        redact_url(url),
                        resp.status,
                        elapsed_ms,
                        len(raw),
                    )

                    response = HttpResponse(
                        status=resp.status,
                        final_url=str(resp.url),
                        text=text,
                        request_url=url,
                        method=method,
                        elapsed_ms=elapsed_ms,
                    )
                    return HttpFetchResult(
                        ok=True,
                        response=response,
                        reason_code=None,
                        error_text=None,
                        elapsed_ms=elapsed_ms,
                    )

            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                reason_code, error_text = self._classify_error(exc)
                elapsed_ms = int((time.monotonic() - t0) * 1000)
                logger.warning(
                    "HTTP %s %s failed reason=%s elapsed=%sms error=%s",
                    method,
                    redact_url(url),
                    reason_code,
                    elapsed_ms,
                    error_text,
                )
                return HttpFetchResult(
                    ok=False,
                    response=None,
                    reason_code=reason_code,
                    error_text=error_text,
                    elapsed_ms=elapsed_ms,
                )

    async def fetch_text(self, session: aiohttp.ClientSession, url: str) -> str:
        """
        GET страницы формы.

        Любая сетевая ошибка, таймаут или не-2xx статус превращаются в FetchError.
        """
        res = await self.fetch_ex(session, url)
        if not res.ok or res.response is None:
            raise FetchError(url, res.reason_code or "unknown_error", res.error_text or "")

        status = res.response.status
        if not 200 <= status <= 299:
            raise FetchError(url, f"http_{status}", res.response.text[:200], status=status)
        return res.response.text

    async def get_json(
        self,
        session: aiohttp.ClientSession,
        url: str,
        *,
        headers: Optional[dict[str, str]] = None,
    ) -> tuple[int, Any]:
        """GET JSON. Возвращает (status, payload); при ошибке сети — FetchError."""
        res = await self.fetch_ex(session, url, headers=headers)
        if not res.ok or res.response is None:
            raise FetchError(url, res.reason_code or "unknown_error", res.error_text or "")
        return res.response.status, _parse_json(res.response.text)

    async def post_json(
        self,
        session: aiohttp.ClientSession,
        url: str,
        payload: dict,
    ) -> tuple[int, Any]:
        """POST JSON. Возвращает (status, payload); при ошибке сети — FetchError."""
        res = await self.fetch_ex(session, url, method="POST", json_body=payload)
        if not res.ok or res.response is None:
            raise FetchError(redact_url(url), res.reason_code or "unknown_error", res.error_text or "")
        return res.response.status, _parse_json(res.response.text)


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text) if text else None
    except json.JSONDecodeError:
        logger.debug("Response body is not JSON (%s bytes)", len(text))
        return None


def redact_url(url: str) -> str:
    """Маскирует токен бота в URL перед логированием."""
    return _BOT_TOKEN_RE.sub("/bot***/", url)


def decode_body(body: bytes, charset: Optional[str]) -> str:
    """Декодирование тела с учётом charset из заголовков."""
    enc = charset or "utf-8"
    try:
        return body.decode(enc, errors="replace")
    except LookupError as exc:
        logger.warning("Unknown charset=%s: %s; fallback to utf-8", enc, exc)
        return body.decode("utf-8", errors="replace")
