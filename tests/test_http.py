import asyncio

import aiohttp
import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from formwatch.errors import FetchError
from formwatch.http import HttpClient, _parse_json, decode_body, redact_url
from formwatch.models import Verdict
from formwatch.signals.rules import classify


def test_redact_url_hides_bot_token() -> None:
    url = "https://api.telegram.org/bot123456:AA-secret_token/sendMessage"

    assert redact_url(url) == "https://api.telegram.org/bot***/sendMessage"
    assert redact_url("https://docs.google.com/forms/d/e/x/viewform") == "https://docs.google.com/forms/d/e/x/viewform"


def test_classify_error_codes() -> None:
    # Коды ошибок стабильны: они уходят в ответ /check и в логи.
    client = HttpClient(rps=1.0, total_timeout_s=1.0)

    assert client._classify_error(asyncio.TimeoutError())[0] == "timeout_total"
    assert client._classify_error(aiohttp.ServerTimeoutError("slow"))[0] == "timeout_server"
    assert client._classify_error(aiohttp.InvalidURL("not a url"))[0] == "invalid_url"
    assert client._classify_error(aiohttp.ClientPayloadError("broken"))[0] == "client_error"
    assert client._classify_error(ValueError("boom"))[0] == "unknown_error"


def test_decode_body_with_unknown_charset_falls_back_to_utf8() -> None:
    body = "Форма".encode("utf-8")

    assert decode_body(body, None) == "Форма"
    assert decode_body(body, "no-such-charset") == "Форма"
    assert decode_body("caf\xe9".encode("latin-1"), "latin-1") == "caf\xe9"


def test_parse_json_tolerates_non_json() -> None:
    assert _parse_json('{"ok": true}') == {"ok": True}
    assert _parse_json("") is None
    assert _parse_json("<html>Bad Gateway</html>") is None


# Начало страницы с формой, затем с паузой фраза о закрытии.
_STREAM_HEAD = "<html><body><form><button>Submit</button>" + "<div>question</div>" * 50
_STREAM_TAIL = "<p>This form is no longer accepting responses</p></form></body></html>"


async def _stream_page(request: web.Request) -> web.StreamResponse:
    resp = web.StreamResponse(headers={"Content-Type": "text/html; charset=utf-8"})
    await resp.prepare(request)
    await resp.write(_STREAM_HEAD.encode("utf-8"))
    await asyncio.sleep(0.2)
    await resp.write(_STREAM_TAIL.encode("utf-8"))
    await resp.write_eof()
    return resp


async def _fetch_streamed(client: HttpClient) -> str:
    app = web.Application()
    app.router.add_get("/form", _stream_page)
    server = TestServer(app)
    await server.start_server()
    try:
        async with client.create_session() as session:
            return await client.fetch_text(session, str(server.make_url("/form")))
    finally:
        await server.close()


def test_fetch_text_reads_body_sent_in_several_writes() -> None:
    # Страница приходит двумя кусками: вердикт должен строиться по всему телу.
    text = asyncio.run(_fetch_streamed(HttpClient(rps=100.0, total_timeout_s=5.0)))

    assert text == _STREAM_HEAD + _STREAM_TAIL
    assert classify(text).verdict is Verdict.CLOSED


def test_fetch_text_rejects_body_over_limit() -> None:
    client = HttpClient(rps=100.0, total_timeout_s=5.0, read_limit_bytes=len(_STREAM_HEAD) + 10)

    with pytest.raises(FetchError) as exc_info:
        asyncio.run(_fetch_streamed(client))

    assert exc_info.value.reason_code == "body_too_large"
