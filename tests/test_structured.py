import asyncio
from typing import Any

import pytest

from fakes import FORM_URL, OPEN_PAGE, FakeHttpClient, FakeSession

from formwatch.errors import FetchError, StructuredApiError
from formwatch.models import Verdict
from formwatch.signals import HeuristicSource, StructuredApiSource, default_sources, resolve_verdict
from formwatch.signals.structured import extract_accepting_flag


class _ApiHttp(FakeHttpClient):
    """FakeHttpClient с ответом Forms API на get_json."""

    def __init__(self, status: int = 200, payload: Any = None, error: Exception | None = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.status = status
        self.payload = payload
        self.error = error
        self.json_calls: list[tuple[str, dict]] = []

    async def get_json(self, session, url: str, *, headers=None):
        self.json_calls.append((url, dict(headers or {})))
        if self.error is not None:
            raise self.error
        return self.status, self.payload


def _accepting_payload(flag: Any) -> dict:
    return {"formId": "abc", "publishSettings": {"publishState": {"isPublished": True, "isAcceptingResponses": flag}}}


def test_extract_accepting_flag() -> None:
    assert extract_accepting_flag(_accepting_payload(True)) is True
    assert extract_accepting_flag(_accepting_payload(False)) is False
    # Старые формы без publishSettings — сигнала нет.
    assert extract_accepting_flag({"formId": "abc"}) is None


def test_extract_accepting_flag_rejects_bad_payload() -> None:
    with pytest.raises(StructuredApiError):
        extract_accepting_flag(["not", "an", "object"])
    with pytest.raises(StructuredApiError):
        extract_accepting_flag(_accepting_payload("yes"))
    # Неожиданные типы на любом уровне — тоже StructuredApiError, а не AttributeError.
    for payload in (
        {"publishSettings": ["x"]},
        {"publishSettings": "published"},
        {"publishSettings": {"publishState": 1}},
        {"publishSettings": {"publishState": [True]}},
    ):
        with pytest.raises(StructuredApiError):
            extract_accepting_flag(payload)


def test_structured_source_returns_none_on_malformed_payload() -> None:
    for payload in ({"publishSettings": ["x"]}, {"publishSettings": {"publishState": "open"}}):
        http = _ApiHttp(payload=payload)
        assert asyncio.run(StructuredApiSource(http, "abc", "tkn").lookup(FakeSession())) is None


def test_structured_source_accepting_snapshot() -> None:
    http = _ApiHttp(payload=_accepting_payload(True))

    snapshot = asyncio.run(StructuredApiSource(http, "abc", "tkn").lookup(FakeSession()))

    assert snapshot is not None
    assert snapshot.verdict is Verdict.ACCEPTING
    assert snapshot.reason_code == "structured-api:accepting"
    assert snapshot.source == "forms-api:abc"
    url, headers = http.json_calls[0]
    assert url == "https://forms.googleapis.com/v1/forms/abc"
    assert headers["Authorization"] == "Bearer tkn"


def test_structured_source_gives_no_signal_when_closed() -> None:
    # API говорит «закрыто»: решение оставляем эвристике.
    http = _ApiHttp(payload=_accepting_payload(False))

    assert asyncio.run(StructuredApiSource(http, "abc", "tkn").lookup(FakeSession())) is None


def test_structured_source_swallows_errors() -> None:
    for http in (
        _ApiHttp(status=403, payload={"error": {"message": "forbidden"}}),
        _ApiHttp(error=FetchError("https://forms.googleapis.com/v1/forms/abc", "timeout_total")),
        _ApiHttp(payload="garbage"),
    ):
        assert asyncio.run(StructuredApiSource(http, "abc", "tkn").lookup(FakeSession())) is None


def test_default_sources_chain() -> None:
    http = _ApiHttp()

    plain = default_sources(http, FORM_URL)
    with_api = default_sources(http, FORM_URL, forms_api_form_id="abc", forms_api_token="tkn")
    half_configured = default_sources(http, FORM_URL, forms_api_form_id="abc")

    assert [type(s) for s in plain] == [HeuristicSource]
    assert [type(s) for s in with_api] == [StructuredApiSource, HeuristicSource]
    assert [type(s) for s in half_configured] == [HeuristicSource]


def test_resolve_verdict_falls_back_to_heuristic() -> None:
    http = _ApiHttp(status=500, payload={}, pages={FORM_URL: OPEN_PAGE})
    sources = default_sources(http, FORM_URL, forms_api_form_id="abc", forms_api_token="tkn")

    snapshot = asyncio.run(resolve_verdict(sources, FakeSession()))

    assert snapshot is not None
    assert snapshot.verdict is Verdict.ACCEPTING
    assert snapshot.source == FORM_URL
    assert http.called == [FORM_URL]
