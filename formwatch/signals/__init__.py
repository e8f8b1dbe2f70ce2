from formwatch.http import HttpClient

from .base import VerdictSource, resolve_verdict
from .heuristic import HeuristicSource
from .rules import PhraseRule, classify
from .structured import StructuredApiSource


def default_sources(
    http: HttpClient,
    locator: str,
    *,
    forms_api_form_id: str | None = None,
    forms_api_token: str | None = None,
) -> list[VerdictSource]:
    """
    Цепочка источников по приоритету.
    Forms API подключается, только если заданы и id формы, и токен.
    """
    sources: list[VerdictSource] = []
    if forms_api_form_id and forms_api_token:
        sources.append(StructuredApiSource(http, forms_api_form_id, forms_api_token))
    sources.append(HeuristicSource(http, locator))
    return sources


__all__ = [
    "HeuristicSource",
    "PhraseRule",
    "StructuredApiSource",
    "VerdictSource",
    "classify",
    "default_sources",
    "resolve_verdict",
]
