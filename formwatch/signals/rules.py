from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from html import unescape

from formwatch.models import FormSnapshot, Verdict

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhraseRule:
    """
    Одно правило классификации.

    in_markup=True — искать в сырой разметке (нужно для URL в href),
    иначе в нормализованном тексте страницы.
    """

    phrase: str
    verdict: Verdict
    reason_prefix: str
    in_markup: bool = False

    def reason(self) -> str:
        return f'{self.reason_prefix}:"{self.phrase}"'


# Порядок важен: явное закрытие сильнее случайного слова "submit" на странице.
CLOSED_RULES: tuple[PhraseRule, ...] = (
    PhraseRule("this form is no longer accepting responses", Verdict.CLOSED, "matched-closed"),
    PhraseRule("is no longer accepting form responses", Verdict.CLOSED, "matched-closed"),
    PhraseRule("responses are no longer being accepted", Verdict.CLOSED, "matched-closed"),
    PhraseRule("no longer accepting responses", Verdict.CLOSED, "matched-closed"),
    PhraseRule("not accepting responses", Verdict.CLOSED, "matched-closed"),
)

# Стена логина означает «неизвестно», а не «закрыто».
BLOCKED_RULES: tuple[PhraseRule, ...] = (
    PhraseRule("please sign in", Verdict.BLOCKED, "blocked-signin"),
    PhraseRule("sign in", Verdict.BLOCKED, "blocked-signin"),
    PhraseRule("access denied", Verdict.BLOCKED, "blocked-signin"),
    PhraseRule("you need permission", Verdict.BLOCKED, "blocked-signin"),
    PhraseRule("accounts.google.com/servicelogin", Verdict.BLOCKED, "blocked-signin", in_markup=True),
)

CLASSIFICATION_RULES: tuple[PhraseRule, ...] = CLOSED_RULES + BLOCKED_RULES

AFFIRMATIVE_WORDS: tuple[str, ...] = ("submit", "send", "response")

FORM_CONTROL_MARKERS: tuple[str, ...] = ("<form", "<textarea", "<input", 'type="submit"')

REASON_FORM_CONTROLS = "found-form-controls"
REASON_NO_INDICATOR = "fallback-no-indicator"

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")


def normalize_text(content: str) -> str:
    """
    Плоский текст страницы в нижнем регистре.

    Содержимое <script> не выкидываем: страница формы держит состояние
    во встроенных данных.
    """
    text = _TAG_RE.sub(" ", content)
    text = unescape(text)
    return _WS_RE.sub(" ", text).strip().lower()


def has_form_controls(markup: str) -> bool:
    return any(marker in markup for marker in FORM_CONTROL_MARKERS)


def classify(content: str, source: str = "", rules: tuple[PhraseRule, ...] = CLASSIFICATION_RULES) -> FormSnapshot:
    """
    Классифицирует страницу формы. Первое совпадение выигрывает:
    closed-фразы, затем стена логина, затем признаки формы, иначе ambiguous.
    """
    text = normalize_text(content)
    markup = content.lower()

    for rule in rules:
        haystack = markup if rule.in_markup else text
        if rule.phrase in haystack:
            logger.debug("[classify] %s matched %s", source or "-", rule.reason())
            return FormSnapshot(verdict=rule.verdict, reason_code=rule.reason(), source=source)

    if any(word in text for word in AFFIRMATIVE_WORDS) or has_form_controls(markup):
        return FormSnapshot(verdict=Verdict.ACCEPTING, reason_code=REASON_FORM_CONTROLS, source=source)

    return FormSnapshot(verdict=Verdict.AMBIGUOUS, reason_code=REASON_NO_INDICATOR, source=source)
