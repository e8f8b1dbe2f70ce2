from __future__ import annotations

from typing import Optional


class FormwatchError(Exception):
    """Базовая ошибка сервиса."""


class FetchError(FormwatchError):
    """
    Основной источник недоступен: таймаут, сеть или не-2xx ответ.

    Прерывает проверку до изменения состояния. Вызывающая сторона
    может повторить проверку по своему расписанию.
    """

    def __init__(self, url: str, reason_code: str, detail: str = "", status: Optional[int] = None) -> None:
        self.url = url
        self.reason_code = reason_code
        self.detail = detail
        self.status = status
        super().__init__(f"fetch failed url={url} reason={reason_code} status={status} detail={detail}")


class ProbeError(FormwatchError):
    """Ошибка на одной альтернативной ссылке. Логируется и пропускается."""

    def __init__(self, url: str, cause: BaseException) -> None:
        self.url = url
        self.cause = cause
        super().__init__(f"probe failed url={url}: {cause}")


class StructuredApiError(FormwatchError):
    """Ошибка Forms API. Наружу не выходит, проверка уходит в эвристику."""


class DeliveryFailure(FormwatchError):
    """Транспорт уведомлений вернул ошибку. Повторов внутри ядра нет."""

    def __init__(self, detail: str, status: Optional[int] = None) -> None:
        self.detail = detail
        self.status = status
        super().__init__(f"delivery failed status={status}: {detail}")
