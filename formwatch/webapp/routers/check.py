from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from formwatch.errors import DeliveryFailure, FetchError

logger = logging.getLogger(__name__)

router = APIRouter()


def _require_key(request: Request, key: str) -> None:
    """Проверка общего секрета из query-параметра ?key=..."""
    secret = request.app.state.settings.runtime.secret_key
    if not key or not hmac.compare_digest(key.encode("utf-8"), secret.encode("utf-8")):
        logger.warning("[api] unauthorized request to %s", request.url.path)
        raise HTTPException(status_code=401, detail="unauthorized")


@router.get("/", response_class=PlainTextResponse)
def index() -> str:
    return "form-checker running"


@router.get("/check")
async def check(request: Request, key: str = Query(""), force: bool = Query(False)) -> JSONResponse:
    """Основной маршрут: его дёргает внешний cron раз в пару минут."""
    _require_key(request, key)
    checker = request.app.state.checker
    try:
        result = await checker.run_check(forced=force)
    except FetchError as exc:
        return JSONResponse(
            status_code=502,
            content={"ok": False, "error": "failed to fetch form", "reason": exc.reason_code},
        )

    status_code = 200 if result.delivery_error is None else 502
    return JSONResponse(status_code=status_code, content=result.as_dict())


@router.get("/test-notify")
async def test_notify(request: Request, key: str = Query("")) -> JSONResponse:
    _require_key(request, key)
    checker = request.app.state.checker
    try:
        outcome = await checker.run_forced_test_notification()
    except DeliveryFailure as exc:
        return JSONResponse(status_code=502, content={"ok": False, "error": exc.detail})
    return JSONResponse(content={"ok": outcome.ok, "status": outcome.status, "detail": outcome.detail})


@router.get("/deliveries")
def deliveries(request: Request, key: str = Query(""), limit: int = Query(20, ge=1, le=200)) -> dict:
    _require_key(request, key)
    entries = request.app.state.delivery_log.recent(limit)
    return {
        "entries": [
            {"at": entry.at.isoformat() if entry.at else None, "ok": entry.ok, "detail": entry.detail}
            for entry in entries
        ]
    }
