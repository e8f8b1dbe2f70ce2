from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from formwatch.checker import FormChecker, build_checker
from formwatch.db import create_db_state, init_db
from formwatch.delivery_log import SqlDeliveryLog
from formwatch.settings.loader import Settings, load_settings
from formwatch.settings.logging import configure_logging

from .routers.check import router as check_router

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, checker: Optional[FormChecker] = None) -> FastAPI:
    """
    Главная фабрика FastAPI приложения.

    Важно:
    - Загружаем settings (ENV + YAML) один раз при старте; без обязательных ENV старт падает.
    - Настраиваем логирование в stdout на уровне из окружения.
    - Кладём settings, checker и журнал доставок в app.state для роутеров.
    """
    # 1) Settings (ENV + YAML)
    if settings is None:
        settings = load_settings()

    # 2) Logging (stdout)
    configure_logging(settings.runtime.log_level)

    logger.info(
        "[api] app starting with host=%s port=%s log_level=%s",
        settings.runtime.app_host,
        settings.runtime.app_port,
        settings.runtime.log_level,
    )

    # 3) DB + ядро
    db = create_db_state(settings.runtime.database_url)
    init_db(db)
    if checker is None:
        checker = build_checker(settings, db)

    app = FastAPI(title="formwatch", version="1.0.0")
    app.state.settings = settings
    app.state.checker = checker
    app.state.delivery_log = SqlDeliveryLog(db, max_entries=settings.app.delivery_log_max_entries)

    # 4) Routers
    app.include_router(check_router)

    logger.info("[api] app created successfully")
    return app
