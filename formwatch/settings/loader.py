from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from formwatch.decision import AmbiguousPolicy

logger = logging.getLogger(__name__)

DEFAULT_YAML_PATH = "config.yaml"
REQUIRED_ENV = ("FORM_URL", "TELEGRAM_BOT_TOKEN", "TELEGRAM_CHAT_ID", "SECRET_KEY")


# -----------------------------
# Models
# -----------------------------

@dataclass(frozen=True)
class RuntimeSettings:
    form_url: str
    telegram_bot_token: str = field(repr=False)
    telegram_chat_id: str
    secret_key: str = field(repr=False)
    database_url: str
    app_host: str
    app_port: int
    log_level: str
    forced_notify_enabled: bool
    forms_api_form_id: Optional[str] = None
    forms_api_token: Optional[str] = field(default=None, repr=False)


@dataclass(frozen=True)
class AppSettings:
    http_timeout_s: float = 20.0
    http_rps: float = 2.0
    http_user_agent: str = "form-checker/1.0"
    probe_enabled: bool = True
    probe_max_alternatives: int = 6
    ambiguous_policy: AmbiguousPolicy = AmbiguousPolicy.CLOSED
    degraded_notify: bool = True
    delivery_log_max_entries: int = 200


@dataclass(frozen=True)
class Settings:
    runtime: RuntimeSettings
    app: AppSettings


# -----------------------------
# Helpers
# -----------------------------

def _get_bool_env(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        logger.debug("ENV %s not set -> default=%s", name, default)
        return default
    normalized = raw.strip().lower()
    result = normalized in {"1", "true", "yes", "on"}
    logger.debug("ENV %s=%r normalized=%r -> %s", name, raw, normalized, result)
    return result


def _parse_bool(value: object, name: str) -> bool:
    """
    bool из YAML. Строки разбираем как в ENV (true/false, yes/no, on/off, 1/0), прочее — ValueError.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in {"1", "true", "yes", "on"}:
            return True
        if normalized in {"0", "false", "no", "off"}:
            return False
    logger.error("%s must be a boolean, got %r", name, value)
    raise ValueError(f"{name} must be a boolean")


def _read_yaml(path: str) -> dict:
    p = Path(path)
    if not p.exists():
        logger.error("YAML config not found: %s", path)
        raise FileNotFoundError(path)

    try:
        content = p.read_text(encoding="utf-8")
        logger.debug("YAML config read: %s bytes", len(content))
        return yaml.safe_load(content) or {}
    except yaml.YAMLError as exc:
        logger.error("YAML parse error: %s", exc)
        raise


def _optional_dict(data: dict, key: str) -> dict:
    v = data.get(key, {})
    if v is None:
        return {}
    if not isinstance(v, dict):
        logger.error("Config section '%s' is not a dict", key)
        raise KeyError(f"bad section: {key}")
    return v


def _load_yaml_data(default_yaml_path: str) -> dict:
    """
    YAML необязателен: дефолтный config.yaml может отсутствовать.
    Явно заданный APP_CONFIG_PATH обязан существовать.
    """
    explicit = os.getenv("APP_CONFIG_PATH")
    if explicit:
        logger.info("Loading YAML config: %s", explicit)
        return _read_yaml(explicit)
    if not Path(default_yaml_path).exists():
        logger.info("YAML config %s not found, using built-in defaults", default_yaml_path)
        return {}
    logger.info("Loading YAML config: %s", default_yaml_path)
    return _read_yaml(default_yaml_path)


def _build_app_settings(data: dict) -> AppSettings:
    defaults = AppSettings()
    http = _optional_dict(data, "http")
    probe = _optional_dict(data, "probe")
    decision = _optional_dict(data, "decision")
    delivery_log = _optional_dict(data, "delivery_log")

    raw_policy = str(decision.get("ambiguous_policy", defaults.ambiguous_policy.value)).strip().lower()
    try:
        ambiguous_policy = AmbiguousPolicy(raw_policy)
    except ValueError:
        logger.error("decision.ambiguous_policy must be one of %s", [p.value for p in AmbiguousPolicy])
        raise

    app = AppSettings(
        http_timeout_s=float(http.get("timeout_s", defaults.http_timeout_s)),
        http_rps=float(http.get("rps", defaults.http_rps)),
        http_user_agent=str(http.get("user_agent", defaults.http_user_agent)),
        probe_enabled=_parse_bool(probe.get("enabled", defaults.probe_enabled), "probe.enabled"),
        probe_max_alternatives=int(probe.get("max_alternatives", defaults.probe_max_alternatives)),
        ambiguous_policy=ambiguous_policy,
        degraded_notify=_parse_bool(decision.get("degraded_notify", defaults.degraded_notify), "decision.degraded_notify"),
        delivery_log_max_entries=int(delivery_log.get("max_entries", defaults.delivery_log_max_entries)),
    )

    if app.http_timeout_s <= 0:
        logger.error("http.timeout_s must be > 0")
        raise ValueError("http.timeout_s must be > 0")
    if app.http_rps <= 0:
        logger.error("http.rps must be > 0")
        raise ValueError("http.rps must be > 0")
    if app.delivery_log_max_entries <= 0:
        logger.error("delivery_log.max_entries must be > 0")
        raise ValueError("delivery_log.max_entries must be > 0")
    return app


# -----------------------------
# Public API
# -----------------------------

def load_settings(default_yaml_path: str = DEFAULT_YAML_PATH) -> Settings:
    """
    Единая точка загрузки настроек, вызывается один раз при старте.

    Runtime (ENV):
      FORM_URL, TELEGRAM_BOT_TOKEN, TELEGRAM_CHAT_ID, SECRET_KEY — обязательны;
      DATABASE_URL, APP_HOST, APP_PORT, LOG_LEVEL, FORCED_NOTIFY_ENABLED,
      FORMS_API_FORM_ID, FORMS_API_TOKEN — опциональны.

    App (YAML, опционально):
      http.*, probe.*, decision.*, delivery_log.*
    """
    # ---- runtime (ENV) ----
    missing = [name for name in REQUIRED_ENV if not os.getenv(name)]
    if missing:
        logger.error("Missing required env vars: %s", ", ".join(missing))
        raise RuntimeError(f"missing required env vars: {', '.join(missing)}")

    runtime = RuntimeSettings(
        form_url=os.environ["FORM_URL"].strip(),
        telegram_bot_token=os.environ["TELEGRAM_BOT_TOKEN"].strip(),
        telegram_chat_id=os.environ["TELEGRAM_CHAT_ID"].strip(),
        secret_key=os.environ["SECRET_KEY"],
        database_url=os.getenv("DATABASE_URL", "sqlite:///formwatch.db"),
        app_host=os.getenv("APP_HOST", "0.0.0.0"),
        app_port=int(os.getenv("APP_PORT", os.getenv("PORT", "3000"))),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        forced_notify_enabled=_get_bool_env("FORCED_NOTIFY_ENABLED", False),
        forms_api_form_id=os.getenv("FORMS_API_FORM_ID") or None,
        forms_api_token=os.getenv("FORMS_API_TOKEN") or None,
    )

    # ---- app (YAML) ----
    app = _build_app_settings(_load_yaml_data(default_yaml_path))

    logger.info(
        "Settings loaded: form_url=%s forced_notify=%s forms_api=%s timeout_s=%s probe=%s "
        "ambiguous_policy=%s degraded_notify=%s port=%s",
        runtime.form_url,
        runtime.forced_notify_enabled,
        bool(runtime.forms_api_form_id and runtime.forms_api_token),
        app.http_timeout_s,
        app.probe_enabled,
        app.ambiguous_policy.value,
        app.degraded_notify,
        runtime.app_port,
    )
    return Settings(runtime=runtime, app=app)
