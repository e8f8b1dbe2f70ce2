import argparse
import asyncio
import json
import logging
import sys

from formwatch.checker import build_checker
from formwatch.db import create_db_state, init_db
from formwatch.errors import DeliveryFailure, FetchError
from formwatch.settings import configure_logging, load_settings

logger = logging.getLogger("formwatch.cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Одна проверка формы (для запуска из cron вместо HTTP-триггера)."
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Принудительное уведомление (работает только при FORCED_NOTIFY_ENABLED=true).",
    )
    parser.add_argument(
        "--test-notify",
        action="store_true",
        help="Только отправить тестовое сообщение, без проверки формы.",
    )
    return parser


async def _run(args: argparse.Namespace) -> int:
    settings = load_settings()
    configure_logging(settings.runtime.log_level)
    db = create_db_state(settings.runtime.database_url)
    init_db(db)
    checker = build_checker(settings, db)

    if args.test_notify:
        try:
            outcome = await checker.run_forced_test_notification()
        except DeliveryFailure as exc:
            print(json.dumps({"ok": False, "error": exc.detail}, ensure_ascii=False))
            return 1
        print(json.dumps({"ok": outcome.ok, "status": outcome.status, "detail": outcome.detail}, ensure_ascii=False))
        return 0

    try:
        result = await checker.run_check(forced=args.force)
    except FetchError as exc:
        print(json.dumps({"ok": False, "error": "failed to fetch form", "reason": exc.reason_code}, ensure_ascii=False))
        return 1

    print(json.dumps(result.as_dict(), ensure_ascii=False, indent=2))
    return 0 if result.delivery_error is None else 1


def main() -> None:
    args = build_parser().parse_args()
    sys.exit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
