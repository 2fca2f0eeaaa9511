import logging
import threading

import uvicorn

from .api import create_app
from .bot import build_application
from .config import Settings
from .logging_utils import setup_logging
from .notifications import NotificationDispatcher
from .service import LedgerEngine

logger = logging.getLogger("taskledger")


def main() -> None:
    settings = Settings.from_env()
    setup_logging(settings.log_level)

    dispatcher = NotificationDispatcher()
    engine = LedgerEngine(dispatcher=dispatcher, referral_bonus=settings.referral_bonus)
    engine.tasks.seed_if_empty()
    app = create_app(engine, settings)

    if not settings.bot_enabled:
        logger.warning("Telegram token not provided. Bot disabled.")
        dispatcher.start()
        try:
            uvicorn.run(app, host="0.0.0.0", port=settings.port)
        finally:
            dispatcher.stop()
        return

    application = build_application(settings, engine, dispatcher)
    dispatcher.start()

    server = threading.Thread(
        target=uvicorn.run,
        args=(app,),
        kwargs={"host": "0.0.0.0", "port": settings.port},
        name="admin-api",
        daemon=True,
    )
    server.start()
    logger.info("Server running on port %s", settings.port)

    try:
        application.run_polling()
    finally:
        dispatcher.stop()


if __name__ == "__main__":
    main()
