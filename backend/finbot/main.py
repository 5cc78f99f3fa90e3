import logging

from sqlalchemy.exc import SQLAlchemyError

from .config import get_settings
from .db import build_engine, build_session_factory, init_db
from .dialogue import DialogueManager
from .services import FinanceService
from .telegram_bot import build_application

logger = logging.getLogger(__name__)


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    if not settings.bot_token:
        raise SystemExit("Please set BOT_TOKEN in the environment to run the bot.")

    engine = build_engine(settings.sqlalchemy_url)
    try:
        init_db(engine)
    except SQLAlchemyError as exc:
        logger.error("Failed to connect to the database: %s", exc)
        raise SystemExit("Could not connect to the database.") from exc

    service = FinanceService(build_session_factory(engine))
    application = build_application(settings, DialogueManager(service), engine=engine)
    logger.info("Starting Telegram bot...")
    application.run_polling(drop_pending_updates=True)


if __name__ == "__main__":
    main()
