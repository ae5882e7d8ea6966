import logging
import sys

from loguru import logger

from app.core.config import settings


class InterceptHandler(logging.Handler):
    """Route stdlib records (uvicorn, fastapi) through loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno
        logger.opt(exception=record.exc_info).bind(source=record.name).log(level, record.getMessage())


def setup_logging() -> None:
    logging.basicConfig(handlers=[InterceptHandler()], level=settings.log_level, force=True)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).handlers = [InterceptHandler()]
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    if settings.log_file:
        logger.add(
            settings.log_file,
            rotation="1 MB",
            retention="7 days",
            enqueue=True,
            backtrace=False,
            diagnose=False,
            level=settings.log_level,
        )
