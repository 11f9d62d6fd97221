"""Loguru setup. Standard logging (uvicorn, sqlalchemy) is routed into loguru."""

import logging
import sys

from loguru import logger

LOG_FORMAT = ' | '.join(
    (
        '<lk>{time:YYYY-MM-DD HH:mm:ss.SSS}</>',
        '<lvl>{level:<8}</>',
        '<c>{name}:{function}:{line}</>',
        '{message}',
    )
)


class InterceptHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find the caller outside of the logging module
        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )


def setup_logging(level: str = 'INFO') -> None:
    logger.remove()
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for name in ('uvicorn', 'uvicorn.error', 'uvicorn.access', 'sqlalchemy.engine'):
        std_logger = logging.getLogger(name)
        std_logger.handlers = [InterceptHandler()]
        std_logger.propagate = False
