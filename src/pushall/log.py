"""Logging setup — structlog events rendered to console and a log file.

Learn: Application code logs structured events through structlog
(`logger.info("pushall.push", pushed_to=token, payload=...)`). Those
events are handed to stdlib logging, where a ProcessorFormatter renders
them as timestamped lines on two handlers: stderr and an append-only
file. Opening the file happens here, at startup. If it can't be opened
the OSError propagates and the server refuses to start.
"""

import logging
import sys

import structlog

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

# Handlers are attached to the package logger, not root, so uvicorn's
# own logging config and pytest's capture handlers stay untouched.
PACKAGE_LOGGER = "pushall"

_shared_processors = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt=TIMESTAMP_FORMAT, utc=False),
]


def _formatter() -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
    )


def configure_logging(log_file: str = "", level: str = "INFO") -> None:
    """Route structlog through stdlib logging to console (+ file if set).

    Safe to call more than once: handlers installed by a previous call
    are closed and replaced.
    """
    structlog.configure(
        processors=[
            *_shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    formatter = _formatter()
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, mode="a", encoding="utf-8"))
    for handler in handlers:
        handler.setFormatter(formatter)

    logger = logging.getLogger(PACKAGE_LOGGER)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level.upper())
