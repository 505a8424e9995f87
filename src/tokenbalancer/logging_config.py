"""Structured logging: console, application log, order log and decision log.

Order events (requests answered, rejected, expired) are high volume and
go to their own file only. Decision events (plans, drift trips, state
changes) go to the decision log and also stay in the application log.
"""

import logging
import logging.handlers
import re
from pathlib import Path
from typing import Optional

import structlog

from tokenbalancer.config import LoggingConfig

ORDER_LOGGER = "tokenbalancer.orders"
DECISION_LOGGER = "tokenbalancer.decisions"

_ADDRESS = re.compile(r"0x([0-9a-fA-F]{4})[0-9a-fA-F]{32}([0-9a-fA-F]{4})(?![0-9a-fA-F])")


def shorten_addresses(logger, method_name, event_dict):
    """Abbreviate 20-byte hex addresses to 0x1234..abcd for the console."""
    for key, value in event_dict.items():
        if isinstance(value, str) and "0x" in value:
            event_dict[key] = _ADDRESS.sub(r"0x\1..\2", value)
    return event_dict


class ExcludeLoggers(logging.Filter):
    """Drop records emitted by the named loggers or their children."""

    def __init__(self, *names: str):
        super().__init__()
        self._names = names

    def filter(self, record: logging.LogRecord) -> bool:
        return not any(
            record.name == name or record.name.startswith(name + ".") for name in self._names
        )


def _rotating_handler(
    path: str, config: LoggingConfig, formatter: logging.Formatter
) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=config.max_bytes,
        backupCount=config.backup_count,
    )
    handler.setFormatter(formatter)
    return handler


def configure_logging(config: LoggingConfig, wallet: Optional[str] = None) -> None:
    """Set up structured logging with console + file outputs.

    Args:
        config: Log level, file paths and rotation settings.
        wallet: Maker wallet address, bound to every event when given.
    """
    for log_path in [config.app_log, config.order_log, config.decision_log]:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if wallet:
        structlog.contextvars.bind_contextvars(wallet=wallet)

    # Files keep full addresses, the console shortens them
    json_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        foreign_pre_chain=shared_processors,
    )
    console_formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            shorten_addresses,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        foreign_pre_chain=shared_processors,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))

    # Quiet third-party loggers
    for noisy_logger in ["aiohttp", "urllib3", "asyncio"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(console_formatter)
    root_logger.addHandler(console_handler)

    app_handler = _rotating_handler(config.app_log, config, json_formatter)
    app_handler.addFilter(ExcludeLoggers(ORDER_LOGGER))
    root_logger.addHandler(app_handler)

    order_logger = logging.getLogger(ORDER_LOGGER)
    order_logger.addHandler(_rotating_handler(config.order_log, config, json_formatter))
    order_logger.propagate = True

    decision_logger = logging.getLogger(DECISION_LOGGER)
    decision_logger.addHandler(_rotating_handler(config.decision_log, config, json_formatter))
    decision_logger.propagate = True


def get_order_logger() -> structlog.stdlib.BoundLogger:
    """Get the order-specific logger."""
    return structlog.get_logger(ORDER_LOGGER)


def get_decision_logger() -> structlog.stdlib.BoundLogger:
    """Get the decision-specific logger."""
    return structlog.get_logger(DECISION_LOGGER)
