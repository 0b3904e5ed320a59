#!/usr/bin/env python3
"""
Service logger setup

Configures the root logger of a microservice from LoggingConfig:
a console handler and, when LOG_FILE is set, a rotating file handler.

USAGE:
    from core.logger import setup_service_logger

    logger = setup_service_logger("sales_order_service")
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

from core.config.logging_config import LoggingConfig

_configured_services = set()


def setup_service_logger(
    service_name: str,
    level: Optional[str] = None,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure logging for a service and return its logger.

    Handlers are attached to the root logger once per service name, so
    module loggers created with logging.getLogger(__name__) inherit them.
    """
    config = config or LoggingConfig.from_env()
    log_level = getattr(logging, (level or config.log_level).upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(log_level)

    if service_name not in _configured_services:
        formatter = logging.Formatter(config.log_format)

        if config.enable_console:
            console_handler = logging.StreamHandler(sys.stdout)
            console_handler.setFormatter(formatter)
            root.addHandler(console_handler)

        if config.log_file:
            file_handler = RotatingFileHandler(
                config.log_file,
                maxBytes=config.log_file_max_bytes,
                backupCount=config.log_file_backups,
            )
            file_handler.setFormatter(formatter)
            root.addHandler(file_handler)

        # Quiet noisy third-party loggers
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("nats").setLevel(logging.WARNING)

        _configured_services.add(service_name)

    logger = logging.getLogger(service_name)
    logger.setLevel(log_level)
    return logger
