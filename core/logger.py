"""
Service Logger Setup

Configures where a microservice process sends its log records. Modules keep
using ``logging.getLogger(__name__)``, so the handlers go on the package
loggers (``microservices``, ``core``) as well as on the service logger.

Usage:
    from core.logger import setup_service_logger
    logger = setup_service_logger("order_service")
"""

import logging
import sys
from typing import Dict, List, Optional

from core.config import LoggingConfig

# Loggers that module-level ``getLogger(__name__)`` calls resolve under
PACKAGE_LOGGERS = ("microservices", "core")

_configured_services = set()
_package_handlers: Dict[str, List[logging.Handler]] = {}


def _build_handlers(config: LoggingConfig) -> List[logging.Handler]:
    formatter = logging.Formatter(config.log_format)
    handlers: List[logging.Handler] = []

    if config.enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

    if config.log_file:
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    return handlers


def _configure_package_loggers(config: LoggingConfig, log_level: int) -> None:
    """Replace the handlers installed on the package loggers by an earlier setup"""
    for name in PACKAGE_LOGGERS:
        package_logger = logging.getLogger(name)
        for handler in _package_handlers.pop(name, []):
            package_logger.removeHandler(handler)
            handler.close()

        handlers = _build_handlers(config)
        for handler in handlers:
            package_logger.addHandler(handler)
        package_logger.setLevel(log_level)
        _package_handlers[name] = handlers


def setup_service_logger(
    service_name: str,
    level: Optional[str] = None,
    config: Optional[LoggingConfig] = None
) -> logging.Logger:
    """
    Configure logging for a service and return its logger.

    Args:
        service_name: Logger name (e.g. "order_service")
        level: Log level override (defaults to LoggingConfig.log_level)
        config: Logging configuration (defaults to LoggingConfig.from_env())

    Returns:
        The configured service logger
    """
    config = config or LoggingConfig.from_env()
    log_level = getattr(logging, (level or config.log_level).upper(), logging.INFO)

    logger = logging.getLogger(service_name)
    logger.setLevel(log_level)

    if service_name in _configured_services:
        for name in PACKAGE_LOGGERS:
            logging.getLogger(name).setLevel(log_level)
        return logger

    for handler in _build_handlers(config):
        logger.addHandler(handler)
    logger.propagate = False

    _configure_package_loggers(config, log_level)

    _configured_services.add(service_name)
    return logger
