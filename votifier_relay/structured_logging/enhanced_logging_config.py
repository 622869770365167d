"""
Enhanced structlog-based logging configuration for the Votifier relay client.

This module provides the logging system with MDC (Mapped Diagnostic Context),
correlation IDs and security sanitization.

CRITICAL LOGGING REQUIREMENT:
All modules MUST use get_logger() from this module instead of
logging.getLogger(). Standard Python loggers do not accept the keyword
context that every relay log call passes.

CORRECT USAGE:
    from votifier_relay.structured_logging.enhanced_logging_config import get_logger
    logger = get_logger(__name__)
    logger.info("Vote relayed", host=host, port=port)
"""

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars
from structlog.stdlib import BoundLogger, LoggerFactory

from votifier_relay.structured_logging.logging_processors import (
    add_correlation_id,
    add_relay_context,
    sanitize_sensitive_data,
)
from votifier_relay.structured_logging.logging_utilities import (
    detect_environment,
    ensure_log_directory,
    resolve_log_base,
)

# NOTE: Infrastructure code uses structlog.get_logger() directly to avoid
# circular imports during logging initialization.
logger = structlog.get_logger(__name__)

LOG_FILE_NAME = "votifier.log"
_ANSI_ESCAPE = re.compile(r"\x1B(?:[@-Z\\-_]|\[[0-?]*[ -/]*[@-~])")


class _LoggingState:
    """State container for logging initialization to avoid global statements."""

    initialized: bool = False
    signature: str | None = None
    handlers: list[logging.Handler] = []


_logging_state = _LoggingState()


def _build_renderer(log_format: str) -> Any:
    """Return the final structlog renderer for the configured format."""
    if log_format == "json":
        return structlog.processors.JSONRenderer(default=str)

    key_value = structlog.processors.KeyValueRenderer(key_order=["timestamp", "level", "event"])

    def strip_ansi_renderer(bound_logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        """Render key=value pairs with ANSI escape sequences removed."""
        return _ANSI_ESCAPE.sub("", key_value(bound_logger, name, event_dict))

    return strip_ansi_renderer


def configure_enhanced_structlog(
    environment: str | None = None,
    log_level: str = "INFO",
    log_config: dict[str, Any] | None = None,
) -> None:
    """
    Configure structlog with MDC, sanitization and correlation IDs.

    Args:
        environment: Environment name (auto-detected if None)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_config: Logging configuration dictionary
    """
    if environment is None:
        environment = detect_environment()
    log_config = log_config or {}

    base_processors = [
        # Bound relay context first so a bound correlation_id is kept
        merge_contextvars,
        # Sanitize before anything is rendered
        sanitize_sensitive_data,
        add_correlation_id,
        add_relay_context,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if not log_config.get("disable_logging", False):
        _setup_stdlib_handlers(environment, log_config, log_level)

    structlog.configure(
        processors=base_processors + [_build_renderer(log_config.get("format", "human"))],
        context_class=dict,
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=False,
    )


def _setup_stdlib_handlers(environment: str, log_config: dict[str, Any], log_level: str) -> None:
    """Attach console and rotating file handlers to the package logger."""
    package_logger = logging.getLogger("votifier_relay")
    for handler in _logging_state.handlers:
        package_logger.removeHandler(handler)
        handler.close()
    _logging_state.handlers = []

    level = getattr(logging, log_level.upper(), logging.INFO)
    package_logger.setLevel(level)
    formatter = logging.Formatter("%(message)s")

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    _logging_state.handlers.append(console_handler)

    if log_config.get("log_to_file", True):
        env_log_dir = resolve_log_base(log_config.get("log_base", "logs")) / environment
        log_path = env_log_dir / LOG_FILE_NAME
        ensure_log_directory(log_path)
        try:
            file_handler = RotatingFileHandler(
                log_path,
                maxBytes=int(log_config.get("max_bytes", 10 * 1024 * 1024)),
                backupCount=int(log_config.get("backup_count", 5)),
                encoding="utf-8",
            )
        except OSError as e:
            logger.warning("Could not open relay log file", log_path=str(log_path), error=str(e))
        else:
            file_handler.setFormatter(formatter)
            _logging_state.handlers.append(file_handler)

    for handler in _logging_state.handlers:
        handler.setLevel(level)
        package_logger.addHandler(handler)


def setup_enhanced_logging(config: dict[str, Any], *, force_reconfigure: bool = False) -> None:
    """
    Set up logging from a configuration dictionary.

    Args:
        config: Configuration dictionary with a "logging" section
        force_reconfigure: When True, tear down existing handlers before reconfiguring
    """
    config_signature = json.dumps(config, sort_keys=True, default=str)

    if _logging_state.initialized and not force_reconfigure:
        get_logger("votifier_relay.structured_logging.setup").debug(
            "setup_enhanced_logging skipped; logging system already initialized",
            config_signature=_logging_state.signature,
        )
        return

    logging_config = config.get("logging", {})
    environment = logging_config.get("environment") or detect_environment()
    log_level = logging_config.get("level", "INFO")

    configure_enhanced_structlog(environment, log_level, logging_config)

    get_logger("votifier_relay.structured_logging.enhanced").info(
        "Enhanced logging system initialized",
        environment=environment,
        log_level=log_level,
        log_base=logging_config.get("log_base", "logs"),
        disabled=logging_config.get("disable_logging", False),
    )

    _logging_state.initialized = True
    _logging_state.signature = config_signature


def bind_relay_context(
    vote_id: Any = None,
    host: str | None = None,
    port: int | None = None,
    correlation_id: str | None = None,
    **kwargs: Any,
) -> None:
    """
    Bind relay attempt context to the current logging context.

    Every log entry emitted while the context is bound carries the vote id and
    destination, so one relay attempt can be followed across modules.

    Args:
        vote_id: Identifier of the vote being relayed
        host: Destination Votifier host
        port: Destination Votifier port
        correlation_id: Correlation ID (generated when omitted)
        **kwargs: Additional context variables
    """
    context_vars = {
        "vote_id": vote_id,
        "host": host,
        "port": port,
        "correlation_id": correlation_id,
        **kwargs,
    }
    bind_contextvars(**{k: v for k, v in context_vars.items() if v is not None})


def clear_relay_context() -> None:
    """Clear the current relay context from logging."""
    clear_contextvars()


def get_current_context() -> dict[str, Any]:
    """Get the current logging context."""
    return structlog.contextvars.get_contextvars()


def get_logger(name: str) -> Any:  # Returns BoundLogger but typed as Any for flexibility
    """
    Get a structlog logger with the specified name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger instance
    """
    return structlog.get_logger(name)
