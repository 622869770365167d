"""
Logging processors for structlog event processing.

This module provides processors for sanitizing sensitive data and adding
correlation IDs and relay context to every log entry.
"""

import re
import uuid
from datetime import UTC, datetime
from typing import Any

# Patterns match whole words or specific suffixes/prefixes of field names
SENSITIVE_PATTERNS = [
    r"\bpassword\b",
    r"\btoken\b",
    r"\bsecret\b",
    r"\bsignature\b",
    r"_key\b",  # api_key, public_key, private_key ...
    r"\bkey_\b",
    r"^key$",
    r"_pem\b",
    r"\bpayload\b",
    r"\bcredential\b",
]

# Field names that look sensitive but carry no secret material
SAFE_FIELDS = {
    "token_length",
    "payload_length",
    "signature_length",
}


def sanitize_sensitive_data(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Remove sensitive data from log entries.

    Votifier tokens are HMAC keys, so they must never reach a log file. The
    same applies to signatures and raw payloads.

    Args:
        _logger: Logger instance (unused)
        _name: Logger name (unused)
        event_dict: Event dictionary to sanitize

    Returns:
        Sanitized event dictionary
    """

    def sanitize_dict(d: dict[str, Any]) -> dict[str, Any]:
        """Recursively sanitize dictionary values."""
        sanitized: dict[str, Any] = {}
        for key, value in d.items():
            if isinstance(value, dict):
                sanitized[key] = sanitize_dict(value)
                continue
            key_lower = str(key).lower()
            if key_lower in SAFE_FIELDS:
                sanitized[key] = value
            elif any(re.search(pattern, key_lower) for pattern in SENSITIVE_PATTERNS):
                sanitized[key] = "[REDACTED]"
            else:
                sanitized[key] = value
        return sanitized

    return sanitize_dict(event_dict)


def add_correlation_id(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Add correlation ID to log entries if not already present.

    Args:
        _logger: Logger instance (unused)
        _name: Logger name (unused)
        event_dict: Event dictionary to enhance

    Returns:
        Enhanced event dictionary with correlation ID
    """
    if "correlation_id" not in event_dict:
        event_dict["correlation_id"] = str(uuid.uuid4())

    return event_dict


def add_relay_context(logger: Any, _method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Add timestamp and logger name to log entries.

    Args:
        logger: Wrapped logger instance (its name is recorded when it has one)
        _method_name: Logging method name (unused)
        event_dict: Event dictionary to enhance

    Returns:
        Enhanced event dictionary
    """
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(UTC).isoformat()

    logger_name = getattr(logger, "name", None)
    if "logger_name" not in event_dict and logger_name:
        event_dict["logger_name"] = logger_name

    return event_dict
