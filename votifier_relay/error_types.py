"""
Centralized error types and constants for the Votifier relay client.

This module defines standardized error types and messages so that relay
outcomes written back to the vote store read the same no matter which stage
of the attempt failed.
"""

from enum import Enum


class RelayErrorType(str, Enum):
    """Standardized relay failure categories."""

    CONNECT_FAILURE = "connect_failure"
    HANDSHAKE_PARSE_FAILURE = "handshake_parse_failure"
    ENCODING_FAILURE = "encoding_failure"
    TIMEOUT = "timeout"
    PROTOCOL_REJECTION = "protocol_rejection"
    INTERNAL_ERROR = "internal_error"


class ErrorMessages:
    """Common error messages for consistent outcome text."""

    CONNECTION_FAILED = "Votifier connection failed"
    CLOSED_WITHOUT_HANDSHAKE = "Votifier connection closed without handshake"
    HANDSHAKE_NOT_TEXT = "Failed to parse Votifier handshake: banner is not text"
    HANDSHAKE_TOO_LONG = "Failed to parse Votifier handshake: banner line too long"
    CONNECTION_TIMEOUT = "Votifier connection timeout"
    CLOSED_BEFORE_SEND = "Votifier connection closed by remote before vote was sent"
    WRITE_FAILED = "Failed to write vote to Votifier socket"
    CLOSED_WITHOUT_CONFIRMATION = "Votifier connection closed without confirmation"
    VOTE_REJECTED = "Vote rejected by Votifier server"
    NO_FIXED_KEY = "No fixed Votifier public key configured"
    INVALID_PUBLIC_KEY = "Invalid Votifier public key"
