"""
Exception hierarchy for the Votifier relay client.

Every failure a relay attempt can hit is one of the classes below. They are
raised inside a connection session and converted into a failed RelayOutcome
at the session boundary, so none of them ever reaches the caller of
send_vote() or process_pending().
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .error_types import RelayErrorType
from .structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class ErrorContext:
    """
    Contextual information for error handling.

    Provides structured context for error reporting and debugging of a single
    relay attempt.
    """

    vote_id: str | None = None
    host: str | None = None
    port: int | None = None
    state: str | None = None
    timestamp: datetime = field(default_factory=datetime.now)
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert context to dictionary for logging."""
        return {
            "vote_id": self.vote_id,
            "host": self.host,
            "port": self.port,
            "state": self.state,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


class VoteRelayError(Exception):
    """
    Base exception for all relay errors.

    Provides structured error handling with context and metadata
    for proper error categorization and debugging.
    """

    error_type: RelayErrorType = RelayErrorType.INTERNAL_ERROR

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        details: dict[str, Any] | None = None,
        user_friendly: str | None = None,
    ):
        """
        Initialize relay error.

        Args:
            message: Technical error message (becomes the outcome response text)
            context: Error context information
            details: Additional error details
            user_friendly: Operator-facing error message
        """
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext()
        self.details = details or {}
        self.user_friendly = user_friendly or message
        self.timestamp = datetime.now()

        self._log_error()

    def _log_error(self) -> None:
        """Log the error with structured context."""
        logger.warning(
            "Vote relay error occurred",
            error_type=self.error_type.value,
            error_class=self.__class__.__name__,
            message=self.message,
            context=self.context.to_dict(),
            details=self.details,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for diagnostics."""
        return {
            "error_type": self.error_type.value,
            "message": self.message,
            "user_friendly": self.user_friendly,
            "context": self.context.to_dict(),
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }


class ConnectFailure(VoteRelayError):
    """OS-level connection failure: refused, unreachable, DNS."""

    error_type = RelayErrorType.CONNECT_FAILURE

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        errno_code: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, context, **kwargs)
        self.errno_code = errno_code
        if errno_code:
            self.details["errno_code"] = errno_code


class HandshakeParseFailure(VoteRelayError):
    """Malformed or absent handshake banner."""

    error_type = RelayErrorType.HANDSHAKE_PARSE_FAILURE


class EncodingFailure(VoteRelayError):
    """Bad key material, encryption or signature computation error."""

    error_type = RelayErrorType.ENCODING_FAILURE

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        variant: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, context, **kwargs)
        self.variant = variant
        if variant:
            self.details["variant"] = variant


class RelayTimeout(VoteRelayError):
    """Deadline exceeded in any session state."""

    error_type = RelayErrorType.TIMEOUT

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        elapsed_ms: int | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, context, **kwargs)
        self.elapsed_ms = elapsed_ms
        if elapsed_ms is not None:
            self.details["elapsed_ms"] = elapsed_ms


class ProtocolRejection(VoteRelayError):
    """Remote server signalled it did not accept the vote."""

    error_type = RelayErrorType.PROTOCOL_REJECTION

    def __init__(
        self,
        message: str,
        context: ErrorContext | None = None,
        response: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, context, **kwargs)
        self.response = response
        if response is not None:
            self.details["response_preview"] = response[:200]


class SessionStateError(RuntimeError):
    """Raised when a connection session is driven outside its lifecycle."""
