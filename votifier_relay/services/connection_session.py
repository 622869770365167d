"""
Connection session for one Votifier relay attempt.

A session owns exactly one TCP connection and walks it through an explicit
state machine:

    CONNECTING -> AWAITING_HANDSHAKE -> ENCODING -> AWAITING_CONFIRMATION -> RESOLVED

Any non-terminal state can jump straight to RESOLVED on a socket error, a
close before the handshake, or expiry of the single deadline that covers the
whole attempt. Every failure is converted into a failed RelayOutcome here, so
run() never raises for relay problems.
"""

import asyncio
import errno
import json
import time
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from ..config.models import VotifierConfig
from ..error_types import ErrorMessages
from ..exceptions import (
    ConnectFailure,
    EncodingFailure,
    ErrorContext,
    HandshakeParseFailure,
    ProtocolRejection,
    RelayTimeout,
    SessionStateError,
    VoteRelayError,
)
from ..models.vote import ConnectionProbeResult, ProtocolVariant, RelayOutcome, VoteNotification, VotifierTarget
from ..protocol.encoders import VoteEncoder, build_encoders
from ..protocol.handshake import Handshake, parse_handshake
from ..protocol.signer import PEM_FOOTER, KeyMaterialError, load_public_key
from ..structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)

OpenConnection = Callable[..., Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]

READ_CHUNK_SIZE = 4096

VARIANT_LABELS = {
    ProtocolVariant.LEGACY_V1_RSA: "Votifier v1",
    ProtocolVariant.NUVOTIFIER_V2: "NuVotifier v2",
    ProtocolVariant.FIXED_KEY_RSA: "Votifier fixed-key RSA",
}


class SessionState(str, Enum):
    """Lifecycle states of a connection session."""

    CONNECTING = "connecting"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    ENCODING = "encoding"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    RESOLVED = "resolved"


class ConnectionSession:
    """
    One relay attempt against one Votifier endpoint.

    Sessions are single-use: run() or probe() may be called once, after
    which the session is RESOLVED and its socket released.
    """

    def __init__(
        self,
        target: VotifierTarget,
        vote: VoteNotification | None,
        config: VotifierConfig,
        encoders: dict[ProtocolVariant, VoteEncoder] | None = None,
        open_connection: OpenConnection | None = None,
        vote_id: Any = None,
    ):
        """
        Initialize a connection session.

        Args:
            target: Votifier endpoint to connect to
            vote: Vote to deliver (None for handshake-only probes)
            config: Relay configuration (deadline, grace delay, handshake limits)
            encoders: Encoder per protocol variant (built from config if omitted)
            open_connection: Stream factory, asyncio.open_connection by default
            vote_id: Identifier of the vote, for logging only
        """
        self.target = target
        self.vote = vote
        self.config = config
        self.encoders = encoders if encoders is not None else build_encoders(config)
        self.vote_id = vote_id
        self._open_connection: OpenConnection = open_connection or asyncio.open_connection

        self.state = SessionState.CONNECTING
        self.response_buffer = bytearray()
        self.handshake_complete = False
        self.handshake: Handshake | None = None
        self.outcome: RelayOutcome | None = None

        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._started = False
        self._started_at = 0.0

    # Public API

    async def run(self) -> RelayOutcome:
        """
        Deliver the vote and resolve to a RelayOutcome.

        Returns:
            RelayOutcome: success or failure of this attempt, never both

        Raises:
            SessionStateError: If the session was already used
        """
        if self.vote is None:
            raise SessionStateError("A vote is required to run a relay session")
        self._begin()

        logger.info(
            "Starting Votifier vote send process",
            host=self.target.host,
            port=self.target.port,
            username=self.vote.username,
            address=self.vote.address,
            vote_timestamp=self.vote.timestamp,
            token_length=len(self.target.token),
        )

        try:
            async with asyncio.timeout(self.config.timeout_seconds):
                response_text = await self._relay()
        except TimeoutError:
            return self._resolve_failure(self._timeout_error())
        except VoteRelayError as error:
            return self._resolve_failure(error)
        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: no relay fault may escape the session boundary
            logger.error("Unexpected error during vote relay", error=str(e), exc_info=True)
            return self._resolve_failure(
                VoteRelayError(f"Unexpected relay error: {e}", context=self._error_context())
            )
        finally:
            self._release()

        return self._resolve(
            RelayOutcome(
                success=True,
                response_text=response_text,
                duration_ms=self._elapsed_ms(),
                variant=self.handshake.variant if self.handshake else None,
            )
        )

    async def probe(self) -> ConnectionProbeResult:
        """
        Connect, read and classify the handshake banner, then disconnect.

        No vote is sent. Failures are reported in the result rather than raised.
        """
        self._begin()
        logger.info("Testing Votifier connection", host=self.target.host, port=self.target.port)

        try:
            async with asyncio.timeout(self.config.timeout_seconds):
                await self._connect()
                handshake = await self._await_handshake(read_key_block=False)
        except TimeoutError:
            error: VoteRelayError = self._timeout_error()
        except VoteRelayError as e:
            error = e
        else:
            self.state = SessionState.RESOLVED
            duration_ms = self._elapsed_ms()
            logger.info(
                "Votifier test connection successful",
                host=self.target.host,
                port=self.target.port,
                version=handshake.version,
                banner=handshake.banner,
                duration_ms=duration_ms,
            )
            return ConnectionProbeResult(
                success=True,
                banner=handshake.banner,
                duration_ms=duration_ms,
                variant=handshake.variant,
                version=handshake.version,
            )
        finally:
            self._release()

        self.state = SessionState.RESOLVED
        return ConnectionProbeResult(success=False, banner=error.message, duration_ms=self._elapsed_ms())

    # State machine stages

    async def _relay(self) -> str:
        await self._connect()
        handshake = await self._await_handshake(read_key_block=True)
        encoder = self.encoders[handshake.variant]
        payload = self._encode(encoder, handshake)
        return await self._deliver(encoder, payload)

    async def _connect(self) -> None:
        self._transition(SessionState.CONNECTING)
        logger.debug("Attempting to connect to Votifier server", host=self.target.host, port=self.target.port)

        try:
            self._reader, self._writer = await self._open_connection(
                self.target.host, self.target.port, limit=self.config.max_handshake_bytes
            )
        except OSError as e:
            raise self._socket_error(ErrorMessages.CONNECTION_FAILED, e) from e

        logger.info(
            "Connected to Votifier server",
            host=self.target.host,
            port=self.target.port,
            duration_ms=self._elapsed_ms(),
        )

    async def _await_handshake(self, *, read_key_block: bool) -> Handshake:
        self._transition(SessionState.AWAITING_HANDSHAKE)
        reader = self._require_reader()

        try:
            line = await reader.readuntil(b"\n")
        except asyncio.IncompleteReadError as e:
            # Peer closed before a newline; whatever arrived is the whole banner
            line = e.partial
        except asyncio.LimitOverrunError as e:
            raise HandshakeParseFailure(
                ErrorMessages.HANDSHAKE_TOO_LONG,
                context=self._error_context(),
                details={"limit": self.config.max_handshake_bytes},
            ) from e
        except OSError as e:
            raise self._socket_error("Votifier connection error", e) from e

        if not line:
            raise HandshakeParseFailure(
                f"{ErrorMessages.CLOSED_WITHOUT_HANDSHAKE} (duration: {self._elapsed_ms()}ms)",
                context=self._error_context(),
            )

        self.response_buffer.extend(line)
        handshake = parse_handshake(bytes(line), v1_banner_uses_fixed_key=self.config.v1_banner_uses_fixed_key)

        if read_key_block and handshake.variant is ProtocolVariant.LEGACY_V1_RSA:
            await self._read_key_block()
            handshake = parse_handshake(
                bytes(self.response_buffer), v1_banner_uses_fixed_key=self.config.v1_banner_uses_fixed_key
            )

        self.handshake = handshake
        self.handshake_complete = True
        logger.info(
            "Received Votifier handshake",
            host=self.target.host,
            port=self.target.port,
            banner=handshake.banner,
            variant=handshake.variant.value,
            response_length=len(self.response_buffer),
        )
        return handshake

    async def _read_key_block(self) -> None:
        """Accumulate the legacy key block until it parses or the peer stops sending."""
        reader = self._require_reader()

        while True:
            key_text = bytes(self.response_buffer).partition(b"\n")[2].decode("utf-8", errors="replace")
            if key_text.strip():
                try:
                    load_public_key(key_text)
                    return
                except KeyMaterialError:
                    if PEM_FOOTER in key_text:
                        # Complete but malformed; the encoder reports it
                        return

            try:
                chunk = await reader.read(READ_CHUNK_SIZE)
            except OSError as e:
                raise self._socket_error("Votifier connection error", e) from e
            if not chunk:
                return

            self.response_buffer.extend(chunk)
            if len(self.response_buffer) > self.config.max_handshake_bytes:
                raise HandshakeParseFailure(
                    ErrorMessages.HANDSHAKE_TOO_LONG,
                    context=self._error_context(),
                    details={"limit": self.config.max_handshake_bytes},
                )

    def _encode(self, encoder: VoteEncoder, handshake: Handshake) -> bytes:
        self._transition(SessionState.ENCODING)
        assert self.vote is not None

        try:
            payload = encoder.encode(self.vote, handshake, self.target)
        except VoteRelayError:
            raise
        except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: any encoder fault is an encoding failure
            raise EncodingFailure(
                f"Failed to encode {VARIANT_LABELS[encoder.variant]} vote: {e}",
                context=self._error_context(),
                variant=encoder.variant.value,
            ) from e

        logger.info(
            "Prepared Votifier vote",
            variant=encoder.variant.value,
            username=self.vote.username,
            encoded_length=len(payload),
        )
        return payload

    async def _deliver(self, encoder: VoteEncoder, payload: bytes) -> str:
        self._transition(SessionState.AWAITING_CONFIRMATION)
        reader = self._require_reader()
        writer = self._require_writer()

        # Let an already-received close reach the reader before checking for it
        await asyncio.sleep(0)
        if reader.at_eof():
            raise ConnectFailure(ErrorMessages.CLOSED_BEFORE_SEND, context=self._error_context())

        try:
            writer.write(payload)
            await writer.drain()
        except OSError as e:
            raise self._socket_error(ErrorMessages.WRITE_FAILED, e) from e

        logger.info(
            "Sent Votifier vote",
            variant=encoder.variant.value,
            bytes_written=len(payload),
            closes_after_send=encoder.closes_after_send,
        )

        if encoder.closes_after_send:
            return await self._finish_self_closing(encoder)
        return await self._await_confirmation()

    async def _finish_self_closing(self, encoder: VoteEncoder) -> str:
        """Give the peer a grace period to read, capture any reply, then close."""
        reply = bytearray()
        try:
            await asyncio.wait_for(self._read_until_eof(reply), timeout=self.config.close_grace_seconds)
        except TimeoutError:
            pass

        reply_text = reply.decode("utf-8", errors="replace").strip()
        if encoder.variant is ProtocolVariant.NUVOTIFIER_V2:
            self._check_nuvotifier_reply(reply_text)

        await self._close()
        return reply_text or f"Vote sent successfully ({VARIANT_LABELS[encoder.variant]})"

    async def _await_confirmation(self) -> str:
        """Wait until the reply contains "ok" (any case); the peer does not close first."""
        reader = self._require_reader()
        reply = bytearray()

        while b"ok" not in reply.lower():
            try:
                chunk = await reader.read(READ_CHUNK_SIZE)
            except OSError as e:
                raise self._socket_error("Votifier connection error", e) from e
            if not chunk:
                reply_text = reply.decode("utf-8", errors="replace").strip()
                raise ProtocolRejection(
                    ErrorMessages.CLOSED_WITHOUT_CONFIRMATION + (f": {reply_text}" if reply_text else ""),
                    context=self._error_context(),
                    response=reply_text,
                )
            reply.extend(chunk)
            self.response_buffer.extend(chunk)

        reply_text = reply.decode("utf-8", errors="replace").strip()
        logger.info("Vote accepted by Votifier server", host=self.target.host, response=reply_text[:200])
        await self._close()
        return reply_text

    async def _read_until_eof(self, reply: bytearray) -> None:
        reader = self._require_reader()
        while True:
            try:
                chunk = await reader.read(READ_CHUNK_SIZE)
            except OSError as e:
                raise self._socket_error(ErrorMessages.WRITE_FAILED, e) from e
            if not chunk:
                return
            reply.extend(chunk)
            self.response_buffer.extend(chunk)

    def _check_nuvotifier_reply(self, reply_text: str) -> None:
        """NuVotifier answers {"status": "error", ...} when it refuses a vote."""
        if not reply_text.startswith("{"):
            return
        try:
            reply = json.loads(reply_text)
        except json.JSONDecodeError:
            return
        if isinstance(reply, dict) and str(reply.get("status", "")).lower() == "error":
            cause = reply.get("cause") or reply.get("error") or "unknown cause"
            raise ProtocolRejection(
                f"{ErrorMessages.VOTE_REJECTED}: {cause}",
                context=self._error_context(),
                response=reply_text,
            )

    # Resolution and resource handling

    def _begin(self) -> None:
        if self._started:
            raise SessionStateError("Connection session has already been used")
        self._started = True
        self._started_at = time.monotonic()

    def _transition(self, state: SessionState) -> None:
        if self.state is SessionState.RESOLVED:
            raise SessionStateError(f"Cannot enter {state.value}: session already resolved")
        self.state = state

    def _resolve(self, outcome: RelayOutcome) -> RelayOutcome:
        if self.state is SessionState.RESOLVED:
            raise SessionStateError("Connection session already resolved")
        self.state = SessionState.RESOLVED
        self.outcome = outcome
        return outcome

    def _resolve_failure(self, error: VoteRelayError) -> RelayOutcome:
        logger.error(
            "Votifier vote send failed",
            host=self.target.host,
            port=self.target.port,
            error=error.message,
            error_type=error.error_type.value,
            handshake_complete=self.handshake_complete,
            duration_ms=self._elapsed_ms(),
        )
        return self._resolve(
            RelayOutcome(
                success=False,
                response_text=error.message,
                duration_ms=self._elapsed_ms(),
                variant=self.handshake.variant if self.handshake else None,
                error_type=error.error_type,
            )
        )

    async def _close(self) -> None:
        writer = self._require_writer()
        writer.close()
        try:
            await writer.wait_closed()
        except OSError as e:
            logger.debug("Error while closing Votifier socket", error=str(e))

    def _release(self) -> None:
        """Forcibly drop the socket unless it was already closed gracefully."""
        if self._writer is not None and not self._writer.is_closing():
            self._writer.transport.abort()

    def _timeout_error(self) -> RelayTimeout:
        elapsed = self._elapsed_ms()
        logger.error(
            "Votifier connection timeout",
            host=self.target.host,
            port=self.target.port,
            state=self.state.value,
            handshake_complete=self.handshake_complete,
            response_preview=bytes(self.response_buffer[:200]).decode("utf-8", errors="replace"),
        )
        return RelayTimeout(
            f"{ErrorMessages.CONNECTION_TIMEOUT} after {elapsed}ms",
            context=self._error_context(),
            elapsed_ms=elapsed,
        )

    def _socket_error(self, prefix: str, error: OSError) -> ConnectFailure:
        code = errno.errorcode.get(error.errno) if isinstance(error.errno, int) else None
        code = code or type(error).__name__
        reason = error.strerror or str(error) or type(error).__name__
        return ConnectFailure(f"{prefix}: {reason} ({code})", context=self._error_context(), errno_code=code)

    def _error_context(self) -> ErrorContext:
        return ErrorContext(
            vote_id=str(self.vote_id) if self.vote_id is not None else None,
            host=self.target.host,
            port=self.target.port,
            state=self.state.value,
        )

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - self._started_at) * 1000)

    def _require_reader(self) -> asyncio.StreamReader:
        if self._reader is None:
            raise SessionStateError("Session is not connected")
        return self._reader

    def _require_writer(self) -> asyncio.StreamWriter:
        if self._writer is None:
            raise SessionStateError("Session is not connected")
        return self._writer


__all__ = ["ConnectionSession", "OpenConnection", "SessionState"]
