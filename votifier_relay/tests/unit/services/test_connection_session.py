"""
Unit tests for the connection session state machine.

Protocol scenarios run against loopback servers; socket states a real peer
cannot produce deterministically use scripted streams.
"""

import asyncio
import errno

import pytest

from votifier_relay.config.models import VotifierConfig
from votifier_relay.error_types import ErrorMessages, RelayErrorType
from votifier_relay.exceptions import SessionStateError
from votifier_relay.models.vote import ProtocolVariant, VotifierTarget
from votifier_relay.protocol.signer import hmac_sha256_hex
from votifier_relay.services.connection_session import ConnectionSession, SessionState
from votifier_relay.tests.fixtures.unit import TEST_TOKEN
from votifier_relay.tests.fixtures.unit.votifier_fakes import (
    FakeVotifierServer,
    RecordingWriter,
    decode_nuvotifier_message,
    fixed_key_handler,
    legacy_handler,
    nuvotifier_handler,
    raw_banner_handler,
    refusing_open_connection,
    scripted_open_connection,
    silent_handler,
)

EXPECTED_BLOCK = b"VOTE\nMCServerList\nSteve\n203.0.113.7\n1700000000\n"


def loopback(port: int, token: str = TEST_TOKEN) -> VotifierTarget:
    return VotifierTarget(host="127.0.0.1", port=port, token=token)


async def wait_finished(server: FakeVotifierServer) -> None:
    await asyncio.wait_for(server.finished.wait(), timeout=2)


class TestNuVotifierRelay:
    """Test relaying to NuVotifier v2 servers."""

    @pytest.mark.asyncio
    async def test_vote_is_signed_and_delivered(self, sample_vote, relay_config):
        """Test a signed JSON vote reaches the server and the session succeeds."""
        async with FakeVotifierServer(nuvotifier_handler()) as server:
            session = ConnectionSession(loopback(server.port), sample_vote, relay_config)
            outcome = await session.run()
            await wait_finished(server)

        assert outcome.success is True
        assert outcome.variant is ProtocolVariant.NUVOTIFIER_V2
        assert outcome.response_text == "Vote sent successfully (NuVotifier v2)"
        assert outcome.error_type is None
        assert session.state is SessionState.RESOLVED
        assert session.handshake_complete is True

        vote, payload, signature = decode_nuvotifier_message(bytes(server.received))
        assert vote == {
            "serviceName": "MCServerList",
            "username": "Steve",
            "address": "203.0.113.7",
            "timestamp": "1700000000",
        }
        assert signature == hmac_sha256_hex(payload, TEST_TOKEN)

    @pytest.mark.asyncio
    async def test_reply_within_grace_is_recorded(self, sample_vote, relay_config):
        """Test a reply received before the session closes becomes the response text."""
        reply = b'{"status":"ok"}\n'
        async with FakeVotifierServer(nuvotifier_handler(reply=reply)) as server:
            outcome = await ConnectionSession(loopback(server.port), sample_vote, relay_config).run()

        assert outcome.success is True
        assert outcome.response_text == '{"status":"ok"}'

    @pytest.mark.asyncio
    async def test_error_reply_is_a_rejection(self, sample_vote, relay_config):
        """Test an error status reply resolves the session to failure."""
        reply = b'{"status":"error","cause":"CorruptedFrameException","error":"Signature is not valid"}\n'
        async with FakeVotifierServer(nuvotifier_handler(reply=reply)) as server:
            outcome = await ConnectionSession(loopback(server.port), sample_vote, relay_config).run()

        assert outcome.success is False
        assert outcome.error_type is RelayErrorType.PROTOCOL_REJECTION
        assert outcome.response_text == f"{ErrorMessages.VOTE_REJECTED}: CorruptedFrameException"

    @pytest.mark.asyncio
    async def test_vote_without_token_is_signed_with_empty_key(self, sample_vote, relay_config):
        """Test a target without a token still relays, signed with an empty HMAC key."""
        async with FakeVotifierServer(nuvotifier_handler()) as server:
            outcome = await ConnectionSession(loopback(server.port, token=""), sample_vote, relay_config).run()
            await wait_finished(server)

        assert outcome.success is True
        _, payload, signature = decode_nuvotifier_message(bytes(server.received))
        assert signature == hmac_sha256_hex(payload, "")


class TestRsaRelay:
    """Test relaying to RSA-based servers."""

    @pytest.mark.asyncio
    async def test_legacy_vote_uses_handshake_key(self, sample_vote, rsa_private_key, public_key_body):
        """Test the legacy variant encrypts with the key sent after the banner."""
        config = VotifierConfig(timeout_ms=2000, close_grace_ms=50, v1_banner_uses_fixed_key=False)
        handler = legacy_handler(b"VOTIFIER 1.9\n", public_key_body, rsa_private_key)

        async with FakeVotifierServer(handler) as server:
            outcome = await ConnectionSession(loopback(server.port), sample_vote, config).run()
            await wait_finished(server)

        assert outcome.success is True
        assert outcome.variant is ProtocolVariant.LEGACY_V1_RSA
        assert outcome.response_text == "Vote sent successfully (Votifier v1)"
        assert bytes(server.received) == EXPECTED_BLOCK

    @pytest.mark.asyncio
    async def test_legacy_key_split_across_segments(self, sample_vote, relay_config, rsa_private_key, public_key_body):
        """Test a key block arriving in several segments is reassembled before encoding."""
        handler = legacy_handler(b"VOTIFIER\n", public_key_body, rsa_private_key, split_key=True)

        async with FakeVotifierServer(handler) as server:
            outcome = await ConnectionSession(loopback(server.port), sample_vote, relay_config).run()
            await wait_finished(server)

        assert outcome.success is True
        assert bytes(server.received) == EXPECTED_BLOCK

    @pytest.mark.asyncio
    async def test_fixed_key_vote_waits_for_ok(self, sample_vote, rsa_private_key, public_key_pem):
        """Test the fixed-key variant succeeds once the server answers ok."""
        config = VotifierConfig(timeout_ms=2000, close_grace_ms=50, fixed_key_pem=public_key_pem)

        async with FakeVotifierServer(fixed_key_handler(rsa_private_key, b"OK\n")) as server:
            outcome = await ConnectionSession(loopback(server.port), sample_vote, config).run()
            await wait_finished(server)

        assert outcome.success is True
        assert outcome.variant is ProtocolVariant.FIXED_KEY_RSA
        assert outcome.response_text == "OK"
        assert bytes(server.received) == EXPECTED_BLOCK

    @pytest.mark.asyncio
    async def test_fixed_key_close_without_ok_is_a_rejection(self, sample_vote, rsa_private_key, public_key_pem):
        """Test the server closing without confirming resolves to failure."""
        config = VotifierConfig(timeout_ms=2000, close_grace_ms=50, fixed_key_pem=public_key_pem)

        async with FakeVotifierServer(fixed_key_handler(rsa_private_key, confirmation=None)) as server:
            outcome = await ConnectionSession(loopback(server.port), sample_vote, config).run()

        assert outcome.success is False
        assert outcome.error_type is RelayErrorType.PROTOCOL_REJECTION
        assert outcome.response_text == ErrorMessages.CLOSED_WITHOUT_CONFIRMATION

    @pytest.mark.asyncio
    async def test_fixed_key_without_configured_key(self, sample_vote, relay_config, rsa_private_key):
        """Test a 'VOTIFIER 1' server with no fixed key configured fails to encode."""
        async with FakeVotifierServer(fixed_key_handler(rsa_private_key)) as server:
            outcome = await ConnectionSession(loopback(server.port), sample_vote, relay_config).run()

        assert outcome.success is False
        assert outcome.error_type is RelayErrorType.ENCODING_FAILURE
        assert outcome.response_text == ErrorMessages.NO_FIXED_KEY


class TestHandshakeFailures:
    """Test sessions that never get a usable handshake."""

    @pytest.mark.asyncio
    async def test_close_without_handshake(self, sample_vote, relay_config):
        """Test a server that closes immediately."""
        async with FakeVotifierServer(raw_banner_handler(b"")) as server:
            session = ConnectionSession(loopback(server.port), sample_vote, relay_config)
            outcome = await session.run()

        assert outcome.success is False
        assert outcome.error_type is RelayErrorType.HANDSHAKE_PARSE_FAILURE
        assert outcome.response_text.startswith(ErrorMessages.CLOSED_WITHOUT_HANDSHAKE)
        assert session.handshake_complete is False

    @pytest.mark.asyncio
    async def test_binary_banner(self, sample_vote, relay_config):
        """Test a banner that is not text is a parse failure."""
        async with FakeVotifierServer(raw_banner_handler(b"\xff\xfe\x00\x01\n")) as server:
            outcome = await ConnectionSession(loopback(server.port), sample_vote, relay_config).run()

        assert outcome.success is False
        assert outcome.error_type is RelayErrorType.HANDSHAKE_PARSE_FAILURE
        assert outcome.response_text == ErrorMessages.HANDSHAKE_NOT_TEXT

    @pytest.mark.asyncio
    async def test_banner_longer_than_limit(self, sample_vote):
        """Test an unterminated banner beyond the configured limit is rejected."""
        config = VotifierConfig(timeout_ms=2000, max_handshake_bytes=64)
        open_connection, _ = scripted_open_connection(b"V" * 200, eof=False)

        outcome = await ConnectionSession(
            loopback(8192), sample_vote, config, open_connection=open_connection
        ).run()

        assert outcome.success is False
        assert outcome.error_type is RelayErrorType.HANDSHAKE_PARSE_FAILURE
        assert outcome.response_text == ErrorMessages.HANDSHAKE_TOO_LONG


class TestConnectionFailures:
    """Test connect errors, timeouts and writes to closed sockets."""

    @pytest.mark.asyncio
    async def test_connection_refused(self, sample_vote, relay_config):
        """Test a refused connection reports the OS reason and errno code."""
        open_connection = refusing_open_connection(ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused"))

        outcome = await ConnectionSession(
            loopback(8192), sample_vote, relay_config, open_connection=open_connection
        ).run()

        assert outcome.success is False
        assert outcome.error_type is RelayErrorType.CONNECT_FAILURE
        assert outcome.response_text == "Votifier connection failed: Connection refused (ECONNREFUSED)"
        assert outcome.variant is None

    @pytest.mark.asyncio
    async def test_silent_server_times_out(self, sample_vote):
        """Test a server that never sends a banner hits the deadline."""
        config = VotifierConfig(timeout_ms=200)

        async with FakeVotifierServer(silent_handler()) as server:
            session = ConnectionSession(loopback(server.port), sample_vote, config)
            outcome = await session.run()

        assert outcome.success is False
        assert outcome.error_type is RelayErrorType.TIMEOUT
        assert outcome.response_text.startswith("Votifier connection timeout after ")
        assert outcome.response_text.endswith("ms")
        assert outcome.duration_ms >= 150
        assert session.state is SessionState.RESOLVED

    @pytest.mark.asyncio
    async def test_fixed_key_server_never_confirming_times_out(self, sample_vote, public_key_pem):
        """Test a fixed-key server that stays open without 'ok' hits the deadline."""
        config = VotifierConfig(timeout_ms=300, fixed_key_pem=public_key_pem)
        open_connection, writer = scripted_open_connection(b"VOTIFIER 1.9\n", eof=False)

        outcome = await ConnectionSession(loopback(8192), sample_vote, config, open_connection=open_connection).run()

        assert outcome.success is False
        assert outcome.error_type is RelayErrorType.TIMEOUT
        assert len(writer.written) == 256
        assert writer.aborted is True

    @pytest.mark.asyncio
    async def test_banner_then_close_is_not_a_success(self, sample_vote, relay_config):
        """Test a server that sends its banner and closes before the vote is written."""
        open_connection, writer = scripted_open_connection(b"VOTIFIER 2.0 abc\n", eof=True)

        outcome = await ConnectionSession(
            loopback(8192), sample_vote, relay_config, open_connection=open_connection
        ).run()

        assert outcome.success is False
        assert outcome.error_type is RelayErrorType.CONNECT_FAILURE
        assert outcome.response_text == ErrorMessages.CLOSED_BEFORE_SEND
        assert writer.written == bytearray()

    @pytest.mark.asyncio
    async def test_banner_then_close_over_tcp_is_not_a_success(self, sample_vote, relay_config):
        """Test a real server that sends its banner and closes never yields a successful relay."""
        async with FakeVotifierServer(raw_banner_handler(b"VOTIFIER 2.0\n")) as server:
            outcomes = [
                await ConnectionSession(loopback(server.port), sample_vote, relay_config).run() for _ in range(10)
            ]

        assert server.connections == 10
        for outcome in outcomes:
            assert outcome.success is False
            assert outcome.variant is ProtocolVariant.NUVOTIFIER_V2
            assert outcome.error_type is RelayErrorType.CONNECT_FAILURE
            assert outcome.response_text == ErrorMessages.CLOSED_BEFORE_SEND

    @pytest.mark.asyncio
    async def test_write_failure_is_reported(self, sample_vote, relay_config):
        """Test a broken pipe while writing the vote resolves to failure."""
        writer = RecordingWriter(fail_with=BrokenPipeError(errno.EPIPE, "Broken pipe"))
        open_connection, _ = scripted_open_connection(b"VOTIFIER 2.0 abc\n", eof=False, writer=writer)

        outcome = await ConnectionSession(
            loopback(8192), sample_vote, relay_config, open_connection=open_connection
        ).run()

        assert outcome.success is False
        assert outcome.error_type is RelayErrorType.CONNECT_FAILURE
        assert outcome.response_text == f"{ErrorMessages.WRITE_FAILED}: Broken pipe (EPIPE)"
        assert writer.aborted is True


class TestSessionLifecycle:
    """Test the single-use lifecycle of a session."""

    @pytest.mark.asyncio
    async def test_run_twice_raises(self, sample_vote, relay_config):
        """Test a resolved session cannot be run again."""
        open_connection = refusing_open_connection(ConnectionRefusedError(errno.ECONNREFUSED, "Connection refused"))
        session = ConnectionSession(loopback(8192), sample_vote, relay_config, open_connection=open_connection)
        first = await session.run()

        with pytest.raises(SessionStateError):
            await session.run()
        assert session.outcome is first

    @pytest.mark.asyncio
    async def test_run_without_vote_raises(self, relay_config):
        """Test a probe-only session cannot relay."""
        session = ConnectionSession(loopback(8192), None, relay_config)

        with pytest.raises(SessionStateError):
            await session.run()

    @pytest.mark.asyncio
    async def test_probe_reports_banner_and_version(self, relay_config):
        """Test a probe classifies the banner without sending a vote."""
        open_connection, writer = scripted_open_connection(b"VOTIFIER 2 c0ffee\n", eof=False)

        result = await ConnectionSession(loopback(8192), None, relay_config, open_connection=open_connection).probe()

        assert result.success is True
        assert result.banner == "VOTIFIER 2 c0ffee"
        assert result.version == "v2"
        assert result.variant is ProtocolVariant.NUVOTIFIER_V2
        assert writer.written == bytearray()
