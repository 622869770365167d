"""
Votifier service for relaying votes to Minecraft servers.

This service is the entry point used by the rest of the directory backend:
send_vote() delivers a single vote and test_connection() checks that a
server's Votifier endpoint answers with a recognizable handshake.
"""

import uuid
from typing import Any

from ..config import get_config
from ..config.models import VotifierConfig
from ..models.vote import ConnectionProbeResult, ProtocolVariant, RelayOutcome, VoteNotification, VotifierTarget
from ..protocol.encoders import VoteEncoder, build_encoders
from ..structured_logging.enhanced_logging_config import bind_relay_context, clear_relay_context, get_logger
from .connection_session import ConnectionSession, OpenConnection

logger = get_logger(__name__)


class VotifierService:
    """
    Relay client for Votifier-compatible vote listeners.

    Every call opens one fresh connection session; the service itself holds
    no per-vote state and may be shared between concurrent callers.
    """

    def __init__(self, config: VotifierConfig | None = None, open_connection: OpenConnection | None = None):
        """
        Initialize the Votifier service.

        Args:
            config: Relay configuration (loaded from the environment if omitted)
            open_connection: Stream factory override, used by tests
        """
        self.config = config or get_config().votifier
        self.open_connection = open_connection
        self.encoders: dict[ProtocolVariant, VoteEncoder] = build_encoders(self.config)

        logger.info(
            "VotifierService initialized",
            timeout_ms=self.config.timeout_ms,
            service_name=self.config.service_name,
            v1_banner_uses_fixed_key=self.config.v1_banner_uses_fixed_key,
            fixed_key_configured=bool(self.config.fixed_key_pem),
        )

    def _session(self, target: VotifierTarget, vote: VoteNotification | None, vote_id: Any = None) -> ConnectionSession:
        return ConnectionSession(
            target,
            vote,
            self.config,
            encoders=self.encoders,
            open_connection=self.open_connection,
            vote_id=vote_id,
        )

    async def send_vote(self, vote: VoteNotification, target: VotifierTarget, vote_id: Any = None) -> RelayOutcome:
        """
        Send a vote to a Votifier server.

        Args:
            vote: The vote to deliver
            target: Votifier endpoint of the voted-for server
            vote_id: Identifier of the vote, for log correlation

        Returns:
            RelayOutcome: Result of the attempt; failures are reported here, not raised
        """
        bind_relay_context(
            vote_id=vote_id,
            host=target.host,
            port=target.port,
            correlation_id=str(uuid.uuid4()),
        )
        try:
            outcome = await self._session(target, vote, vote_id).run()
        finally:
            clear_relay_context()

        if outcome.success:
            logger.info(
                "Vote relayed to Votifier server",
                vote_id=vote_id,
                host=target.host,
                port=target.port,
                variant=outcome.variant.value if outcome.variant else None,
                duration_ms=outcome.duration_ms,
            )
        return outcome

    async def test_connection(self, host: str, port: int | None = None) -> ConnectionProbeResult:
        """
        Check that a Votifier endpoint answers with a handshake.

        Args:
            host: Votifier host name or IP
            port: Votifier port (configured default when omitted)

        Returns:
            ConnectionProbeResult: Banner, variant and version on success;
                the failure description in `banner` otherwise
        """
        target = VotifierTarget(host=host, port=port or self.config.default_port)
        return await self._session(target, None).probe()
