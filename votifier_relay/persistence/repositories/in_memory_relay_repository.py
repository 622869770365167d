"""
In-memory vote relay repository.

Holds pending relays and recorded outcomes in dictionaries guarded by an
asyncio lock. Used by tests and by callers that batch-relay votes without a
database.
"""

import asyncio
from typing import Any

from votifier_relay.models.vote import PendingRelay, RelayOutcome
from votifier_relay.structured_logging.enhanced_logging_config import get_logger

logger = get_logger(__name__)


class InMemoryVoteRelayRepository:
    """Dictionary-backed implementation of VoteRelayRepositoryProtocol."""

    def __init__(self, pending: list[PendingRelay] | None = None):
        self._pending: dict[Any, PendingRelay] = {}
        self._outcomes: dict[Any, RelayOutcome] = {}
        self._lock = asyncio.Lock()
        for relay in pending or []:
            self._pending[relay.vote_id] = relay

    def add_pending(self, relay: PendingRelay) -> None:
        """Register a vote that needs relaying."""
        self._pending[relay.vote_id] = relay

    async def list_pending_relays(self) -> list[PendingRelay]:
        """Return registered votes without a successful outcome, in insertion order."""
        async with self._lock:
            return [
                relay
                for vote_id, relay in self._pending.items()
                if not (vote_id in self._outcomes and self._outcomes[vote_id].success)
            ]

    async def record_outcome(self, vote_id: Any, outcome: RelayOutcome) -> None:
        """Store an outcome, replacing any earlier one for the same vote."""
        async with self._lock:
            previous = self._outcomes.get(vote_id)
            self._outcomes[vote_id] = outcome

        logger.debug(
            "Relay outcome recorded",
            vote_id=vote_id,
            votifier_sent=outcome.success,
            replaced_previous=previous is not None,
        )

    def get_outcome(self, vote_id: Any) -> RelayOutcome | None:
        """Return the last recorded outcome for a vote."""
        return self._outcomes.get(vote_id)

    def get_record(self, vote_id: Any) -> dict[str, Any] | None:
        """Return the stored column values for a vote, as the vote store would hold them."""
        outcome = self._outcomes.get(vote_id)
        return outcome.to_record() if outcome else None
