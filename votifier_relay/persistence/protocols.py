"""
Repository protocols for the vote relay persistence layer.

The relay client does not own the vote store. It depends on this protocol
and the owning backend supplies the implementation (a SQL repository in
production, the in-memory repository in tests).
"""

# pylint: disable=unnecessary-ellipsis  # Reason: Protocol method bodies use ... per typing.Protocol convention

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from votifier_relay.models.vote import PendingRelay, RelayOutcome


class VoteRelayRepositoryProtocol(Protocol):
    """
    Protocol for vote relay persistence operations.

    Implemented by votifier_relay.persistence.repositories.in_memory_relay_repository.InMemoryVoteRelayRepository.
    """

    async def list_pending_relays(self) -> list[PendingRelay]:
        """List votes whose server has Votifier enabled and that were never relayed successfully."""
        ...

    async def record_outcome(self, vote_id: Any, outcome: RelayOutcome) -> None:
        """Store the sent flag and response text of a relay attempt (last write wins)."""
        ...
