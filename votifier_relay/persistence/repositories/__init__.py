"""Vote relay repository implementations."""

from .in_memory_relay_repository import InMemoryVoteRelayRepository

__all__ = ["InMemoryVoteRelayRepository"]
