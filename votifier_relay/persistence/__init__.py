"""Persistence contracts and repositories for vote relay state."""

from .protocols import VoteRelayRepositoryProtocol
from .repositories.in_memory_relay_repository import InMemoryVoteRelayRepository

__all__ = ["InMemoryVoteRelayRepository", "VoteRelayRepositoryProtocol"]
