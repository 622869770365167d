"""Data models for the Votifier relay client."""

from .vote import (
    ConnectionProbeResult,
    PendingRelay,
    ProtocolVariant,
    RelayOutcome,
    VoteNotification,
    VotifierTarget,
)

__all__ = [
    "ConnectionProbeResult",
    "PendingRelay",
    "ProtocolVariant",
    "RelayOutcome",
    "VoteNotification",
    "VotifierTarget",
]
