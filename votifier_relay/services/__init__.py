"""Vote relay services: connection sessions, the Votifier client and batch reprocessing."""

from .connection_session import ConnectionSession, SessionState
from .vote_relay_reprocessor import ReprocessSummary, VoteRelayReprocessor
from .votifier_service import VotifierService

__all__ = ["ConnectionSession", "ReprocessSummary", "SessionState", "VoteRelayReprocessor", "VotifierService"]
