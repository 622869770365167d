"""
Batch relay of votes that were never delivered to their Votifier server.

The reprocessor asks the vote store for every pending relay, sends each vote
through VotifierService one at a time and writes the outcome back. A failure
of one item never stops the batch.
"""

from dataclasses import dataclass

from ..error_types import RelayErrorType
from ..models.vote import RelayOutcome
from ..persistence.protocols import VoteRelayRepositoryProtocol
from ..structured_logging.enhanced_logging_config import get_logger
from .votifier_service import VotifierService

logger = get_logger(__name__)


@dataclass
class ReprocessSummary:
    """Counts for one reprocessing batch."""

    processed: int = 0
    successful: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        """Convert summary to dictionary."""
        return {"processed": self.processed, "successful": self.successful, "failed": self.failed}


class VoteRelayReprocessor:
    """Re-sends pending votes and records each outcome."""

    def __init__(self, repository: VoteRelayRepositoryProtocol, votifier_service: VotifierService):
        self.repository = repository
        self.votifier_service = votifier_service

    async def process_pending(self) -> ReprocessSummary:
        """
        Relay every pending vote sequentially.

        Returns:
            ReprocessSummary: processed == successful + failed

        Raises:
            Exception: Whatever the repository raises while listing pending relays
        """
        try:
            pending = await self.repository.list_pending_relays()
        except Exception as e:
            logger.error("Error processing pending Votifier votes", error=str(e), exc_info=True)
            raise

        summary = ReprocessSummary()
        if not pending:
            logger.debug("No pending votes to process")
            return summary

        logger.info("Processing pending Votifier votes", count=len(pending))

        for relay in pending:
            summary.processed += 1
            try:
                outcome = await self.votifier_service.send_vote(relay.vote, relay.target, vote_id=relay.vote_id)
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: one broken item must not stop the batch
                logger.error("Failed to process vote", vote_id=relay.vote_id, error=str(e), exc_info=True)
                outcome = RelayOutcome(
                    success=False,
                    response_text=str(e) or type(e).__name__,
                    duration_ms=0,
                    error_type=RelayErrorType.INTERNAL_ERROR,
                )

            if outcome.success:
                summary.successful += 1
            else:
                summary.failed += 1
                logger.warning(
                    "Failed to send Votifier vote",
                    vote_id=relay.vote_id,
                    host=relay.target.host,
                    port=relay.target.port,
                    error=outcome.response_text,
                )

            try:
                await self.repository.record_outcome(relay.vote_id, outcome)
            except Exception as e:  # pylint: disable=broad-exception-caught  # Reason: a write-back failure is logged and the batch continues
                logger.error(
                    "Failed to record Votifier outcome",
                    vote_id=relay.vote_id,
                    votifier_sent=outcome.success,
                    error=str(e),
                    exc_info=True,
                )

        logger.info("Finished processing pending Votifier votes", **summary.to_dict())
        return summary
