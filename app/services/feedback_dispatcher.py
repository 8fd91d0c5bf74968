import logging
from collections.abc import Sequence

from app.schemas.feedback import FeedbackResult
from app.schemas.zoom import MeetingParticipant

logger = logging.getLogger(__name__)


class FeedbackDispatcher:
    """Hands generated feedback to participants.

    Delivery channels are not wired up yet; every dispatch is written to the log.
    """

    def dispatch(
        self,
        *,
        meeting_uuid: str,
        feedback: FeedbackResult,
        participants: Sequence[MeetingParticipant],
    ) -> int:
        logger.info(
            "Feedback ready meeting_uuid=%s kind=%s collaboration_score=%s summary=%s",
            meeting_uuid,
            feedback.kind.value,
            feedback.collaboration_score,
            feedback.summary,
        )
        for participant in participants:
            logger.info(
                "Feedback dispatch meeting_uuid=%s participant=%s email=%s has_individual_feedback=%s",
                meeting_uuid,
                participant.name,
                participant.email or "no email",
                participant.name in feedback.individual_feedback,
            )
        return len(participants)
