"""
Mention status state machine
"""
import logging
from typing import Dict, FrozenSet

from sqlalchemy.orm import Session

from mention_pipeline.core.exceptions import InvalidStatusTransition, PipelineError
from mention_pipeline.db.models import Mention, MentionStatus

logger = logging.getLogger(__name__)

NEW = MentionStatus.NEW.value
REVIEWED = MentionStatus.REVIEWED.value
REPLIED = MentionStatus.REPLIED.value
ESCALATED = MentionStatus.ESCALATED.value
ARCHIVED = MentionStatus.ARCHIVED.value

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    NEW: frozenset({REVIEWED, ESCALATED, ARCHIVED}),
    REVIEWED: frozenset({REPLIED, ESCALATED, ARCHIVED}),
    # Escalated mentions are still worked and answered by operators
    ESCALATED: frozenset({REVIEWED, REPLIED, ARCHIVED}),
    REPLIED: frozenset({ARCHIVED}),
    ARCHIVED: frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


class MentionStatusService:
    """Applies operator status changes"""

    @staticmethod
    def transition(db: Session, mention_id: str, target: str) -> Mention:
        """
        Move a mention to `target` status

        Raises:
            PipelineError: mention does not exist
            InvalidStatusTransition: the change is not allowed from the current status
        """
        target = MentionStatus(target).value

        mention = db.get(Mention, mention_id)
        if mention is None:
            raise PipelineError(f"Mention {mention_id} not found")

        if not can_transition(mention.status, target):
            raise InvalidStatusTransition(mention.status, target)

        previous = mention.status
        mention.status = target
        db.flush()

        logger.info(f"Mention {mention_id} status {previous} -> {target}")
        return mention
