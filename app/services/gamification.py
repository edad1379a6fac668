"""
Citizen points.

Points are a non-critical side channel: an award runs in its own session
after the triggering transition has committed, and a failure is logged
and swallowed.
"""
import logging

from app.database import SessionLocal
from app.models import User
from app.workflow_rules import IssuePriority, POINTS_BY_PRIORITY

logger = logging.getLogger(__name__)


def points_for_priority(priority: str) -> int:
    return POINTS_BY_PRIORITY.get(IssuePriority(priority), POINTS_BY_PRIORITY[IssuePriority.LOW])


class GamificationService:

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory

    def award_points(self, user_id: int, amount: int, action: str) -> bool:
        """Add ``amount`` to the user's running total. Returns False on failure."""
        db = self._session_factory()
        try:
            # Single UPDATE so concurrent awards add up instead of overwriting each other
            updated = db.query(User).filter(User.id == user_id).update(
                {User.points: User.points + amount}, synchronize_session=False
            )
            db.commit()
            if not updated:
                logger.warning(f"Points not awarded: user {user_id} not found ({action})")
                return False
            logger.info(f"Awarded {amount} points to user {user_id} for {action}")
            return True
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to award {amount} points to user {user_id} for {action}: {e}")
            return False
        finally:
            db.close()


gamification_service = GamificationService()
