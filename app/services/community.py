"""
Community engagement around issues: votes on the public feed and
citizen feedback answered by admins.

Neither touches an issue's status or workflow stage.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import ConflictError, DependencyFailure, NotFound, Unauthorized, WorkflowValidationError
from app.models import Feedback, Issue, IssueVote
from app.schemas import Actor, FeedbackCreate, Issue as IssueSchema
from app.services.notifications import notification_service
from app.workflow_rules import FeedbackStatus, Role, VoteType, values

logger = logging.getLogger(__name__)


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"{action}: integrity violation, rolled back: {e.orig}")
        raise ConflictError(code=f"{action}.conflict")
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"{action}: database error, rolled back: {e}")
        raise DependencyFailure("Database error", code=f"{action}.database_error")


# =============================================================================
# Votes
# =============================================================================

def vote_tallies(db: Session, issue_ids: Iterable[int], user_id: Optional[int] = None) -> Dict[int, dict]:
    """Up/down counts per issue, plus the given user's own vote."""
    ids = list(issue_ids)
    tallies = {issue_id: {"issue_id": issue_id, "upvotes": 0, "downvotes": 0, "my_vote": None} for issue_id in ids}
    if not ids:
        return tallies

    rows = db.query(IssueVote.issue_id, IssueVote.vote_type, func.count(IssueVote.id)).filter(
        IssueVote.issue_id.in_(ids)
    ).group_by(IssueVote.issue_id, IssueVote.vote_type).all()
    for issue_id, vote_type, count in rows:
        key = "upvotes" if vote_type == VoteType.UPVOTE.value else "downvotes"
        tallies[issue_id][key] = count

    if user_id is not None:
        mine = db.query(IssueVote.issue_id, IssueVote.vote_type).filter(
            IssueVote.issue_id.in_(ids),
            IssueVote.user_id == user_id
        ).all()
        for issue_id, vote_type in mine:
            tallies[issue_id]["my_vote"] = vote_type

    return tallies


def vote_on_issue(db: Session, actor: Actor, issue_id: int, vote_type: str) -> dict:
    """
    Cast, switch or withdraw the actor's vote.

    Voting the same way twice removes the vote; voting the other way
    switches it. Returns the issue's tally after the change.
    """
    if vote_type not in values(VoteType):
        raise WorkflowValidationError(f"Invalid vote type: {vote_type}", code="vote.invalid_type")
    if not db.query(Issue.id).filter(Issue.id == issue_id).first():
        raise NotFound(f"Issue {issue_id} not found", code="issue.not_found")

    existing = db.query(IssueVote).filter(
        IssueVote.issue_id == issue_id,
        IssueVote.user_id == actor.id
    ).first()

    if existing is None:
        db.add(IssueVote(issue_id=issue_id, user_id=actor.id, vote_type=vote_type))
    elif existing.vote_type == vote_type:
        db.delete(existing)
    else:
        existing.vote_type = vote_type
    _commit(db, "vote")

    logger.info(f"User {actor.id} voted {vote_type} on issue {issue_id}")
    return vote_tallies(db, [issue_id], actor.id)[issue_id]


def get_issue_votes(db: Session, actor: Actor, issue_id: int) -> dict:
    if not db.query(Issue.id).filter(Issue.id == issue_id).first():
        raise NotFound(f"Issue {issue_id} not found", code="issue.not_found")
    return vote_tallies(db, [issue_id], actor.id)[issue_id]


def feed_entries(db: Session, issues: List[Issue], actor: Actor) -> List[dict]:
    """Attach vote counts and the caller's vote to feed issues."""
    tallies = vote_tallies(db, [i.id for i in issues], actor.id)
    entries = []
    for issue in issues:
        data = IssueSchema.model_validate(issue).model_dump()
        tally = tallies[issue.id]
        data.update(upvotes=tally["upvotes"], downvotes=tally["downvotes"], my_vote=tally["my_vote"])
        entries.append(data)
    return entries


# =============================================================================
# Feedback
# =============================================================================

def create_feedback(db: Session, actor: Optional[Actor], data: FeedbackCreate) -> Feedback:
    """Store feedback from a signed-in user, or anonymously when actor is None."""
    if not data.subject or not data.subject.strip():
        raise WorkflowValidationError("Subject is required", code="feedback.subject_required")
    if not data.message or not data.message.strip():
        raise WorkflowValidationError("Message is required", code="feedback.message_required")
    if data.issue_id is not None and not db.query(Issue.id).filter(Issue.id == data.issue_id).first():
        raise NotFound(f"Issue {data.issue_id} not found", code="issue.not_found")

    feedback = Feedback(
        user_id=actor.id if actor else None,
        issue_id=data.issue_id,
        type=data.type,
        subject=data.subject.strip(),
        message=data.message.strip(),
        priority=data.priority,
        contact_email=data.contact_email,
        contact_phone=data.contact_phone,
        status=FeedbackStatus.PENDING.value,
    )
    db.add(feedback)
    _commit(db, "create_feedback")
    db.refresh(feedback)

    logger.info(f"Feedback {feedback.id} ({feedback.type}) received from "
                f"{'user ' + str(feedback.user_id) if feedback.user_id else 'anonymous'}")
    return feedback


def list_feedback(
    db: Session,
    actor: Actor,
    status: Optional[str] = None,
    type: Optional[str] = None,
    limit: int = 50,
    offset: int = 0
) -> List[Feedback]:
    """Admins see every submission; everyone else sees their own."""
    query = db.query(Feedback)
    if actor.role != Role.ADMIN.value:
        query = query.filter(Feedback.user_id == actor.id)
    if status:
        query = query.filter(Feedback.status == status)
    if type:
        query = query.filter(Feedback.type == type)
    return query.order_by(Feedback.created_at.desc(), Feedback.id.desc()).offset(offset).limit(limit).all()


def update_feedback_status(
    db: Session,
    actor: Actor,
    feedback_id: int,
    status: str,
    admin_response: Optional[str] = None
) -> Feedback:
    if actor.role != Role.ADMIN.value:
        raise Unauthorized("Only admins can answer feedback", code="update_feedback.role_not_permitted")
    if status not in values(FeedbackStatus):
        raise WorkflowValidationError(f"Invalid feedback status: {status}", code="update_feedback.invalid_status")

    feedback = db.query(Feedback).filter(Feedback.id == feedback_id).first()
    if not feedback:
        raise NotFound(f"Feedback {feedback_id} not found", code="feedback.not_found")

    feedback.status = status
    if admin_response and admin_response.strip():
        feedback.admin_response = admin_response.strip()
        feedback.responded_by = actor.id
        feedback.responded_at = datetime.utcnow()
    _commit(db, "update_feedback")
    db.refresh(feedback)

    logger.info(f"Feedback {feedback.id} -> {status} by admin {actor.id}")
    if feedback.user_id:
        notification_service.publish("feedback", feedback.id, f"feedback_{status}", [feedback.user_id],
                                     title="Your feedback was updated", message=feedback.admin_response)
    return feedback
