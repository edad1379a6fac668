"""
Feedback API Endpoints

Citizens (or anonymous visitors) send complaints, suggestions, compliments
and inquiries; admins review them and respond.
"""
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.database import get_db
from app.api.auth import get_current_actor, get_optional_actor
from app.schemas import Actor, FeedbackCreate, FeedbackStatusUpdate, Feedback as FeedbackSchema
from app.services import community
from app.utils.rate_limiter import limiter, RateLimits

router = APIRouter()


@router.post("", response_model=FeedbackSchema, status_code=201)
@limiter.limit(RateLimits.FEEDBACK)
async def create_feedback(
    request: Request,
    data: FeedbackCreate,
    actor: Optional[Actor] = Depends(get_optional_actor),
    db: Session = Depends(get_db)
):
    return community.create_feedback(db, actor, data)


@router.get("", response_model=List[FeedbackSchema])
async def list_feedback(
    status: Optional[str] = None,
    type: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    """All feedback for admins, the caller's own submissions otherwise"""
    return community.list_feedback(db, actor, status=status, type=type, limit=limit, offset=offset)


@router.put("/{feedback_id}/status", response_model=FeedbackSchema)
async def update_feedback_status(
    feedback_id: int,
    data: FeedbackStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return community.update_feedback_status(db, actor, feedback_id, data.status, data.admin_response)
