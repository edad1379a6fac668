from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.api.auth import get_current_user
from app.errors import NotFound
from app.models import Notification, User
from app.schemas import Notification as NotificationSchema

router = APIRouter()


@router.get("", response_model=List[NotificationSchema])
async def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=200),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """The caller's notification feed, newest first"""
    query = db.query(Notification).filter(Notification.user_id == current_user.id)
    if unread_only:
        query = query.filter(Notification.is_read == False)
    return query.order_by(Notification.id.desc()).limit(limit).all()


@router.post("/{notification_id}/read", response_model=NotificationSchema)
async def mark_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.user_id == current_user.id
    ).first()
    if not notification:
        raise NotFound("Notification not found", code="notification.not_found")

    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification
