"""
Workflow Notification Channel

Publishes workflow state changes to:
- the per-user notification feed (notifications table)
- in-process subscribers (cache invalidation, websocket fan-out)
- Firebase Cloud Messaging push to the recipients' devices

Publishing is fire-and-forget: failures are logged and never propagate
to the transition that triggered them.

Usage:
    from app.services.notifications import notification_service

    unsubscribe = notification_service.subscribe("tender", on_tender_change)
    notification_service.publish("tender", tender.id, "bid_accepted", [contractor_id],
                                 title="Your bid was accepted")
"""
import logging
from collections import defaultdict
from typing import Callable, Dict, Iterable, List, Optional

from app.config import settings
from app.database import SessionLocal
from app.models import Notification, User

logger = logging.getLogger(__name__)

# Firebase Admin SDK - lazy loaded
_firebase_app = None


def _initialize_firebase():
    """Initialize Firebase Admin SDK (lazy loading)"""
    global _firebase_app

    if _firebase_app is not None:
        return True

    if not settings.firebase_service_account_path:
        logger.debug("Firebase service account path not configured. Push notifications disabled.")
        return False

    try:
        import firebase_admin
        from firebase_admin import credentials

        cred = credentials.Certificate(settings.firebase_service_account_path)
        _firebase_app = firebase_admin.initialize_app(cred)
        logger.info("Firebase Admin SDK initialized successfully")
        return True
    except Exception as e:
        logger.error(f"Failed to initialize Firebase Admin SDK: {e}")
        return False


def send_push(fcm_token: str, title: str, body: str, data: Optional[Dict[str, str]] = None) -> bool:
    """
    Send push notification to a single device.

    Returns:
        True if sent successfully, False otherwise
    """
    if not fcm_token:
        return False

    if not _initialize_firebase():
        return False

    try:
        from firebase_admin import messaging

        message = messaging.Message(
            notification=messaging.Notification(title=title, body=body),
            data=data or {},
            token=fcm_token,
            android=messaging.AndroidConfig(priority="high"),
        )
        response = messaging.send(message)
        logger.info(f"Push notification sent: {response}")
        return True

    except Exception as e:
        error_str = str(e)
        if "Requested entity was not found" in error_str or "not a valid FCM registration token" in error_str:
            logger.warning(f"FCM token is invalid/unregistered: {fcm_token[:20]}...")
        else:
            logger.error(f"Failed to send push notification: {e}")
        return False


class NotificationService:
    """Best-effort publish/subscribe channel for workflow events"""

    def __init__(self, session_factory=SessionLocal):
        self._session_factory = session_factory
        self._subscribers: Dict[str, List[Callable[[dict], None]]] = defaultdict(list)

    def subscribe(self, entity_type: str, callback: Callable[[dict], None]) -> Callable[[], None]:
        """Register a callback for changes to one entity type. Returns an unsubscribe function."""
        self._subscribers[entity_type].append(callback)

        def unsubscribe():
            if callback in self._subscribers[entity_type]:
                self._subscribers[entity_type].remove(callback)

        return unsubscribe

    def publish(
        self,
        entity_type: str,
        entity_id: int,
        change_kind: str,
        recipient_ids: Iterable[Optional[int]] = (),
        title: Optional[str] = None,
        message: Optional[str] = None
    ) -> None:
        event = {"entity_type": entity_type, "entity_id": entity_id, "change_kind": change_kind}
        recipients = sorted({r for r in recipient_ids if r is not None})
        title = title or change_kind.replace("_", " ").capitalize()

        tokens = self._store(event, recipients, title, message)

        for callback in list(self._subscribers.get(entity_type, [])):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Subscriber for {entity_type} failed on {change_kind}: {e}")

        for token in tokens:
            send_push(token, title, message or title, data={k: str(v) for k, v in event.items()})

    def _store(self, event: dict, recipients: List[int], title: str, message: Optional[str]) -> List[str]:
        """Persist feed rows in a session of our own; returns the recipients' push tokens."""
        if not recipients:
            return []

        db = self._session_factory()
        try:
            for user_id in recipients:
                db.add(Notification(
                    user_id=user_id,
                    entity_type=event["entity_type"],
                    entity_id=event["entity_id"],
                    change_kind=event["change_kind"],
                    title=title,
                    message=message
                ))
            db.commit()

            users = db.query(User).filter(User.id.in_(recipients), User.fcm_token.isnot(None)).all()
            return [u.fcm_token for u in users]
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to store notifications for {event}: {e}")
            return []
        finally:
            db.close()


notification_service = NotificationService()
