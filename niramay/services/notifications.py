import logging
from typing import List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from niramay.core.config import settings
from niramay.models import Notification
from niramay.schemas.schemas import NotificationType

logger = logging.getLogger(__name__)


def create_notification(
    db: Session,
    user_id: str,
    title: str,
    message: str,
    type: str = NotificationType.info.value,
    related_report_id: Optional[str] = None,
) -> Optional[Notification]:
    """Best-effort insert: a failed notification is logged and never fails the caller."""
    try:
        notification = Notification(
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            related_report_id=related_report_id,
        )
        db.add(notification)
        db.commit()
        db.refresh(notification)
        return notification
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error creating notification for user %s", user_id)
        return None


def notify(db: Session, user_id: str, template: dict, related_report_id: Optional[str] = None) -> Optional[Notification]:
    return create_notification(db, user_id, template["title"], template["message"], template["type"], related_report_id)


def list_notifications(db: Session, user_id: str) -> List[Notification]:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(settings.NOTIFICATION_PAGE_SIZE)
        .all()
    )


def mark_read(db: Session, user_id: str, notification_id: str) -> bool:
    updated = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return updated > 0


def mark_all_read(db: Session, user_id: str) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.commit()
    return updated


# Message templates for common events

def task_assigned(location: str) -> dict:
    return {
        "title": "New Task Assigned",
        "message": f"You have been assigned a new cleanup task at {location}. Please check your dashboard for details.",
        "type": NotificationType.assignment.value,
    }


def task_approved(eco_points: int) -> dict:
    return {
        "title": "Task Approved!",
        "message": f"Great work! Your cleanup has been approved. The reporter earned {eco_points} eco-points.",
        "type": NotificationType.approval.value,
    }


def task_rejected(reason: str) -> dict:
    return {
        "title": "Task Needs Revision",
        "message": f"Your submission needs to be revised. Reason: {reason}. Please resubmit with corrections.",
        "type": NotificationType.rejection.value,
    }


def eco_points_awarded(eco_points: int, total_eco_points: int) -> dict:
    return {
        "title": "Eco-Points Earned!",
        "message": f"You've earned {eco_points} eco-points! Your total balance is now {total_eco_points} eco-points.",
        "type": NotificationType.success.value,
    }


def report_status_update(status: str, location: str) -> dict:
    return {
        "title": "Report Status Updated",
        "message": f"Your report at {location} has been updated to: {status.replace('_', ' ')}.",
        "type": NotificationType.info.value,
    }


def redemption_confirmed(item_name: str, eco_points_spent: int) -> dict:
    return {
        "title": "Redemption Confirmed",
        "message": f"Your redemption of {item_name} has been confirmed. {eco_points_spent} eco-points have been deducted from your account.",
        "type": NotificationType.success.value,
    }
