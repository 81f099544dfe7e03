"""
Notification inbox operations.

Rows are addressed to exactly one user; the only mutation is marking them read.
"""
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from database import User, UserRole, Notification, utcnow
from .authorization import parse_role
from .exceptions import Forbidden, NotFound, ValidationError
from .sink import write_notification

NOTIFICATION_TYPES = (
    "info", "success", "warning", "error", "security",
    "assignment", "submission", "grade", "forum", "message", "support",
)


def list_notifications(db: Session, user: User, unread_only: bool = False,
                       type: Optional[str] = None, page: int = 1,
                       limit: int = 20) -> Dict[str, Any]:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    query = db.query(Notification).filter(Notification.user_id == user.id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))
    if type:
        query = query.filter(Notification.type == type)
    total = query.count()
    rows = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "notifications": [n.to_dict() for n in rows],
        "unread_count": unread_count(db, user),
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": (total + limit - 1) // limit,
        },
    }


def security_notifications(db: Session, user: User, limit: int = 20) -> Dict[str, Any]:
    return list_notifications(db, user, type="security", limit=limit)


def unread_count(db: Session, user: User) -> int:
    return (
        db.query(func.count(Notification.id))
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .scalar()
    )


def create_notification(db: Session, user: User, user_id: int, title: str, message: str,
                        type: str = "info", action_url: Optional[str] = None,
                        metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Admins may notify anyone, everybody else only themselves.

    Raises:
        Forbidden: non-admin addressing another user
        ValidationError: missing title/message, unknown type or recipient
    """
    if user_id != user.id and parse_role(user.role) is not UserRole.ADMIN:
        raise Forbidden("Solo podés crear notificaciones para vos mismo", user_id=user.id,
                        action="create_notification")
    if not title or not message:
        raise ValidationError("Título y mensaje son requeridos")
    if type not in NOTIFICATION_TYPES:
        raise ValidationError("Tipo de notificación inválido", "type")
    if not db.query(User.id).filter(User.id == user_id).first():
        raise NotFound("Usuario no encontrado")

    notification = write_notification(db, user_id, title, message, type=type,
                                      sender_id=user.id, action_url=action_url,
                                      metadata=metadata)
    db.commit()
    db.refresh(notification)
    return notification.to_dict()


def mark_read(db: Session, user: User, notification_id: int) -> Dict[str, Any]:
    """Another user's notification is reported as missing."""
    notification = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user.id)
        .first()
    )
    if not notification:
        raise NotFound("Notificación no encontrada")
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
        db.commit()
        db.refresh(notification)
    return notification.to_dict()


def mark_all_read(db: Session, user: User) -> Dict[str, Any]:
    """Idempotent: a second call updates nothing and still reports zero unread."""
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user.id, Notification.is_read.is_(False))
        .update({Notification.is_read: True, Notification.read_at: utcnow()},
                synchronize_session=False)
    )
    db.commit()
    return {"updated": updated, "unread_count": unread_count(db, user)}
