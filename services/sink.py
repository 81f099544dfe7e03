"""
Audit/notification sink.

Best-effort side-effect writers invoked after a state change has been
committed. Writes run in their own database session, either right away or
as a FastAPI background task after the response is sent. A failing write is
logged and dropped, it never reaches the caller.
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, Optional

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from database import SessionLocal, AuditLog, Notification

logger = logging.getLogger(__name__)


class AuditAction(str, Enum):
    """Closed set of audit tags."""
    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGOUT = "LOGOUT"
    ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    PROFILE_UPDATED = "PROFILE_UPDATED"
    TWO_FACTOR_ENABLED = "TWO_FACTOR_ENABLED"
    TWO_FACTOR_DISABLED = "TWO_FACTOR_DISABLED"
    TWO_FACTOR_VERIFICATION_FAILED = "TWO_FACTOR_VERIFICATION_FAILED"
    SESSION_REVOKED = "SESSION_REVOKED"
    STUDENT_APPROVED = "STUDENT_APPROVED"
    STUDENT_REJECTED = "STUDENT_REJECTED"
    ADMIN_ACTION = "ADMIN_ACTION"
    MAINTENANCE_CHANGED = "MAINTENANCE_CHANGED"
    UNAUTHORIZED_ACCESS_ATTEMPT = "unauthorized_access_attempt"


def write_audit_log(db: Session, action: str, user_id: int = None, email: str = None,
                    details: Dict[str, Any] = None, ip_address: str = None,
                    user_agent: str = None) -> AuditLog:
    entry = AuditLog(
        user_id=user_id,
        email=email,
        action=action.value if isinstance(action, AuditAction) else action,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(entry)
    return entry


def write_notification(db: Session, user_id: int, title: str, message: str,
                       type: str = "info", sender_id: int = None, action_url: str = None,
                       metadata: Dict[str, Any] = None) -> Notification:
    notification = Notification(
        user_id=user_id,
        sender_id=sender_id,
        title=title,
        message=message,
        type=type,
        action_url=action_url,
        extra=metadata,
    )
    db.add(notification)
    return notification


class SideEffectSink:
    """
    Fire-and-forget writer for audit rows and notifications.

    Args:
        background: when given, writes are deferred until after the response
        session_factory: opens the session each write runs in
    """

    def __init__(self, background: Optional[BackgroundTasks] = None,
                 session_factory: Callable[[], Session] = SessionLocal):
        self.background = background
        self.session_factory = session_factory

    def audit(self, action, user_id: int = None, email: str = None,
              details: Dict[str, Any] = None, ip_address: str = None,
              user_agent: str = None) -> None:
        self._dispatch(
            write_audit_log,
            action=action,
            user_id=user_id,
            email=email,
            details=details,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def notify(self, user_id: int, title: str, message: str, type: str = "info",
               sender_id: int = None, action_url: str = None,
               metadata: Dict[str, Any] = None) -> None:
        self._dispatch(
            write_notification,
            user_id=user_id,
            title=title,
            message=message,
            type=type,
            sender_id=sender_id,
            action_url=action_url,
            metadata=metadata,
        )

    def security_alert(self, user_id: int, title: str, message: str,
                       metadata: Dict[str, Any] = None) -> None:
        """Notification of type `security`, shown in the security inbox."""
        self.notify(user_id, title, message, type="security", metadata=metadata)

    def _dispatch(self, writer: Callable, **kwargs) -> None:
        if self.background is not None:
            self.background.add_task(self._run, writer, kwargs)
        else:
            self._run(writer, kwargs)

    def _run(self, writer: Callable, kwargs: Dict[str, Any]) -> None:
        try:
            db = self.session_factory()
        except Exception:
            logger.exception("Sink could not open a session for %s", writer.__name__)
            return
        try:
            writer(db, **kwargs)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Sink write %s failed", writer.__name__)
        finally:
            db.close()
