"""
Session resolver.

Session tokens are JWTs signed with the configured secret. Each token names
a `user_sessions` row, so revoking the row invalidates the token even before
it expires. Role and approval status are always reloaded from the database.
"""
import secrets
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from jose import JWTError, jwt
from sqlalchemy.orm import Session

from config.settings import settings
from database import User, UserSession, utcnow
from .exceptions import Unauthenticated


def create_session_token(user_id: int, token_id: str, expires_delta: timedelta = None) -> str:
    """Create signed session token"""
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.session_max_age_minutes))
    payload = {"sub": str(user_id), "sid": token_id, "exp": expire, "type": "session"}
    return jwt.encode(payload, settings.session_secret, algorithm=settings.session_algorithm)


def decode_session_token(token: str) -> Dict[str, Any]:
    """Decode session token, raising Unauthenticated on any defect."""
    try:
        payload = jwt.decode(token, settings.session_secret, algorithms=[settings.session_algorithm])
    except JWTError:
        raise Unauthenticated()
    if payload.get("type") != "session" or not payload.get("sid") or not payload.get("sub"):
        raise Unauthenticated()
    return payload


def open_session(db: Session, user: User, ip_address: str = None,
                 user_agent: str = None) -> Tuple[str, UserSession]:
    """Persist a device session for the user and return its token."""
    record = UserSession(
        user_id=user.id,
        token_id=secrets.token_urlsafe(24),
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(record)
    db.flush()
    return create_session_token(user.id, record.token_id), record


def resolve_session(db: Session, token: Optional[str]) -> Tuple[User, UserSession]:
    """
    Resolve the authenticated user from a session token.

    Raises:
        Unauthenticated: missing, invalid, expired or revoked token, or
            deactivated user
    """
    if not token:
        raise Unauthenticated()
    payload = decode_session_token(token)
    record = (
        db.query(UserSession)
        .filter(UserSession.token_id == payload["sid"], UserSession.revoked_at.is_(None))
        .first()
    )
    if not record or str(record.user_id) != payload["sub"]:
        raise Unauthenticated()
    user = db.query(User).filter(User.id == record.user_id).first()
    if not user or not user.is_active:
        raise Unauthenticated()
    record.last_active = utcnow()
    db.commit()
    return user, record
