"""
Account tools: registration, login, logout, password and profile management,
device sessions and the user's own activity log.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import pyotp
from sqlalchemy.orm import Session

from config.settings import settings
from database import (
    User, UserRole, ApprovalStatus, UserSession, AuditLog, utcnow
)
from .authorization import parse_role
from .divisions import validate_year_division
from .exceptions import (
    Conflict, Forbidden, NotFound, Unauthenticated, ValidationError
)
from .passwords import get_password_hash, validate_password, verify_password
from .sessions import open_session
from .site_config import is_teacher_email
from .sink import AuditAction, SideEffectSink

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def register_user(
    db: Session,
    email: str,
    password: str,
    name: str,
    year: Optional[int] = None,
    division: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Self-service registration.

    Emails on the teacher allow-list become teachers, everyone else a
    student in `pending` state awaiting admin approval.

    Raises:
        ValidationError: bad email, weak password, invalid year/division
        Conflict: email already registered
    """
    email = normalize_email(email)
    if "@" not in email:
        raise ValidationError("Email inválido", "email")
    if not name or not name.strip():
        raise ValidationError("El nombre es requerido", "name")
    validate_password(password)

    if db.query(User.id).filter(User.email == email).first():
        raise Conflict("Ya existe una cuenta con este email", "email")

    if is_teacher_email(db, email):
        user = User(email=email, name=name.strip(), password_hash=get_password_hash(password),
                    role=UserRole.TEACHER.value)
    else:
        division = validate_year_division(year, division)
        user = User(
            email=email,
            name=name.strip(),
            password_hash=get_password_hash(password),
            role=UserRole.STUDENT.value,
            year=year,
            division=division,
            approval_status=ApprovalStatus.PENDING.value,
        )

    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("Registered %s as %s", user.email, user.role)
    return user.to_dict()


def is_account_locked(db: Session, email: str) -> bool:
    """
    True when the account has too many recent failed logins.

    Failures are read from the audit log, so the lockout survives restarts.
    """
    now = utcnow()
    window_start = now - timedelta(minutes=settings.lockout_window_minutes)
    failures = (
        db.query(AuditLog.created_at)
        .filter(
            AuditLog.email == email,
            AuditLog.action == AuditAction.LOGIN_FAILURE.value,
            AuditLog.created_at >= window_start,
        )
        .order_by(AuditLog.created_at.desc())
        .limit(settings.max_failed_logins)
        .all()
    )
    if len(failures) < settings.max_failed_logins:
        return False
    last_failure = failures[0][0]
    return now - last_failure < timedelta(minutes=settings.lockout_minutes)


def login(
    db: Session,
    email: str,
    password: str,
    totp_code: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    sink: SideEffectSink = None,
) -> Tuple[str, Dict[str, Any]]:
    """
    Verify credentials and open a device session.

    Returns:
        (session token, user dict)

    Raises:
        Forbidden: account locked or deactivated
        Unauthenticated: bad credentials or 2FA code
    """
    sink = sink or SideEffectSink()
    email = normalize_email(email)
    if not email or not password:
        raise ValidationError("Email y contraseña son requeridos")

    if is_account_locked(db, email):
        sink.audit(AuditAction.ACCOUNT_LOCKED, email=email, ip_address=ip_address,
                   user_agent=user_agent)
        raise Forbidden("Cuenta temporalmente bloqueada por múltiples intentos fallidos")

    def fail(reason: str, user: User = None):
        sink.audit(
            AuditAction.LOGIN_FAILURE,
            user_id=user.id if user else None,
            email=email,
            details={"reason": reason},
            ip_address=ip_address,
            user_agent=user_agent,
        )

    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(password, user.password_hash):
        fail("invalid_credentials", user)
        raise Unauthenticated("Credenciales inválidas")

    if user.two_factor_enabled and user.two_factor_secret:
        if not totp_code:
            raise Unauthenticated("Token de autenticación de dos factores requerido")
        if not pyotp.TOTP(user.two_factor_secret).verify(str(totp_code), valid_window=2):
            fail("invalid_2fa", user)
            raise Unauthenticated("Token de autenticación de dos factores inválido")

    if not user.is_active:
        raise Forbidden("Cuenta desactivada. Contacte al administrador.")

    known_device = (
        db.query(UserSession.id)
        .filter(UserSession.user_id == user.id, UserSession.user_agent == user_agent)
        .first()
        is not None
    )
    had_sessions = db.query(UserSession.id).filter(UserSession.user_id == user.id).first() is not None

    token, _ = open_session(db, user, ip_address=ip_address, user_agent=user_agent)
    user.last_login = utcnow()
    db.commit()
    db.refresh(user)

    sink.audit(AuditAction.LOGIN_SUCCESS, user_id=user.id, email=user.email,
               ip_address=ip_address, user_agent=user_agent)
    if had_sessions and not known_device:
        sink.security_alert(
            user.id,
            "Nuevo inicio de sesión",
            f"Se detectó un inicio de sesión desde un dispositivo nuevo ({user_agent or 'desconocido'}).",
            metadata={"ip_address": ip_address},
        )
    return token, user.to_dict()


def logout(db: Session, user: User, session: UserSession,
           sink: SideEffectSink = None) -> None:
    session.revoked_at = utcnow()
    db.commit()
    (sink or SideEffectSink()).audit(AuditAction.LOGOUT, user_id=user.id, email=user.email)


def account_status(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "approval_status": user.approval_status,
        "is_active": user.is_active,
        "two_factor_enabled": user.two_factor_enabled,
    }


def change_password(db: Session, user: User, current_password: str, new_password: str,
                    ip_address: str = None, user_agent: str = None,
                    sink: SideEffectSink = None) -> None:
    """
    Raises:
        ValidationError: wrong current password or weak new password
    """
    if not verify_password(current_password, user.password_hash):
        raise ValidationError("La contraseña actual es incorrecta", "current_password")
    if current_password == new_password:
        raise ValidationError("La nueva contraseña debe ser distinta de la actual", "new_password")
    validate_password(new_password)

    user.password_hash = get_password_hash(new_password)
    db.commit()

    sink = sink or SideEffectSink()
    sink.audit(AuditAction.PASSWORD_CHANGED, user_id=user.id, email=user.email,
               ip_address=ip_address, user_agent=user_agent)
    sink.security_alert(user.id, "Contraseña actualizada",
                        "Tu contraseña fue cambiada. Si no fuiste vos, contactá a un administrador.")


PROFILE_FIELDS = ("name", "phone", "bio", "avatar_url")


def update_profile(db: Session, user: User, changes: Dict[str, Any],
                   sink: SideEffectSink = None) -> Dict[str, Any]:
    """Self-service profile edit, restricted to PROFILE_FIELDS."""
    applied = {}
    for field in PROFILE_FIELDS:
        if field in changes and changes[field] is not None:
            value = changes[field]
            if field == "name" and not str(value).strip():
                raise ValidationError("El nombre es requerido", "name")
            setattr(user, field, value)
            applied[field] = value
    db.commit()
    db.refresh(user)
    if applied:
        (sink or SideEffectSink()).audit(AuditAction.PROFILE_UPDATED, user_id=user.id,
                                         details={"fields": sorted(applied)})
    return user.to_dict()


def update_year(db: Session, user: User, year: int, division: Optional[str]) -> Dict[str, Any]:
    """Students only: move to another academic year/division."""
    if parse_role(user.role) is not UserRole.STUDENT:
        raise Forbidden("Solo los estudiantes pueden actualizar su año", user_id=user.id)
    user.division = validate_year_division(year, division)
    user.year = year
    db.commit()
    db.refresh(user)
    return user.to_dict()


def list_devices(db: Session, user: User, current: UserSession = None) -> List[Dict[str, Any]]:
    sessions = (
        db.query(UserSession)
        .filter(UserSession.user_id == user.id, UserSession.revoked_at.is_(None))
        .order_by(UserSession.last_active.desc())
        .all()
    )
    current_token = current.token_id if current else None
    return [s.to_dict(current_token) for s in sessions]


def revoke_device(db: Session, user: User, session_id: int,
                  sink: SideEffectSink = None) -> None:
    """
    Raises:
        NotFound: the session does not exist or belongs to someone else
    """
    record = (
        db.query(UserSession)
        .filter(UserSession.id == session_id, UserSession.user_id == user.id)
        .first()
    )
    if not record:
        raise NotFound("Sesión no encontrada")
    if record.revoked_at is None:
        record.revoked_at = utcnow()
        db.commit()
    (sink or SideEffectSink()).audit(AuditAction.SESSION_REVOKED, user_id=user.id,
                                     details={"session_id": session_id})


def recent_activity(db: Session, user: User, limit: int = 10) -> List[Dict[str, Any]]:
    rows = (
        db.query(AuditLog)
        .filter(AuditLog.user_id == user.id)
        .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        .limit(limit)
        .all()
    )
    return [row.to_dict() for row in rows]
