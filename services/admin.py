"""
Administration tools: user management, student approvals and the security
dashboard (audit log queries and stats).
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from database import (
    User, UserRole, ApprovalStatus, AuditLog, UserSession, utcnow
)
from .accounts import normalize_email
from .divisions import validate_year_division
from .exceptions import Conflict, NotFound, ValidationError
from .passwords import get_password_hash, validate_password
from .sink import AuditAction, SideEffectSink


def _page(query, page: int, limit: int):
    page = max(page, 1)
    limit = min(max(limit, 1), 100)
    total = query.count()
    rows = query.offset((page - 1) * limit).limit(limit).all()
    return rows, {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": (total + limit - 1) // limit,
    }


def _parse_role(role: str) -> UserRole:
    try:
        return UserRole(role)
    except ValueError:
        raise ValidationError("Rol inválido", "role")


# ---------------- Users ----------------

def list_users(db: Session, role: Optional[str] = None, search: Optional[str] = None,
               include_inactive: bool = False, page: int = 1, limit: int = 20) -> Dict[str, Any]:
    query = db.query(User)
    if role:
        query = query.filter(User.role == _parse_role(role).value)
    if not include_inactive:
        query = query.filter(User.is_active.is_(True))
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(User.name.ilike(pattern), User.email.ilike(pattern)))
    users, pagination = _page(query.order_by(User.created_at.desc(), User.id.desc()), page, limit)
    return {"users": [u.to_dict() for u in users], "pagination": pagination}


def get_user(db: Session, user_id: int) -> Dict[str, Any]:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("Usuario no encontrado")
    return user.to_dict()


def create_user(db: Session, admin: User, email: str, password: str, name: str,
                role: str, year: Optional[int] = None, division: Optional[str] = None,
                sink: SideEffectSink = None) -> Dict[str, Any]:
    """
    Admin-created accounts. Students created here are approved right away.

    Raises:
        ValidationError / Conflict
    """
    email = normalize_email(email)
    if "@" not in email:
        raise ValidationError("Email inválido", "email")
    if not name or not name.strip():
        raise ValidationError("El nombre es requerido", "name")
    role_value = _parse_role(role)
    validate_password(password)
    if db.query(User.id).filter(User.email == email).first():
        raise Conflict("Ya existe una cuenta con este email", "email")

    user = User(email=email, name=name.strip(), password_hash=get_password_hash(password),
                role=role_value.value)
    if role_value is UserRole.STUDENT:
        user.division = validate_year_division(year, division)
        user.year = year
        user.approval_status = ApprovalStatus.APPROVED.value
        user.approved_by = admin.id
        user.approved_at = utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)

    (sink or SideEffectSink()).audit(
        AuditAction.ADMIN_ACTION, user_id=admin.id,
        details={"action": "create_user", "target_user_id": user.id, "role": user.role},
    )
    return user.to_dict()


def update_user(db: Session, admin: User, user_id: int, changes: Dict[str, Any],
                sink: SideEffectSink = None) -> Dict[str, Any]:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("Usuario no encontrado")

    if changes.get("name") is not None:
        if not changes["name"].strip():
            raise ValidationError("El nombre es requerido", "name")
        user.name = changes["name"].strip()
    if changes.get("role") is not None:
        user.role = _parse_role(changes["role"]).value
        if user.role == UserRole.STUDENT.value and not user.approval_status:
            user.approval_status = ApprovalStatus.APPROVED.value
    if changes.get("year") is not None or changes.get("division") is not None:
        year = changes.get("year", user.year)
        user.division = validate_year_division(year, changes.get("division", user.division))
        user.year = year
    if changes.get("is_active") is not None:
        user.is_active = bool(changes["is_active"])
    db.commit()
    db.refresh(user)

    (sink or SideEffectSink()).audit(
        AuditAction.ADMIN_ACTION, user_id=admin.id,
        details={"action": "update_user", "target_user_id": user.id,
                 "fields": sorted(k for k, v in changes.items() if v is not None)},
    )
    return user.to_dict()


def deactivate_user(db: Session, admin: User, user_id: int,
                    sink: SideEffectSink = None) -> Dict[str, Any]:
    """Soft-deactivate; users are never hard-deleted. Open sessions are revoked."""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFound("Usuario no encontrado")
    if user.id == admin.id:
        raise ValidationError("No podés desactivar tu propia cuenta")
    user.is_active = False
    now = utcnow()
    (
        db.query(UserSession)
        .filter(UserSession.user_id == user.id, UserSession.revoked_at.is_(None))
        .update({UserSession.revoked_at: now}, synchronize_session=False)
    )
    db.commit()
    db.refresh(user)
    (sink or SideEffectSink()).audit(
        AuditAction.ADMIN_ACTION, user_id=admin.id,
        details={"action": "deactivate_user", "target_user_id": user.id},
    )
    return user.to_dict()


def user_stats(db: Session) -> Dict[str, Any]:
    rows = (
        db.query(User.role, func.count(User.id))
        .filter(User.is_active.is_(True))
        .group_by(User.role)
        .all()
    )
    by_role = {role.value: 0 for role in UserRole}
    by_role.update({role: count for role, count in rows})
    pending = (
        db.query(func.count(User.id))
        .filter(User.role == UserRole.STUDENT.value,
                User.approval_status == ApprovalStatus.PENDING.value)
        .scalar()
    )
    return {"total": sum(by_role.values()), "by_role": by_role, "pending_students": pending}


# ---------------- Student approvals ----------------

def list_pending_students(db: Session) -> list[Dict[str, Any]]:
    students = (
        db.query(User)
        .filter(User.role == UserRole.STUDENT.value,
                User.approval_status == ApprovalStatus.PENDING.value,
                User.is_active.is_(True))
        .order_by(User.created_at.asc())
        .all()
    )
    return [s.to_dict() for s in students]


def _get_student(db: Session, student_id: int) -> User:
    student = (
        db.query(User)
        .filter(User.id == student_id, User.role == UserRole.STUDENT.value)
        .first()
    )
    if not student:
        raise NotFound("Estudiante no encontrado")
    return student


def approve_student(db: Session, admin: User, student_id: int,
                    sink: SideEffectSink = None) -> Dict[str, Any]:
    """
    Raises:
        NotFound: no such student
        ValidationError: already approved
    """
    student = _get_student(db, student_id)
    if student.approval_status == ApprovalStatus.APPROVED.value:
        raise ValidationError("El estudiante ya está aprobado")
    student.approval_status = ApprovalStatus.APPROVED.value
    student.approved_by = admin.id
    student.approved_at = utcnow()
    student.rejection_reason = None
    db.commit()
    db.refresh(student)

    sink = sink or SideEffectSink()
    sink.audit(AuditAction.STUDENT_APPROVED, user_id=admin.id,
               details={"student_id": student.id})
    sink.notify(student.id, "Cuenta aprobada",
                "Tu cuenta fue aprobada. Ya podés participar en el Campus.",
                type="success", sender_id=admin.id)
    return student.to_dict()


def reject_student(db: Session, admin: User, student_id: int, reason: Optional[str] = None,
                   sink: SideEffectSink = None) -> Dict[str, Any]:
    student = _get_student(db, student_id)
    if student.approval_status == ApprovalStatus.REJECTED.value:
        raise ValidationError("El estudiante ya está rechazado")
    student.approval_status = ApprovalStatus.REJECTED.value
    student.approved_by = admin.id
    student.approved_at = utcnow()
    student.rejection_reason = reason
    db.commit()
    db.refresh(student)

    sink = sink or SideEffectSink()
    sink.audit(AuditAction.STUDENT_REJECTED, user_id=admin.id,
               details={"student_id": student.id, "reason": reason})
    sink.notify(student.id, "Cuenta rechazada",
                reason or "Tu cuenta fue rechazada. Contactá a un administrador.",
                type="warning", sender_id=admin.id)
    return student.to_dict()


# ---------------- Security dashboard ----------------

def query_audit_logs(db: Session, action: Optional[str] = None, user_id: Optional[int] = None,
                     since: Optional[datetime] = None, until: Optional[datetime] = None,
                     page: int = 1, limit: int = 50) -> Dict[str, Any]:
    query = db.query(AuditLog)
    if action:
        query = query.filter(AuditLog.action == action)
    if user_id:
        query = query.filter(AuditLog.user_id == user_id)
    if since:
        query = query.filter(AuditLog.created_at >= since)
    if until:
        query = query.filter(AuditLog.created_at <= until)
    rows, pagination = _page(query.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()),
                             page, limit)
    return {"logs": [r.to_dict() for r in rows], "pagination": pagination}


def security_stats(db: Session) -> Dict[str, Any]:
    since = utcnow() - timedelta(hours=24)
    rows = (
        db.query(AuditLog.action, func.count(AuditLog.id))
        .filter(AuditLog.created_at >= since)
        .group_by(AuditLog.action)
        .all()
    )
    by_action = {action: count for action, count in rows}
    active_sessions = (
        db.query(func.count(UserSession.id)).filter(UserSession.revoked_at.is_(None)).scalar()
    )
    two_factor_users = (
        db.query(func.count(User.id)).filter(User.two_factor_enabled.is_(True)).scalar()
    )
    return {
        "last_24h": by_action,
        "failed_logins_24h": by_action.get(AuditAction.LOGIN_FAILURE.value, 0),
        "unauthorized_attempts_24h": by_action.get(AuditAction.UNAUTHORIZED_ACCESS_ATTEMPT.value, 0),
        "active_sessions": active_sessions,
        "two_factor_users": two_factor_users,
    }
