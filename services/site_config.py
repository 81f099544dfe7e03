"""
Persisted configuration records: maintenance mode and the teacher allow-list.

Both live in the `site_config` table and are read fresh on every request, so
runtime changes survive restarts and are visible to every worker.
"""
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from config.settings import settings
from database import SiteConfig, User
from .exceptions import ValidationError
from .sink import AuditAction, SideEffectSink

MAINTENANCE_KEY = "maintenance_mode"
TEACHER_EMAILS_KEY = "teacher_emails"
DEFAULT_MAINTENANCE_MESSAGE = "Estamos realizando mejoras en el Campus. Volvemos pronto."


def _get(db: Session, key: str) -> Optional[Any]:
    record = db.query(SiteConfig).filter(SiteConfig.key == key).first()
    return record.value if record else None


def _put(db: Session, key: str, value: Any, updated_by: int = None) -> None:
    record = db.query(SiteConfig).filter(SiteConfig.key == key).first()
    if record:
        record.value = value
        record.updated_by = updated_by
    else:
        db.add(SiteConfig(key=key, value=value, updated_by=updated_by))
    db.commit()


# ---------------- Maintenance ----------------

def get_maintenance(db: Session) -> Dict[str, Any]:
    value = _get(db, MAINTENANCE_KEY)
    if not value:
        return {"enabled": False, "message": DEFAULT_MAINTENANCE_MESSAGE, "estimated_end": None}
    return value


def set_maintenance(db: Session, admin: User, enabled: bool, message: str = None,
                    estimated_end: str = None, sink: SideEffectSink = None) -> Dict[str, Any]:
    value = {
        "enabled": bool(enabled),
        "message": message or DEFAULT_MAINTENANCE_MESSAGE,
        "estimated_end": estimated_end,
    }
    _put(db, MAINTENANCE_KEY, value, updated_by=admin.id)
    (sink or SideEffectSink()).audit(
        AuditAction.MAINTENANCE_CHANGED,
        user_id=admin.id,
        details={"enabled": value["enabled"]},
    )
    return value


# ---------------- Teacher allow-list ----------------

def _normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def stored_teacher_emails(db: Session) -> List[str]:
    return list(_get(db, TEACHER_EMAILS_KEY) or [])


def teacher_emails(db: Session) -> List[str]:
    """Seed list from settings merged with the persisted additions."""
    merged = {_normalize_email(e) for e in settings.teacher_emails}
    merged.update(stored_teacher_emails(db))
    return sorted(e for e in merged if e)


def is_teacher_email(db: Session, email: str) -> bool:
    return _normalize_email(email) in teacher_emails(db)


def add_teacher_email(db: Session, admin: User, email: str) -> List[str]:
    email = _normalize_email(email)
    if "@" not in email:
        raise ValidationError("Email inválido", "email")
    stored = stored_teacher_emails(db)
    if email not in stored:
        stored.append(email)
        _put(db, TEACHER_EMAILS_KEY, sorted(stored), updated_by=admin.id)
    return teacher_emails(db)


def remove_teacher_email(db: Session, admin: User, email: str) -> List[str]:
    """Remove a persisted entry. Seed entries from settings stay."""
    email = _normalize_email(email)
    stored = stored_teacher_emails(db)
    if email in stored:
        stored.remove(email)
        _put(db, TEACHER_EMAILS_KEY, stored, updated_by=admin.id)
    return teacher_emails(db)
