"""
Calendar events with role-scoped visibility.

An event has exactly one scope:
- personal: only its creator sees it; any role may create one
- global: everybody sees it; admin only
- subject: the subject's teacher and enrolled students; subject owner or admin
- year: everybody in that school year plus staff; admin only
"""
import re
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from database import (
    User, UserRole, Subject, StudentSubject, CalendarEvent, EventType, utcnow
)
from .authorization import Access, AuthorizationService, parse_role
from .divisions import MAX_YEAR, MIN_YEAR
from .exceptions import Forbidden, NotFound, ValidationError

SCOPE_FIELDS = ("is_personal", "is_global", "subject_id", "year")
EVENT_TYPES = tuple(t.value for t in EventType)
TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

STUDENT_SCOPE_DENIED = "Los estudiantes solo pueden crear eventos personales"
SUBJECT_EVENT_DENIED = "No tienes permiso para crear eventos en esta materia"


def _get_event(db: Session, event_id: int) -> CalendarEvent:
    event = (
        db.query(CalendarEvent)
        .filter(CalendarEvent.id == event_id, CalendarEvent.is_active.is_(True))
        .first()
    )
    if not event:
        raise NotFound("Evento no encontrado")
    return event


def _validate_fields(title=None, event_type=None, time=None, event_date=None,
                     past_message="No se pueden crear eventos en fechas pasadas") -> None:
    if title is not None and not title.strip():
        raise ValidationError("El título es requerido", "title")
    if event_type is not None and event_type not in EVENT_TYPES:
        raise ValidationError("Tipo de evento inválido", "type")
    if time and not TIME_PATTERN.match(time):
        raise ValidationError("La hora debe tener el formato HH:MM", "time")
    if event_date is not None and event_date < utcnow().date():
        raise ValidationError(past_message, "date")


def _resolve_scope(auth: AuthorizationService, user: User, is_personal: bool = False,
                   is_global: bool = False, subject_id: Optional[int] = None,
                   year: Optional[int] = None) -> Tuple[bool, bool, Optional[int], Optional[int]]:
    """
    Check the caller may publish to the requested scope. No scope at all
    means personal.

    Returns:
        (is_personal, is_global, subject_id, year) as stored

    Raises:
        NotFound: subject
        Forbidden: scope not allowed for the caller's role
        ValidationError: more than one scope, year outside 1-6 or not the subject's
    """
    scoped = bool(subject_id is not None or year is not None)
    if sum([bool(is_personal), bool(is_global), scoped]) > 1:
        raise ValidationError("Un evento es personal, global o de una materia o año, no varios")
    subject = auth.get_subject(subject_id) if subject_id is not None else None

    role = parse_role(user.role)
    if role is UserRole.STUDENT and (is_global or scoped):
        raise Forbidden(STUDENT_SCOPE_DENIED, user_id=user.id, action="create_event")
    if not (is_global or scoped):
        return True, False, None, None

    if is_global:
        if role is not UserRole.ADMIN:
            raise Forbidden("Solo los administradores pueden crear eventos globales",
                            user_id=user.id, action="create_event")
        return False, True, None, None

    if subject is not None:
        auth.check_subject_access(user, subject, Access.WRITE, message=SUBJECT_EVENT_DENIED)
        if year is not None and year != subject.year:
            raise ValidationError("El año no coincide con el de la materia", "year")
        return False, False, subject.id, subject.year

    if role is not UserRole.ADMIN:
        raise Forbidden("Solo los administradores pueden crear eventos para todo un año",
                        user_id=user.id, action="create_event")
    if not (MIN_YEAR <= year <= MAX_YEAR):
        raise ValidationError(f"El año debe estar entre {MIN_YEAR} y {MAX_YEAR}", "year")
    return False, False, None, year


def _visibility(user: User):
    """Filter clause for the events `user` may see."""
    role = parse_role(user.role)
    year_wide = and_(CalendarEvent.subject_id.is_(None), CalendarEvent.year.isnot(None))
    clauses = [
        and_(CalendarEvent.is_personal.is_(True), CalendarEvent.created_by == user.id),
        CalendarEvent.is_global.is_(True),
    ]
    if role is UserRole.ADMIN:
        clauses.append(CalendarEvent.is_personal.is_(False))
    elif role is UserRole.TEACHER:
        clauses.append(year_wide)
        clauses.append(CalendarEvent.subject_id.in_(
            select(Subject.id).where(Subject.teacher_id == user.id)
        ))
    elif role is UserRole.STUDENT:
        if user.year:
            clauses.append(and_(year_wide, CalendarEvent.year == user.year))
        clauses.append(CalendarEvent.subject_id.in_(
            select(StudentSubject.subject_id).where(
                StudentSubject.student_id == user.id, StudentSubject.is_active.is_(True)
            )
        ))
    else:
        clauses.append(year_wide)
    return or_(*clauses)


def list_events(db: Session, user: User, year: Optional[int] = None,
                subject_id: Optional[int] = None, type: Optional[str] = None,
                month: Optional[int] = None,
                calendar_year: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Events visible to the caller, soonest first. `month` is read within
    `calendar_year`, the current one by default.
    """
    query = db.query(CalendarEvent).filter(
        CalendarEvent.is_active.is_(True),
        or_(CalendarEvent.subject_id.is_(None),
            CalendarEvent.subject_id.in_(select(Subject.id).where(Subject.is_active.is_(True)))),
        _visibility(user),
    )
    if year is not None:
        query = query.filter(CalendarEvent.year == year)
    if subject_id is not None:
        query = query.filter(CalendarEvent.subject_id == subject_id)
    if type:
        _validate_fields(event_type=type)
        query = query.filter(CalendarEvent.type == type)
    if month is not None:
        if not 1 <= month <= 12:
            raise ValidationError("El mes debe estar entre 1 y 12", "month")
        in_year = calendar_year or utcnow().year
        start = date(in_year, month, 1)
        end = date(in_year + 1, 1, 1) if month == 12 else date(in_year, month + 1, 1)
        query = query.filter(CalendarEvent.date >= start, CalendarEvent.date < end)
    events = query.order_by(CalendarEvent.date, CalendarEvent.time, CalendarEvent.id).all()
    return [e.to_dict() for e in events]


def create_event(db: Session, user: User, title: str, event_date: date, type: str,
                 description: Optional[str] = None, time: Optional[str] = None,
                 is_personal: bool = False, is_global: bool = False,
                 subject_id: Optional[int] = None, year: Optional[int] = None) -> Dict[str, Any]:
    """
    Raises:
        NotFound: subject
        Forbidden: scope not allowed, student not approved
        ValidationError: missing fields, past date, bad type or time
    """
    auth = AuthorizationService(db)
    auth.enforce_approved(user, action="create_event")
    if not title or event_date is None or not type:
        raise ValidationError("Faltan campos requeridos: title, date, type")
    _validate_fields(title=title, event_type=type, time=time, event_date=event_date)
    personal, is_global, subject_id, year = _resolve_scope(
        auth, user, is_personal, is_global, subject_id, year
    )

    event = CalendarEvent(
        title=title.strip(),
        description=description,
        date=event_date,
        time=time or None,
        type=type,
        subject_id=subject_id,
        year=year,
        is_personal=personal,
        is_global=is_global,
        created_by=user.id,
    )
    db.add(event)
    db.commit()
    db.refresh(event)
    return event.to_dict()


def _manageable_event(db: Session, user: User, event_id: int, action: str,
                      denied: str) -> CalendarEvent:
    """
    Personal events belong to their creator. Shared ones are managed by admins,
    and subject events also by the subject's teacher.
    """
    auth = AuthorizationService(db)
    event = _get_event(db, event_id)
    if event.is_personal:
        allowed = event.created_by == user.id
    elif parse_role(user.role) is UserRole.ADMIN:
        allowed = True
    elif event.subject_id is not None:
        allowed = auth.owns_subject(user, auth.get_subject(event.subject_id))
    else:
        allowed = False
    if not allowed:
        raise Forbidden(denied, user_id=user.id, action=action)
    auth.enforce_approved(user, action=action)
    return event


def update_event(db: Session, user: User, event_id: int,
                 changes: Dict[str, Any]) -> Dict[str, Any]:
    """
    Scope fields present in `changes` replace the whole scope. Students may
    not change the scope of their personal events.
    """
    event = _manageable_event(db, user, event_id, "update_event",
                              "No tienes permisos para modificar este evento")
    _validate_fields(
        title=changes.get("title"),
        event_type=changes.get("type"),
        time=changes.get("time"),
        event_date=changes.get("date"),
        past_message="No se pueden establecer fechas pasadas",
    )
    scope_changes = {k: changes[k] for k in SCOPE_FIELDS if k in changes}
    if scope_changes:
        if parse_role(user.role) is UserRole.STUDENT:
            raise Forbidden("No puedes cambiar la visibilidad de un evento personal",
                            user_id=user.id, action="update_event")
        resolved = _resolve_scope(
            AuthorizationService(db), user,
            is_personal=bool(scope_changes.get("is_personal")),
            is_global=bool(scope_changes.get("is_global")),
            subject_id=scope_changes.get("subject_id"),
            year=scope_changes.get("year"),
        )
        event.is_personal, event.is_global, event.subject_id, event.year = resolved
        if event.is_personal:
            event.created_by = user.id

    if changes.get("title") is not None:
        event.title = changes["title"].strip()
    if "description" in changes:
        event.description = changes["description"]
    if changes.get("date") is not None:
        event.date = changes["date"]
    if "time" in changes:
        event.time = changes["time"] or None
    if changes.get("type") is not None:
        event.type = changes["type"]
    db.commit()
    db.refresh(event)
    return event.to_dict()


def delete_event(db: Session, user: User, event_id: int) -> None:
    """Soft delete."""
    event = _manageable_event(db, user, event_id, "delete_event",
                              "No tienes permisos para eliminar este evento")
    event.is_active = False
    db.commit()
