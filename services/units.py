"""
Unit and content operations. Reads go through the enrollment filter of the
owning subject, writes through the ownership filter.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from database import User, UserRole, SubjectUnit, SubjectContent
from .authorization import Access, AuthorizationService, parse_role
from .content_types import unwrap_content, wrap_content, content_type_label
from .exceptions import Forbidden, NotFound, ValidationError


def _get_unit(db: Session, subject_id: int, unit_id: int) -> SubjectUnit:
    unit = (
        db.query(SubjectUnit)
        .filter(SubjectUnit.id == unit_id,
                SubjectUnit.subject_id == subject_id,
                SubjectUnit.is_active.is_(True))
        .first()
    )
    if not unit:
        raise NotFound("Unidad no encontrada")
    return unit


def outside_hidden_units(query, unit_column):
    """Drop rows attached to an unpublished or deleted unit."""
    hidden = select(SubjectUnit.id).where(
        or_(SubjectUnit.is_published.is_(False), SubjectUnit.is_active.is_(False))
    )
    return query.filter(or_(unit_column.is_(None), unit_column.not_in(hidden)))


# ---------------- Units ----------------

def list_units(db: Session, user: User, subject_id: int) -> List[Dict[str, Any]]:
    """Students only see published units."""
    subject = AuthorizationService(db).subject_for(user, subject_id, Access.READ)
    query = db.query(SubjectUnit).filter(
        SubjectUnit.subject_id == subject.id, SubjectUnit.is_active.is_(True)
    )
    if parse_role(user.role) is UserRole.STUDENT:
        query = query.filter(SubjectUnit.is_published.is_(True))
    return [u.to_dict() for u in query.order_by(SubjectUnit.order_index, SubjectUnit.id).all()]


def create_unit(db: Session, user: User, subject_id: int, title: str,
                description: Optional[str] = None, is_published: bool = True) -> Dict[str, Any]:
    subject = AuthorizationService(db).subject_for(user, subject_id, Access.WRITE)
    if not title or not title.strip():
        raise ValidationError("El título es requerido", "title")
    last = (
        db.query(func.max(SubjectUnit.order_index))
        .filter(SubjectUnit.subject_id == subject.id, SubjectUnit.is_active.is_(True))
        .scalar()
    )
    unit = SubjectUnit(
        subject_id=subject.id,
        title=title.strip(),
        description=description,
        is_published=is_published,
        order_index=(last or 0) + 1,
    )
    db.add(unit)
    db.commit()
    db.refresh(unit)
    return unit.to_dict()


def update_unit(db: Session, user: User, subject_id: int, unit_id: int,
                changes: Dict[str, Any]) -> Dict[str, Any]:
    auth = AuthorizationService(db)
    subject = auth.get_subject(subject_id)
    unit = _get_unit(db, subject.id, unit_id)
    auth.check_subject_access(user, subject, Access.WRITE)
    if changes.get("title") is not None:
        if not changes["title"].strip():
            raise ValidationError("El título es requerido", "title")
        unit.title = changes["title"].strip()
    if "description" in changes:
        unit.description = changes["description"]
    if changes.get("is_published") is not None:
        unit.is_published = bool(changes["is_published"])
    db.commit()
    db.refresh(unit)
    return unit.to_dict()


def delete_unit(db: Session, user: User, subject_id: int, unit_id: int) -> None:
    auth = AuthorizationService(db)
    subject = auth.get_subject(subject_id)
    unit = _get_unit(db, subject.id, unit_id)
    auth.check_subject_access(user, subject, Access.WRITE)
    unit.is_active = False
    db.commit()


def reorder_units(db: Session, user: User, subject_id: int,
                  unit_ids: List[int]) -> List[Dict[str, Any]]:
    """
    The listed units get order_index 1..n in the given order. Ids that do
    not belong to the subject are ignored.
    """
    subject = AuthorizationService(db).subject_for(user, subject_id, Access.WRITE)
    units = {
        u.id: u
        for u in db.query(SubjectUnit).filter(SubjectUnit.subject_id == subject.id).all()
    }
    position = 0
    for unit_id in unit_ids:
        unit = units.get(unit_id)
        if unit is None:
            continue
        position += 1
        unit.order_index = position
    db.commit()
    return list_units(db, user, subject.id)


# ---------------- Content ----------------

def _content_dict(item: SubjectContent) -> Dict[str, Any]:
    original_type, body = unwrap_content(item.content_type, item.content)
    return {
        "id": item.id,
        "subject_id": item.subject_id,
        "unit_id": item.unit_id,
        "title": item.title,
        "content_type": original_type,
        "content_type_label": content_type_label(original_type),
        "content": body,
        "file_url": item.file_url,
        "is_public": item.is_public,
        "created_by": item.created_by,
        "created_at": item.created_at.isoformat() if item.created_at else None,
    }


def _get_content(db: Session, subject_id: int, content_id: int,
                 for_student: bool = False) -> SubjectContent:
    query = db.query(SubjectContent).filter(
        SubjectContent.id == content_id,
        SubjectContent.subject_id == subject_id,
        SubjectContent.is_active.is_(True),
    )
    if for_student:
        query = outside_hidden_units(query, SubjectContent.unit_id)
    item = query.first()
    if not item:
        raise NotFound("Contenido no encontrado")
    return item


def list_content(db: Session, user: User, subject_id: int,
                 unit_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Enrolled students, the owning teacher and admins see everything;
    students who are not enrolled only the public items. Students never see
    items of unpublished units.
    """
    auth = AuthorizationService(db)
    subject = auth.get_subject(subject_id)
    query = db.query(SubjectContent).filter(
        SubjectContent.subject_id == subject.id, SubjectContent.is_active.is_(True)
    )
    if unit_id is not None:
        query = query.filter(SubjectContent.unit_id == unit_id)
    if parse_role(user.role) is UserRole.STUDENT:
        query = outside_hidden_units(query, SubjectContent.unit_id)
    items = query.order_by(SubjectContent.created_at, SubjectContent.id).all()

    try:
        auth.check_subject_access(user, subject, Access.READ)
    except Forbidden:
        public = [i for i in items if i.is_public]
        if not public or parse_role(user.role) is not UserRole.STUDENT:
            raise
        return [_content_dict(i) for i in public]
    return [_content_dict(i) for i in items]


def get_content(db: Session, user: User, subject_id: int, content_id: int) -> Dict[str, Any]:
    auth = AuthorizationService(db)
    subject = auth.get_subject(subject_id)
    item = _get_content(db, subject.id, content_id,
                        for_student=parse_role(user.role) is UserRole.STUDENT)
    auth.check_subject_access(user, subject, Access.READ, is_public=item.is_public)
    return _content_dict(item)


def create_content(db: Session, user: User, subject_id: int, title: str, content_type: str,
                   content: Optional[str] = None, unit_id: Optional[int] = None,
                   file_url: Optional[str] = None, is_public: bool = False) -> Dict[str, Any]:
    subject = AuthorizationService(db).subject_for(user, subject_id, Access.WRITE)
    if not title or not title.strip():
        raise ValidationError("El título es requerido", "title")
    if unit_id is not None:
        _get_unit(db, subject.id, unit_id)
    stored_type, stored_body = wrap_content(content_type, content)
    item = SubjectContent(
        subject_id=subject.id,
        unit_id=unit_id,
        title=title.strip(),
        content_type=stored_type,
        content=stored_body,
        file_url=file_url,
        is_public=is_public,
        created_by=user.id,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return _content_dict(item)


def update_content(db: Session, user: User, subject_id: int, content_id: int,
                   changes: Dict[str, Any]) -> Dict[str, Any]:
    auth = AuthorizationService(db)
    subject = auth.get_subject(subject_id)
    item = _get_content(db, subject.id, content_id)
    auth.check_subject_access(user, subject, Access.WRITE)
    current_type, current_body = unwrap_content(item.content_type, item.content)
    if changes.get("title") is not None:
        if not changes["title"].strip():
            raise ValidationError("El título es requerido", "title")
        item.title = changes["title"].strip()
    if changes.get("content_type") is not None or changes.get("content") is not None:
        item.content_type, item.content = wrap_content(
            changes.get("content_type") or current_type,
            changes["content"] if changes.get("content") is not None else current_body,
        )
    if "unit_id" in changes:
        if changes["unit_id"] is not None:
            _get_unit(db, subject_id, changes["unit_id"])
        item.unit_id = changes["unit_id"]
    if "file_url" in changes:
        item.file_url = changes["file_url"]
    if changes.get("is_public") is not None:
        item.is_public = bool(changes["is_public"])
    db.commit()
    db.refresh(item)
    return _content_dict(item)


def delete_content(db: Session, user: User, subject_id: int, content_id: int) -> None:
    auth = AuthorizationService(db)
    subject = auth.get_subject(subject_id)
    item = _get_content(db, subject.id, content_id)
    auth.check_subject_access(user, subject, Access.WRITE)
    item.is_active = False
    db.commit()
