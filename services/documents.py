"""
Subject document operations. The file goes to object storage, the row keeps the
URL and metadata.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from database import User, UserRole, Document, SubjectUnit
from .authorization import Access, AuthorizationService, parse_role
from .exceptions import Forbidden, NotFound, ValidationError
from .storage import ObjectStorage, get_storage
from .units import outside_hidden_units


def list_documents(db: Session, user: User, subject_id: int,
                   unit_id: Optional[int] = None) -> List[Dict[str, Any]]:
    auth = AuthorizationService(db)
    subject = auth.get_subject(subject_id)
    query = db.query(Document).filter(Document.subject_id == subject.id,
                                      Document.is_active.is_(True))
    if unit_id is not None:
        query = query.filter(Document.unit_id == unit_id)
    if parse_role(user.role) is UserRole.STUDENT:
        query = outside_hidden_units(query, Document.unit_id)
    documents = query.order_by(Document.created_at.desc(), Document.id.desc()).all()
    try:
        auth.check_subject_access(user, subject, Access.READ)
    except Forbidden:
        if parse_role(user.role) is not UserRole.STUDENT:
            raise
        public = [d for d in documents if d.is_public]
        if not public:
            raise
        documents = public
    return [d.to_dict() for d in documents]


def upload_document(
    db: Session,
    user: User,
    subject_id: int,
    title: str,
    file_name: str,
    data: bytes,
    mime_type: Optional[str] = None,
    description: Optional[str] = None,
    unit_id: Optional[int] = None,
    is_public: bool = False,
    storage: ObjectStorage = None,
) -> Dict[str, Any]:
    """
    Raises:
        NotFound / Forbidden: subject filter
        ValidationError: missing title, unit outside the subject, bad file
    """
    subject = AuthorizationService(db).subject_for(user, subject_id, Access.WRITE)
    if not title or not title.strip():
        raise ValidationError("El título es requerido", "title")
    if unit_id is not None:
        unit = (
            db.query(SubjectUnit.id)
            .filter(SubjectUnit.id == unit_id, SubjectUnit.subject_id == subject.id)
            .first()
        )
        if not unit:
            raise ValidationError("La unidad no existe o no pertenece a esta materia", "unit_id")

    stored = (storage or get_storage()).upload("documents", subject.id, file_name, data, mime_type)
    document = Document(
        subject_id=subject.id,
        unit_id=unit_id,
        title=title.strip(),
        description=description,
        file_url=stored.url,
        file_name=stored.file_name,
        file_size=stored.size,
        mime_type=mime_type,
        is_public=is_public,
        uploaded_by=user.id,
    )
    db.add(document)
    db.commit()
    db.refresh(document)
    return document.to_dict()


def delete_document(db: Session, user: User, subject_id: int, document_id: int) -> None:
    auth = AuthorizationService(db)
    subject = auth.get_subject(subject_id)
    document = (
        db.query(Document)
        .filter(Document.id == document_id, Document.subject_id == subject.id,
                Document.is_active.is_(True))
        .first()
    )
    if not document:
        raise NotFound("Documento no encontrado")
    auth.check_subject_access(user, subject, Access.WRITE)
    document.is_active = False
    db.commit()
