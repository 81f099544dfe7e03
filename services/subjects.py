"""
Subject tools: role-scoped listings, admin CRUD, teacher views and
enrollment.
"""
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from database import (
    User, UserRole, Subject, StudentSubject, SubjectUnit, Assignment,
    AssignmentSubmission
)
from .authorization import Access, AuthorizationService, parse_role
from .divisions import validate_year_division
from .exceptions import Conflict, NotFound, ValidationError
from .sink import AuditAction, SideEffectSink


def _active_subjects(db: Session):
    return db.query(Subject).filter(Subject.is_active.is_(True))


def list_subjects_for(db: Session, user: User) -> List[Dict[str, Any]]:
    """
    Admin sees every subject, a teacher their own, a student the enrolled
    ones. Other roles see nothing.
    """
    role = parse_role(user.role)
    query = _active_subjects(db)
    if role is UserRole.ADMIN:
        pass
    elif role is UserRole.TEACHER:
        query = query.filter(Subject.teacher_id == user.id)
    elif role is UserRole.STUDENT:
        query = query.join(StudentSubject, StudentSubject.subject_id == Subject.id).filter(
            StudentSubject.student_id == user.id,
            StudentSubject.is_active.is_(True),
        )
    else:
        return []
    subjects = query.order_by(Subject.year, Subject.name).all()
    return [s.to_dict() for s in subjects]


def get_subject_detail(db: Session, user: User, subject_id: int) -> Dict[str, Any]:
    auth = AuthorizationService(db)
    subject = auth.subject_for(user, subject_id, Access.READ)
    return subject.to_dict()


# ---------------- Admin CRUD ----------------

def _validate_teacher(db: Session, teacher_id: Optional[int]) -> Optional[int]:
    if teacher_id is None:
        return None
    teacher = db.query(User).filter(User.id == teacher_id, User.is_active.is_(True)).first()
    if not teacher or teacher.role != UserRole.TEACHER.value:
        raise ValidationError("El profesor asignado no existe o no es profesor", "teacher_id")
    return teacher.id


def create_subject(db: Session, admin: User, name: str, code: str, year: int,
                   division: Optional[str] = None, description: Optional[str] = None,
                   credits: Optional[int] = None, teacher_id: Optional[int] = None,
                   image_url: Optional[str] = None,
                   sink: SideEffectSink = None) -> Dict[str, Any]:
    """
    Raises:
        ValidationError: missing fields, bad year/division, bad teacher
        Conflict: duplicate code
    """
    if not name or not name.strip():
        raise ValidationError("El nombre es requerido", "name")
    code = (code or "").strip().upper()
    if not code:
        raise ValidationError("El código es requerido", "code")
    division = validate_year_division(year, division)
    if db.query(Subject.id).filter(Subject.code == code).first():
        raise Conflict("Ya existe una materia con este código", "code")

    subject = Subject(
        name=name.strip(),
        code=code,
        year=year,
        division=division,
        description=description,
        credits=credits,
        image_url=image_url,
        teacher_id=_validate_teacher(db, teacher_id),
    )
    db.add(subject)
    db.commit()
    db.refresh(subject)

    sink = sink or SideEffectSink()
    sink.audit(AuditAction.ADMIN_ACTION, user_id=admin.id,
               details={"action": "create_subject", "subject_id": subject.id})
    if subject.teacher_id:
        sink.notify(subject.teacher_id, "Nueva materia asignada",
                    f"Se te asignó la materia {subject.name}.", sender_id=admin.id,
                    action_url=f"/campus/subjects/{subject.id}")
    return subject.to_dict()


def update_subject(db: Session, admin: User, subject_id: int, changes: Dict[str, Any],
                   sink: SideEffectSink = None) -> Dict[str, Any]:
    subject = AuthorizationService(db).get_subject(subject_id)
    previous_teacher = subject.teacher_id

    if changes.get("name") is not None:
        if not changes["name"].strip():
            raise ValidationError("El nombre es requerido", "name")
        subject.name = changes["name"].strip()
    if changes.get("code") is not None:
        code = changes["code"].strip().upper()
        clash = db.query(Subject.id).filter(Subject.code == code, Subject.id != subject.id).first()
        if clash:
            raise Conflict("Ya existe una materia con este código", "code")
        subject.code = code
    if changes.get("year") is not None or "division" in changes:
        year = changes.get("year") or subject.year
        subject.division = validate_year_division(year, changes.get("division", subject.division))
        subject.year = year
    for field in ("description", "credits", "image_url"):
        if changes.get(field) is not None:
            setattr(subject, field, changes[field])
    if "teacher_id" in changes:
        subject.teacher_id = _validate_teacher(db, changes["teacher_id"])
    db.commit()
    db.refresh(subject)

    sink = sink or SideEffectSink()
    sink.audit(AuditAction.ADMIN_ACTION, user_id=admin.id,
               details={"action": "update_subject", "subject_id": subject.id})
    if subject.teacher_id and subject.teacher_id != previous_teacher:
        sink.notify(subject.teacher_id, "Nueva materia asignada",
                    f"Se te asignó la materia {subject.name}.", sender_id=admin.id,
                    action_url=f"/campus/subjects/{subject.id}")
    return subject.to_dict()


def delete_subject(db: Session, admin: User, subject_id: int,
                   sink: SideEffectSink = None) -> None:
    subject = AuthorizationService(db).get_subject(subject_id)
    subject.is_active = False
    db.commit()
    (sink or SideEffectSink()).audit(AuditAction.ADMIN_ACTION, user_id=admin.id,
                                     details={"action": "delete_subject", "subject_id": subject_id})


# ---------------- Enrollment ----------------

def upsert_enrollments(db: Session, student_id: int, subject_ids: Iterable[int]) -> int:
    """
    Insert missing (student, subject) links, leaving existing rows untouched.

    Returns:
        Number of links created
    """
    wanted = set(subject_ids)
    if not wanted:
        return 0
    existing = {
        row[0]
        for row in db.query(StudentSubject.subject_id)
        .filter(StudentSubject.student_id == student_id, StudentSubject.subject_id.in_(wanted))
        .all()
    }
    created = 0
    for subject_id in sorted(wanted - existing):
        db.add(StudentSubject(student_id=student_id, subject_id=subject_id))
        created += 1
    db.commit()
    return created


def enroll_in_year(db: Session, student: User) -> Dict[str, Any]:
    """
    Enroll an approved student in every active subject of their year.
    Subjects with a division only take students from that division.
    """
    AuthorizationService(db).enforce_approved(student, action="enroll")
    if student.year is None:
        raise ValidationError("Tu perfil no tiene un año asignado", "year")
    subjects = (
        _active_subjects(db)
        .filter(Subject.year == student.year)
        .filter(or_(Subject.division.is_(None), Subject.division == student.division))
        .all()
    )
    subject_ids = [s.id for s in subjects]
    created = upsert_enrollments(db, student.id, subject_ids)
    return {
        "enrolled": len(subject_ids),
        "created": created,
        "message": f"Inscrito exitosamente en {len(subject_ids)} materias",
    }


def list_enrollments(db: Session, student: User) -> List[Dict[str, Any]]:
    rows = (
        db.query(StudentSubject, Subject)
        .join(Subject, StudentSubject.subject_id == Subject.id)
        .filter(StudentSubject.student_id == student.id,
                StudentSubject.is_active.is_(True),
                Subject.is_active.is_(True))
        .order_by(Subject.name)
        .all()
    )
    return [
        {"id": link.id, "enrolled_at": link.enrolled_at.isoformat(), "subject": subject.to_dict()}
        for link, subject in rows
    ]


def assign_students(db: Session, admin: User, subject_id: int, student_ids: List[int],
                    sink: SideEffectSink = None) -> Dict[str, Any]:
    """Admin enrollment of a batch of students into one subject."""
    subject = AuthorizationService(db).get_subject(subject_id)
    students = (
        db.query(User.id)
        .filter(User.id.in_(student_ids), User.role == UserRole.STUDENT.value)
        .all()
    )
    found = {row[0] for row in students}
    missing = sorted(set(student_ids) - found)
    if missing:
        raise ValidationError(f"Estudiantes no encontrados: {missing}", "student_ids")
    created = 0
    for student_id in sorted(found):
        created += upsert_enrollments(db, student_id, [subject.id])
    (sink or SideEffectSink()).audit(
        AuditAction.ADMIN_ACTION, user_id=admin.id,
        details={"action": "assign_students", "subject_id": subject.id, "created": created},
    )
    return {"subject_id": subject.id, "assigned": len(found), "created": created}


def unenroll_student(db: Session, admin: User, subject_id: int, student_id: int) -> None:
    link = (
        db.query(StudentSubject)
        .filter(StudentSubject.subject_id == subject_id, StudentSubject.student_id == student_id)
        .first()
    )
    if not link:
        raise NotFound("Inscripción no encontrada")
    link.is_active = False
    db.commit()


# ---------------- Teacher views ----------------

def subject_students(db: Session, user: User, subject_id: int) -> List[Dict[str, Any]]:
    subject = AuthorizationService(db).subject_for(user, subject_id, Access.WRITE)
    students = (
        db.query(User)
        .join(StudentSubject, StudentSubject.student_id == User.id)
        .filter(StudentSubject.subject_id == subject.id,
                StudentSubject.is_active.is_(True),
                User.is_active.is_(True))
        .order_by(User.name)
        .all()
    )
    return [s.to_dict() for s in students]


def subject_stats(db: Session, user: User, subject_id: int) -> Dict[str, Any]:
    subject = AuthorizationService(db).subject_for(user, subject_id, Access.WRITE)
    students = (
        db.query(func.count(StudentSubject.id))
        .filter(StudentSubject.subject_id == subject.id, StudentSubject.is_active.is_(True))
        .scalar()
    )
    units = (
        db.query(func.count(SubjectUnit.id))
        .filter(SubjectUnit.subject_id == subject.id, SubjectUnit.is_active.is_(True))
        .scalar()
    )
    assignments = (
        db.query(func.count(Assignment.id))
        .filter(Assignment.subject_id == subject.id, Assignment.is_active.is_(True))
        .scalar()
    )
    pending = (
        db.query(func.count(AssignmentSubmission.id))
        .join(Assignment, AssignmentSubmission.assignment_id == Assignment.id)
        .filter(Assignment.subject_id == subject.id,
                Assignment.is_active.is_(True),
                AssignmentSubmission.status == "submitted")
        .scalar()
    )
    return {
        "subject_id": subject.id,
        "students": students,
        "units": units,
        "assignments": assignments,
        "pending_submissions": pending,
    }
