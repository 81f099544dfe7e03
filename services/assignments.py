"""
Assignment and submission operations.

Assignments are nested under a subject, so every check walks up to the
subject. Submissions additionally go through the approval gate.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from database import (
    User, UserRole, Assignment, AssignmentSubmission, StudentSubject, SubjectUnit, utcnow
)
from .authorization import Access, AuthorizationService, parse_role
from .exceptions import Conflict, Forbidden, NotFound, ValidationError
from .sink import SideEffectSink
from .storage import ObjectStorage, get_storage

logger = logging.getLogger(__name__)

UPCOMING_DAYS = 14


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Stored datetimes are naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _get_assignment(db: Session, assignment_id: int) -> Assignment:
    assignment = (
        db.query(Assignment)
        .filter(Assignment.id == assignment_id, Assignment.is_active.is_(True))
        .first()
    )
    if not assignment:
        raise NotFound("Tarea no encontrada")
    return assignment


def _check_unit(db: Session, subject_id: int, unit_id: Optional[int]) -> None:
    if unit_id is None:
        return
    unit = (
        db.query(SubjectUnit.id)
        .filter(SubjectUnit.id == unit_id, SubjectUnit.subject_id == subject_id,
                SubjectUnit.is_active.is_(True))
        .first()
    )
    if not unit:
        raise ValidationError("La unidad no existe o no pertenece a esta materia", "unit_id")


def list_assignments(db: Session, user: User, subject_id: int) -> List[Dict[str, Any]]:
    subject = AuthorizationService(db).subject_for(user, subject_id, Access.READ)
    assignments = (
        db.query(Assignment)
        .filter(Assignment.subject_id == subject.id, Assignment.is_active.is_(True))
        .order_by(Assignment.due_date.is_(None), Assignment.due_date, Assignment.id)
        .all()
    )
    return [a.to_dict() for a in assignments]


def get_assignment(db: Session, user: User, assignment_id: int) -> Dict[str, Any]:
    auth = AuthorizationService(db)
    assignment = _get_assignment(db, assignment_id)
    auth.subject_for(user, assignment.subject_id, Access.READ)
    return assignment.to_dict()


def create_assignment(db: Session, user: User, subject_id: int, title: str,
                      description: Optional[str] = None, due_date: Optional[datetime] = None,
                      max_score: float = 10, unit_id: Optional[int] = None,
                      sink: SideEffectSink = None) -> Dict[str, Any]:
    """
    Create an assignment and notify the enrolled students.

    Raises:
        NotFound / Forbidden: subject filter
        ValidationError: missing title, bad max_score, unit outside the subject
    """
    subject = AuthorizationService(db).subject_for(user, subject_id, Access.WRITE)
    if not title or not title.strip():
        raise ValidationError("El título es requerido", "title")
    if max_score is None or max_score <= 0:
        raise ValidationError("El puntaje máximo debe ser mayor a 0", "max_score")
    _check_unit(db, subject.id, unit_id)

    assignment = Assignment(
        subject_id=subject.id,
        unit_id=unit_id,
        title=title.strip(),
        description=description,
        due_date=_naive_utc(due_date),
        max_score=max_score,
        created_by=user.id,
    )
    db.add(assignment)
    db.commit()
    db.refresh(assignment)

    students = (
        db.query(StudentSubject.student_id)
        .filter(StudentSubject.subject_id == subject.id, StudentSubject.is_active.is_(True))
        .all()
    )
    sink = sink or SideEffectSink()
    for (student_id,) in students:
        sink.notify(student_id, "Nueva tarea",
                    f"Se publicó la tarea \"{assignment.title}\" en {subject.name}.",
                    type="assignment", sender_id=user.id,
                    action_url=f"/campus/subjects/{subject.id}/assignments/{assignment.id}")
    return assignment.to_dict()


def update_assignment(db: Session, user: User, assignment_id: int,
                      changes: Dict[str, Any]) -> Dict[str, Any]:
    auth = AuthorizationService(db)
    assignment = _get_assignment(db, assignment_id)
    auth.subject_for(user, assignment.subject_id, Access.WRITE)

    if changes.get("title") is not None:
        if not changes["title"].strip():
            raise ValidationError("El título es requerido", "title")
        assignment.title = changes["title"].strip()
    if "description" in changes:
        assignment.description = changes["description"]
    if "due_date" in changes:
        assignment.due_date = _naive_utc(changes["due_date"])
    if changes.get("max_score") is not None:
        if changes["max_score"] <= 0:
            raise ValidationError("El puntaje máximo debe ser mayor a 0", "max_score")
        assignment.max_score = changes["max_score"]
    if "unit_id" in changes:
        _check_unit(db, assignment.subject_id, changes["unit_id"])
        assignment.unit_id = changes["unit_id"]
    db.commit()
    db.refresh(assignment)
    return assignment.to_dict()


def delete_assignment(db: Session, user: User, assignment_id: int) -> None:
    auth = AuthorizationService(db)
    assignment = _get_assignment(db, assignment_id)
    auth.subject_for(user, assignment.subject_id, Access.WRITE)
    assignment.is_active = False
    db.commit()


def upcoming_assignments(db: Session, student: User, now: datetime = None) -> List[Dict[str, Any]]:
    """Assignments of the enrolled subjects due in the next UPCOMING_DAYS, not yet submitted."""
    now = now or utcnow()
    submitted = db.query(AssignmentSubmission.assignment_id).filter(
        AssignmentSubmission.student_id == student.id
    )
    assignments = (
        db.query(Assignment)
        .join(StudentSubject, StudentSubject.subject_id == Assignment.subject_id)
        .filter(
            StudentSubject.student_id == student.id,
            StudentSubject.is_active.is_(True),
            Assignment.is_active.is_(True),
            Assignment.due_date >= now,
            Assignment.due_date <= now + timedelta(days=UPCOMING_DAYS),
            ~Assignment.id.in_(submitted),
        )
        .order_by(Assignment.due_date)
        .all()
    )
    return [a.to_dict() for a in assignments]


# ---------------- Submissions ----------------

def submit_assignment(
    db: Session,
    user: User,
    assignment_id: int,
    submission_text: Optional[str] = None,
    file_name: Optional[str] = None,
    data: Optional[bytes] = None,
    mime_type: Optional[str] = None,
    storage: ObjectStorage = None,
    sink: SideEffectSink = None,
) -> Dict[str, Any]:
    """
    Hand in an assignment. Only students submit.

    Raises:
        NotFound: assignment or subject
        AccountPending / AccountRejected: student not approved
        Forbidden: not a student, or not enrolled
        ValidationError: nothing to submit
        Conflict: already submitted
    """
    auth = AuthorizationService(db)
    assignment = _get_assignment(db, assignment_id)
    subject = auth.get_subject(assignment.subject_id)
    if parse_role(user.role) is not UserRole.STUDENT:
        raise Forbidden("Solo los estudiantes pueden entregar tareas", user_id=user.id,
                        action="submit_assignment")
    auth.check_subject_access(user, subject, Access.WRITE)

    has_text = bool(submission_text and submission_text.strip())
    if not has_text and not data:
        raise ValidationError("Debés incluir un texto o un archivo", "submission_text")

    existing = (
        db.query(AssignmentSubmission.id)
        .filter(AssignmentSubmission.assignment_id == assignment.id,
                AssignmentSubmission.student_id == user.id)
        .first()
    )
    if existing:
        raise Conflict("Ya entregaste esta tarea")

    submission = AssignmentSubmission(
        assignment_id=assignment.id,
        student_id=user.id,
        submission_text=submission_text.strip() if has_text else None,
    )
    if data:
        stored = (storage or get_storage()).upload("submissions", user.id, file_name, data, mime_type)
        submission.file_url = stored.url
        submission.file_name = stored.file_name
    db.add(submission)
    db.commit()
    db.refresh(submission)

    if subject.teacher_id:
        (sink or SideEffectSink()).notify(
            subject.teacher_id, "Nueva entrega",
            f"{user.name} entregó \"{assignment.title}\".",
            type="submission", sender_id=user.id,
            action_url=f"/campus/assignments/{assignment.id}/submissions",
        )
    logger.info("Submission %s for assignment %s by user %s", submission.id, assignment.id, user.id)
    return submission.to_dict()


def list_submissions(db: Session, user: User, assignment_id: int) -> List[Dict[str, Any]]:
    """Teacher of the subject or admin."""
    auth = AuthorizationService(db)
    assignment = _get_assignment(db, assignment_id)
    subject = auth.get_subject(assignment.subject_id)
    if not auth.owns_subject(user, subject):
        raise Forbidden("No tienes permisos para ver las entregas de esta tarea",
                        user_id=user.id, action="list_submissions")
    submissions = (
        db.query(AssignmentSubmission)
        .filter(AssignmentSubmission.assignment_id == assignment.id)
        .order_by(AssignmentSubmission.submitted_at)
        .all()
    )
    return [s.to_dict() for s in submissions]


def my_submissions(db: Session, student: User) -> List[Dict[str, Any]]:
    rows = (
        db.query(AssignmentSubmission)
        .filter(AssignmentSubmission.student_id == student.id)
        .order_by(AssignmentSubmission.submitted_at.desc())
        .all()
    )
    result = []
    for submission in rows:
        item = submission.to_dict()
        item["assignment"] = submission.assignment.to_dict() if submission.assignment else None
        result.append(item)
    return result


def grade_submission(db: Session, user: User, submission_id: int, score: float,
                     feedback: Optional[str] = None,
                     sink: SideEffectSink = None) -> Dict[str, Any]:
    """
    Raises:
        NotFound: submission
        Forbidden: not the subject's teacher or admin
        ValidationError: score outside 0..max_score
    """
    auth = AuthorizationService(db)
    submission = db.query(AssignmentSubmission).filter(AssignmentSubmission.id == submission_id).first()
    if not submission:
        raise NotFound("Entrega no encontrada")
    assignment = _get_assignment(db, submission.assignment_id)
    subject = auth.get_subject(assignment.subject_id)
    if not auth.owns_subject(user, subject):
        raise Forbidden("No tienes permisos para calificar esta entrega",
                        user_id=user.id, action="grade_submission")
    if score is None or score < 0 or score > assignment.max_score:
        raise ValidationError(f"La nota debe estar entre 0 y {assignment.max_score:g}", "score")

    submission.score = score
    submission.feedback = feedback
    submission.status = "graded"
    submission.graded_by = user.id
    submission.graded_at = utcnow()
    db.commit()
    db.refresh(submission)

    (sink or SideEffectSink()).notify(
        submission.student_id, "Tarea calificada",
        f"Tu entrega de \"{assignment.title}\" fue calificada: {score:g}/{assignment.max_score:g}.",
        type="grade", sender_id=user.id,
        action_url=f"/campus/assignments/{assignment.id}",
    )
    return submission.to_dict()
