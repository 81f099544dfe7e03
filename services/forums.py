"""
Forum tools: forums per subject, questions and answers.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from database import (
    User, UserRole, Subject, StudentSubject, SubjectUnit, Forum, ForumQuestion, ForumAnswer
)
from .authorization import Access, AuthorizationService, parse_role
from .exceptions import Forbidden, NotFound, ValidationError
from .sink import SideEffectSink

FORUM_CREATE_DENIED = "No tienes permiso para crear foros en esta materia"
FORUM_MANAGE_DENIED = "No tienes permiso para gestionar este foro"
MIN_TITLE_LENGTH = 5
MIN_CONTENT_LENGTH = 10


def _get_forum(db: Session, forum_id: int) -> Forum:
    forum = db.query(Forum).filter(Forum.id == forum_id, Forum.is_active.is_(True)).first()
    if not forum:
        raise NotFound("Foro no encontrado")
    return forum


def _get_question(db: Session, question_id: int) -> ForumQuestion:
    question = (
        db.query(ForumQuestion)
        .filter(ForumQuestion.id == question_id, ForumQuestion.is_active.is_(True))
        .first()
    )
    if not question:
        raise NotFound("Pregunta no encontrada")
    return question


def _forum_dict(db: Session, forum: Forum) -> Dict[str, Any]:
    data = forum.to_dict()
    data["question_count"] = (
        db.query(func.count(ForumQuestion.id))
        .filter(ForumQuestion.forum_id == forum.id, ForumQuestion.is_active.is_(True))
        .scalar()
    )
    return data


# ---------------- Forums ----------------

def list_forums(db: Session, user: User, subject_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """
    Students see the forums of their enrolled subjects, teachers those of
    their own subjects, admin all of them.
    """
    query = (
        db.query(Forum)
        .join(Subject, Subject.id == Forum.subject_id)
        .filter(Forum.is_active.is_(True), Subject.is_active.is_(True))
    )
    if subject_id is not None:
        AuthorizationService(db).subject_for(user, subject_id, Access.READ)
        query = query.filter(Forum.subject_id == subject_id)

    role = parse_role(user.role)
    if role is UserRole.ADMIN:
        pass
    elif role is UserRole.TEACHER:
        query = query.filter(Subject.teacher_id == user.id)
    elif role is UserRole.STUDENT:
        query = query.join(StudentSubject, StudentSubject.subject_id == Subject.id).filter(
            StudentSubject.student_id == user.id, StudentSubject.is_active.is_(True)
        )
    else:
        return []
    forums = query.order_by(Forum.created_at.desc(), Forum.id.desc()).all()
    return [_forum_dict(db, f) for f in forums]


def create_forum(db: Session, user: User, subject_id: int, title: str,
                 description: Optional[str] = None, unit_id: Optional[int] = None,
                 allow_student_answers: bool = True,
                 require_approval: bool = False) -> Dict[str, Any]:
    """
    Raises:
        NotFound: subject
        Forbidden: not the subject's teacher (or admin)
        ValidationError: missing title, unit outside the subject
    """
    subject = AuthorizationService(db).subject_for(user, subject_id, Access.WRITE,
                                                   message=FORUM_CREATE_DENIED)
    if parse_role(user.role) is UserRole.STUDENT:
        raise Forbidden(FORUM_CREATE_DENIED, user_id=user.id, action="create_forum")
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

    forum = Forum(
        subject_id=subject.id,
        unit_id=unit_id,
        title=title.strip(),
        description=description,
        created_by=user.id,
        allow_student_answers=allow_student_answers,
        require_approval=require_approval,
    )
    db.add(forum)
    db.commit()
    db.refresh(forum)
    return _forum_dict(db, forum)


def _manageable_forum(db: Session, user: User, forum_id: int) -> Forum:
    auth = AuthorizationService(db)
    forum = _get_forum(db, forum_id)
    subject = auth.get_subject(forum.subject_id)
    if not auth.owns_subject(user, subject):
        raise Forbidden(FORUM_MANAGE_DENIED, user_id=user.id, action="manage_forum")
    return forum


def update_forum(db: Session, user: User, forum_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
    forum = _manageable_forum(db, user, forum_id)
    if changes.get("title") is not None:
        if not changes["title"].strip():
            raise ValidationError("El título es requerido", "title")
        forum.title = changes["title"].strip()
    if "description" in changes:
        forum.description = changes["description"]
    for flag in ("allow_student_answers", "require_approval"):
        if changes.get(flag) is not None:
            setattr(forum, flag, bool(changes[flag]))
    db.commit()
    db.refresh(forum)
    return _forum_dict(db, forum)


def delete_forum(db: Session, user: User, forum_id: int) -> None:
    forum = _manageable_forum(db, user, forum_id)
    forum.is_active = False
    db.commit()


# ---------------- Questions ----------------

def list_questions(db: Session, user: User, forum_id: int) -> List[Dict[str, Any]]:
    forum = _get_forum(db, forum_id)
    AuthorizationService(db).subject_for(user, forum.subject_id, Access.READ)
    questions = (
        db.query(ForumQuestion)
        .filter(ForumQuestion.forum_id == forum.id, ForumQuestion.is_active.is_(True))
        .order_by(ForumQuestion.created_at.desc(), ForumQuestion.id.desc())
        .all()
    )
    result = []
    for question in questions:
        item = question.to_dict()
        item["answer_count"] = (
            db.query(func.count(ForumAnswer.id))
            .filter(ForumAnswer.question_id == question.id, ForumAnswer.is_active.is_(True))
            .scalar()
        )
        result.append(item)
    return result


def ask_question(db: Session, user: User, forum_id: int, title: str, content: str,
                 sink: SideEffectSink = None) -> Dict[str, Any]:
    """
    Raises:
        NotFound: forum or subject
        Forbidden / AccountPending / AccountRejected: write filter
        ValidationError: title or content too short
    """
    forum = _get_forum(db, forum_id)
    subject = AuthorizationService(db).subject_for(user, forum.subject_id, Access.WRITE)
    title = (title or "").strip()
    content = (content or "").strip()
    if len(title) < MIN_TITLE_LENGTH:
        raise ValidationError(f"El título debe tener al menos {MIN_TITLE_LENGTH} caracteres", "title")
    if len(content) < MIN_CONTENT_LENGTH:
        raise ValidationError(
            f"El contenido debe tener al menos {MIN_CONTENT_LENGTH} caracteres", "content"
        )

    question = ForumQuestion(forum_id=forum.id, title=title, content=content, author_id=user.id)
    db.add(question)
    db.commit()
    db.refresh(question)

    if subject.teacher_id and subject.teacher_id != user.id:
        (sink or SideEffectSink()).notify(
            subject.teacher_id, "Nueva pregunta en el foro",
            f"{user.name} preguntó: {question.title}",
            type="forum", sender_id=user.id,
            action_url=f"/campus/forums/{forum.id}/questions/{question.id}",
        )
    return question.to_dict()


def get_question(db: Session, user: User, question_id: int) -> Dict[str, Any]:
    """Question with its answers, accepted answer first."""
    question = _get_question(db, question_id)
    forum = _get_forum(db, question.forum_id)
    AuthorizationService(db).subject_for(user, forum.subject_id, Access.READ)
    answers = (
        db.query(ForumAnswer)
        .filter(ForumAnswer.question_id == question.id, ForumAnswer.is_active.is_(True))
        .order_by(ForumAnswer.is_accepted.desc(), ForumAnswer.created_at, ForumAnswer.id)
        .all()
    )
    data = question.to_dict()
    data["answers"] = [a.to_dict() for a in answers]
    return data


def answer_question(db: Session, user: User, question_id: int, content: str,
                    sink: SideEffectSink = None) -> Dict[str, Any]:
    """
    Raises:
        NotFound: question, forum or subject
        Forbidden: write filter, then locked question or teacher-only forum
        ValidationError: empty content
    """
    auth = AuthorizationService(db)
    question = _get_question(db, question_id)
    forum = _get_forum(db, question.forum_id)
    subject = auth.get_subject(forum.subject_id)
    auth.check_subject_access(user, subject, Access.WRITE)
    if question.is_locked:
        raise Forbidden("Esta pregunta no acepta más respuestas", user_id=user.id,
                        action="answer_question")

    role = parse_role(user.role)
    if role is UserRole.STUDENT and not forum.allow_student_answers:
        raise Forbidden("Solo el profesor puede responder en este foro", user_id=user.id,
                        action="answer_question")

    content = (content or "").strip()
    if not content:
        raise ValidationError("El contenido es requerido", "content")

    answer = ForumAnswer(
        question_id=question.id,
        content=content,
        author_id=user.id,
        is_teacher_answer=role in (UserRole.TEACHER, UserRole.ADMIN),
    )
    db.add(answer)
    db.commit()
    db.refresh(answer)

    if question.author_id and question.author_id != user.id:
        (sink or SideEffectSink()).notify(
            question.author_id, "Nueva respuesta",
            f"{user.name} respondió tu pregunta \"{question.title}\".",
            type="forum", sender_id=user.id,
            action_url=f"/campus/forums/{forum.id}/questions/{question.id}",
        )
    return answer.to_dict()


def _moderated_question(db: Session, user: User, question_id: int) -> ForumQuestion:
    auth = AuthorizationService(db)
    question = _get_question(db, question_id)
    forum = _get_forum(db, question.forum_id)
    subject = auth.get_subject(forum.subject_id)
    if not auth.owns_subject(user, subject):
        raise Forbidden(FORUM_MANAGE_DENIED, user_id=user.id, action="moderate_question")
    return question


def set_question_locked(db: Session, user: User, question_id: int, locked: bool) -> Dict[str, Any]:
    question = _moderated_question(db, user, question_id)
    question.is_locked = bool(locked)
    db.commit()
    db.refresh(question)
    return question.to_dict()


def accept_answer(db: Session, user: User, question_id: int, answer_id: int,
                  sink: SideEffectSink = None) -> Dict[str, Any]:
    """Mark one answer accepted; any previously accepted answer is cleared."""
    question = _moderated_question(db, user, question_id)
    answer = (
        db.query(ForumAnswer)
        .filter(ForumAnswer.id == answer_id, ForumAnswer.question_id == question.id,
                ForumAnswer.is_active.is_(True))
        .first()
    )
    if not answer:
        raise NotFound("Respuesta no encontrada")
    (
        db.query(ForumAnswer)
        .filter(ForumAnswer.question_id == question.id, ForumAnswer.id != answer.id)
        .update({ForumAnswer.is_accepted: False}, synchronize_session=False)
    )
    answer.is_accepted = True
    question.is_resolved = True
    db.commit()
    db.refresh(answer)

    if answer.author_id and answer.author_id != user.id:
        (sink or SideEffectSink()).notify(
            answer.author_id, "Respuesta aceptada",
            f"Tu respuesta a \"{question.title}\" fue marcada como aceptada.",
            type="forum", sender_id=user.id,
        )
    return answer.to_dict()
