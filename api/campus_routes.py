"""
API routes for the academic side of the campus: subjects, units, content,
documents, assignments, submissions, forums and the calendar.
"""
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from database import get_db, User
from services import assignments, calendar, documents, forums, subjects, units
from services.sink import SideEffectSink
from .deps import get_current_user, get_sink, require_student, require_teacher
from .schemas import (
    ok,
    SuccessResponse,
    UnitCreateRequest,
    UnitUpdateRequest,
    UnitReorderRequest,
    ContentCreateRequest,
    ContentUpdateRequest,
    AssignmentCreateRequest,
    AssignmentUpdateRequest,
    GradeRequest,
    ForumCreateRequest,
    ForumUpdateRequest,
    QuestionCreateRequest,
    AnswerCreateRequest,
    LockRequest,
    EventCreateRequest,
    EventUpdateRequest,
)


# Router for subjects and everything nested under them
subjects_router = APIRouter(prefix="/api/subjects", tags=["Subjects"])

# Router for assignments and submissions
assignments_router = APIRouter(prefix="/api/assignments", tags=["Assignments"])

# Router for student pages
student_router = APIRouter(prefix="/api/student", tags=["Student"])

# Router for teacher pages
teacher_router = APIRouter(prefix="/api/teacher", tags=["Teacher"])

# Router for forums
forums_router = APIRouter(prefix="/api/forums", tags=["Forums"])

# Router for calendar events
calendar_router = APIRouter(prefix="/api/calendar", tags=["Calendar"])


# ============== Subjects ==============

@subjects_router.get("", response_model=SuccessResponse)
def list_subjects(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Subjects visible to the caller's role."""
    return ok(subjects.list_subjects_for(db, user))


@subjects_router.get("/{subject_id}", response_model=SuccessResponse)
def get_subject(subject_id: int, user: User = Depends(get_current_user),
                db: Session = Depends(get_db)):
    return ok(subjects.get_subject_detail(db, user, subject_id))


# ============== Units ==============

@subjects_router.get("/{subject_id}/units", response_model=SuccessResponse)
def list_units(subject_id: int, user: User = Depends(get_current_user),
               db: Session = Depends(get_db)):
    return ok(units.list_units(db, user, subject_id))


@subjects_router.post("/{subject_id}/units", response_model=SuccessResponse, status_code=201)
def create_unit(subject_id: int, body: UnitCreateRequest,
                user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    return ok(units.create_unit(db, user, subject_id, body.title, body.description,
                                body.is_published), "Unidad creada")


@subjects_router.put("/{subject_id}/units/reorder", response_model=SuccessResponse)
def reorder_units(subject_id: int, body: UnitReorderRequest,
                  user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    return ok(units.reorder_units(db, user, subject_id, body.unit_ids))


@subjects_router.put("/{subject_id}/units/{unit_id}", response_model=SuccessResponse)
def update_unit(subject_id: int, unit_id: int, body: UnitUpdateRequest,
                user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    return ok(units.update_unit(db, user, subject_id, unit_id,
                                body.model_dump(exclude_unset=True)), "Unidad actualizada")


@subjects_router.delete("/{subject_id}/units/{unit_id}", response_model=SuccessResponse)
def delete_unit(subject_id: int, unit_id: int,
                user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    units.delete_unit(db, user, subject_id, unit_id)
    return ok(message="Unidad eliminada")


# ============== Content ==============

@subjects_router.get("/{subject_id}/content", response_model=SuccessResponse)
def list_content(subject_id: int, unit_id: Optional[int] = None,
                 user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(units.list_content(db, user, subject_id, unit_id))


@subjects_router.get("/{subject_id}/content/{content_id}", response_model=SuccessResponse)
def get_content(subject_id: int, content_id: int,
                user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(units.get_content(db, user, subject_id, content_id))


@subjects_router.post("/{subject_id}/content", response_model=SuccessResponse, status_code=201)
def create_content(subject_id: int, body: ContentCreateRequest,
                   user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    item = units.create_content(db, user, subject_id, body.title, body.content_type,
                                content=body.content, unit_id=body.unit_id,
                                file_url=body.file_url, is_public=body.is_public)
    return ok(item, "Contenido creado")


@subjects_router.put("/{subject_id}/content/{content_id}", response_model=SuccessResponse)
def update_content(subject_id: int, content_id: int, body: ContentUpdateRequest,
                   user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    return ok(units.update_content(db, user, subject_id, content_id,
                                   body.model_dump(exclude_unset=True)), "Contenido actualizado")


@subjects_router.delete("/{subject_id}/content/{content_id}", response_model=SuccessResponse)
def delete_content(subject_id: int, content_id: int,
                   user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    units.delete_content(db, user, subject_id, content_id)
    return ok(message="Contenido eliminado")


# ============== Documents ==============

@subjects_router.get("/{subject_id}/documents", response_model=SuccessResponse)
def list_documents(subject_id: int, unit_id: Optional[int] = None,
                   user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(documents.list_documents(db, user, subject_id, unit_id))


@subjects_router.post("/{subject_id}/documents", response_model=SuccessResponse, status_code=201)
def upload_document(
    subject_id: int,
    title: str = Form(...),
    description: Optional[str] = Form(None),
    unit_id: Optional[int] = Form(None),
    is_public: bool = Form(False),
    file: UploadFile = File(...),
    user: User = Depends(require_teacher),
    db: Session = Depends(get_db),
):
    data = file.file.read()
    document = documents.upload_document(db, user, subject_id, title, file.filename, data,
                                         mime_type=file.content_type, description=description,
                                         unit_id=unit_id, is_public=is_public)
    return ok(document, "Documento subido")


@subjects_router.delete("/{subject_id}/documents/{document_id}", response_model=SuccessResponse)
def delete_document(subject_id: int, document_id: int,
                    user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    documents.delete_document(db, user, subject_id, document_id)
    return ok(message="Documento eliminado")


# ============== Assignments ==============

@subjects_router.get("/{subject_id}/assignments", response_model=SuccessResponse)
def list_assignments(subject_id: int, user: User = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    return ok(assignments.list_assignments(db, user, subject_id))


@subjects_router.post("/{subject_id}/assignments", response_model=SuccessResponse,
                      status_code=201)
def create_assignment(subject_id: int, body: AssignmentCreateRequest,
                      user: User = Depends(require_teacher), db: Session = Depends(get_db),
                      sink: SideEffectSink = Depends(get_sink)):
    assignment = assignments.create_assignment(db, user, subject_id, body.title,
                                               description=body.description,
                                               due_date=body.due_date,
                                               max_score=body.max_score,
                                               unit_id=body.unit_id, sink=sink)
    return ok(assignment, "Tarea creada")


@assignments_router.get("/{assignment_id}", response_model=SuccessResponse)
def get_assignment(assignment_id: int, user: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    return ok(assignments.get_assignment(db, user, assignment_id))


@assignments_router.put("/{assignment_id}", response_model=SuccessResponse)
def update_assignment(assignment_id: int, body: AssignmentUpdateRequest,
                      user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    return ok(assignments.update_assignment(db, user, assignment_id,
                                            body.model_dump(exclude_unset=True)),
              "Tarea actualizada")


@assignments_router.delete("/{assignment_id}", response_model=SuccessResponse)
def delete_assignment(assignment_id: int, user: User = Depends(require_teacher),
                      db: Session = Depends(get_db)):
    assignments.delete_assignment(db, user, assignment_id)
    return ok(message="Tarea eliminada")


@assignments_router.post("/{assignment_id}/submit", response_model=SuccessResponse,
                         status_code=201)
def submit_assignment(
    assignment_id: int,
    submission_text: Optional[str] = Form(None),
    file: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    sink: SideEffectSink = Depends(get_sink),
):
    """Students only; the approval gate applies."""
    data = file.file.read() if file is not None else None
    submission = assignments.submit_assignment(
        db, user, assignment_id,
        submission_text=submission_text,
        file_name=file.filename if file is not None else None,
        data=data,
        mime_type=file.content_type if file is not None else None,
        sink=sink,
    )
    return ok(submission, "Tarea entregada")


@assignments_router.get("/{assignment_id}/submissions", response_model=SuccessResponse)
def list_submissions(assignment_id: int, user: User = Depends(require_teacher),
                     db: Session = Depends(get_db)):
    return ok(assignments.list_submissions(db, user, assignment_id))


@assignments_router.put("/submissions/{submission_id}/grade", response_model=SuccessResponse)
def grade_submission(submission_id: int, body: GradeRequest,
                     user: User = Depends(require_teacher), db: Session = Depends(get_db),
                     sink: SideEffectSink = Depends(get_sink)):
    return ok(assignments.grade_submission(db, user, submission_id, body.score, body.feedback,
                                           sink=sink), "Entrega calificada")


# ============== Student pages ==============

@student_router.get("/subjects", response_model=SuccessResponse)
def student_subjects(user: User = Depends(require_student), db: Session = Depends(get_db)):
    return ok(subjects.list_enrollments(db, user))


@student_router.post("/enroll", response_model=SuccessResponse)
def enroll(user: User = Depends(require_student), db: Session = Depends(get_db)):
    result = subjects.enroll_in_year(db, user)
    return ok(result, result["message"])


@student_router.get("/assignments/upcoming", response_model=SuccessResponse)
def upcoming(user: User = Depends(require_student), db: Session = Depends(get_db)):
    return ok(assignments.upcoming_assignments(db, user))


@student_router.get("/submissions", response_model=SuccessResponse)
def my_submissions(user: User = Depends(require_student), db: Session = Depends(get_db)):
    return ok(assignments.my_submissions(db, user))


# ============== Teacher pages ==============

@teacher_router.get("/subjects", response_model=SuccessResponse)
def teacher_subjects(user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    return ok(subjects.list_subjects_for(db, user))


@teacher_router.get("/subjects/{subject_id}/students", response_model=SuccessResponse)
def teacher_subject_students(subject_id: int, user: User = Depends(require_teacher),
                             db: Session = Depends(get_db)):
    return ok(subjects.subject_students(db, user, subject_id))


@teacher_router.get("/subjects/{subject_id}/stats", response_model=SuccessResponse)
def teacher_subject_stats(subject_id: int, user: User = Depends(require_teacher),
                          db: Session = Depends(get_db)):
    return ok(subjects.subject_stats(db, user, subject_id))


# ============== Forums ==============

@forums_router.get("", response_model=SuccessResponse)
def list_forums(subject_id: Optional[int] = None, user: User = Depends(get_current_user),
                db: Session = Depends(get_db)):
    return ok(forums.list_forums(db, user, subject_id))


@subjects_router.post("/{subject_id}/forums", response_model=SuccessResponse, status_code=201)
def create_forum(subject_id: int, body: ForumCreateRequest,
                 user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    forum = forums.create_forum(db, user, subject_id, body.title, body.description,
                                body.unit_id, body.allow_student_answers, body.require_approval)
    return ok(forum, "Foro creado")


@forums_router.put("/{forum_id}", response_model=SuccessResponse)
def update_forum(forum_id: int, body: ForumUpdateRequest,
                 user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(forums.update_forum(db, user, forum_id, body.model_dump(exclude_unset=True)),
              "Foro actualizado")


@forums_router.delete("/{forum_id}", response_model=SuccessResponse)
def delete_forum(forum_id: int, user: User = Depends(get_current_user),
                 db: Session = Depends(get_db)):
    forums.delete_forum(db, user, forum_id)
    return ok(message="Foro eliminado")


@forums_router.get("/{forum_id}/questions", response_model=SuccessResponse)
def list_questions(forum_id: int, user: User = Depends(get_current_user),
                   db: Session = Depends(get_db)):
    return ok(forums.list_questions(db, user, forum_id))


@forums_router.post("/{forum_id}/questions", response_model=SuccessResponse, status_code=201)
def ask_question(forum_id: int, body: QuestionCreateRequest,
                 user: User = Depends(get_current_user), db: Session = Depends(get_db),
                 sink: SideEffectSink = Depends(get_sink)):
    return ok(forums.ask_question(db, user, forum_id, body.title, body.content, sink=sink),
              "Pregunta publicada")


@forums_router.get("/questions/{question_id}", response_model=SuccessResponse)
def get_question(question_id: int, user: User = Depends(get_current_user),
                 db: Session = Depends(get_db)):
    return ok(forums.get_question(db, user, question_id))


@forums_router.post("/questions/{question_id}/answers", response_model=SuccessResponse,
                    status_code=201)
def answer_question(question_id: int, body: AnswerCreateRequest,
                    user: User = Depends(get_current_user), db: Session = Depends(get_db),
                    sink: SideEffectSink = Depends(get_sink)):
    return ok(forums.answer_question(db, user, question_id, body.content, sink=sink),
              "Respuesta publicada")


@forums_router.put("/questions/{question_id}/lock", response_model=SuccessResponse)
def lock_question(question_id: int, body: LockRequest,
                  user: User = Depends(require_teacher), db: Session = Depends(get_db)):
    return ok(forums.set_question_locked(db, user, question_id, body.locked))


@forums_router.put("/questions/{question_id}/answers/{answer_id}/accept",
                   response_model=SuccessResponse)
def accept_answer(question_id: int, answer_id: int,
                  user: User = Depends(require_teacher), db: Session = Depends(get_db),
                  sink: SideEffectSink = Depends(get_sink)):
    return ok(forums.accept_answer(db, user, question_id, answer_id, sink=sink),
              "Respuesta aceptada")


# ============== Calendar ==============

@calendar_router.get("/events", response_model=SuccessResponse)
def list_events(year: Optional[int] = None, subject_id: Optional[int] = None,
                type: Optional[str] = None, month: Optional[int] = None,
                calendar_year: Optional[int] = None,
                user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Events visible to the caller's role, soonest first."""
    return ok(calendar.list_events(db, user, year=year, subject_id=subject_id, type=type,
                                   month=month, calendar_year=calendar_year))


@calendar_router.post("/events", response_model=SuccessResponse, status_code=201)
def create_event(body: EventCreateRequest, user: User = Depends(get_current_user),
                 db: Session = Depends(get_db)):
    event = calendar.create_event(
        db, user, body.title, body.date, body.type,
        description=body.description, time=body.time,
        is_personal=body.is_personal, is_global=body.is_global,
        subject_id=body.subject_id, year=body.year,
    )
    return ok(event, "Evento creado exitosamente")


@calendar_router.patch("/events/{event_id}", response_model=SuccessResponse)
def update_event(event_id: int, body: EventUpdateRequest,
                 user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(calendar.update_event(db, user, event_id, body.model_dump(exclude_unset=True)))


@calendar_router.delete("/events/{event_id}", response_model=SuccessResponse)
def delete_event(event_id: int, user: User = Depends(get_current_user),
                 db: Session = Depends(get_db)):
    calendar.delete_event(db, user, event_id)
    return ok(message="Evento eliminado")
