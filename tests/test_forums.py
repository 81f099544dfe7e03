"""
Tests for forums, questions and answers.
"""
import pytest

from database import get_db_context, User, Notification
from services import AccountPending, Forbidden, NotFound, ValidationError
from services import forums


@pytest.fixture
def forum(world):
    with get_db_context() as db:
        created = forums.create_forum(db, db.get(User, world["teacher_a"]), world["subject"],
                                      "Consultas generales")
    return created["id"]


@pytest.fixture
def question(world, forum):
    with get_db_context() as db:
        created = forums.ask_question(db, db.get(User, world["student"]), forum,
                                      "Fecha del parcial", "¿Cuándo es el primer parcial?")
    return created["id"]


class TestForums:
    def test_students_cannot_create_forums(self, world):
        with get_db_context() as db:
            with pytest.raises(Forbidden) as exc:
                forums.create_forum(db, db.get(User, world["student"]), world["subject"],
                                    "Mi foro")
        assert exc.value.message == forums.FORUM_CREATE_DENIED

    def test_admin_creates_forums_anywhere(self, world):
        with get_db_context() as db:
            created = forums.create_forum(db, db.get(User, world["admin"]), world["subject"],
                                          "Avisos")
        assert created["created_by"] == world["admin"]

    def test_listing_is_scoped(self, world, forum, make_subject):
        other = make_subject(teacher_id=world["teacher_b"])
        with get_db_context() as db:
            forums.create_forum(db, db.get(User, world["teacher_b"]), other, "Otro foro")
            student_view = forums.list_forums(db, db.get(User, world["student"]))
            teacher_view = forums.list_forums(db, db.get(User, world["teacher_a"]))
            admin_view = forums.list_forums(db, db.get(User, world["admin"]))
        assert [f["id"] for f in student_view] == [forum]
        assert [f["id"] for f in teacher_view] == [forum]
        assert len(admin_view) == 2

    def test_foreign_teacher_cannot_manage(self, world, forum):
        with get_db_context() as db:
            with pytest.raises(Forbidden):
                forums.update_forum(db, db.get(User, world["teacher_b"]), forum, {"title": "X"})
            with pytest.raises(Forbidden):
                forums.delete_forum(db, db.get(User, world["teacher_b"]), forum)

    def test_deleted_forum_is_not_found(self, world, forum):
        with get_db_context() as db:
            forums.delete_forum(db, db.get(User, world["teacher_a"]), forum)
            with pytest.raises(NotFound):
                forums.list_questions(db, db.get(User, world["student"]), forum)


class TestQuestions:
    def test_question_notifies_teacher(self, world, question):
        with get_db_context() as db:
            inbox = db.query(Notification).filter(
                Notification.user_id == world["teacher_a"]).all()
        assert [n.type for n in inbox] == ["forum"]

    def test_minimum_lengths(self, world, forum):
        with get_db_context() as db:
            student = db.get(User, world["student"])
            with pytest.raises(ValidationError):
                forums.ask_question(db, student, forum, "Hola", "Contenido suficiente")
            with pytest.raises(ValidationError):
                forums.ask_question(db, student, forum, "Título válido", "corto")

    def test_pending_student_reads_but_cannot_ask(self, world, forum, question):
        with get_db_context() as db:
            pending = db.get(User, world["pending"])
            assert [q["id"] for q in forums.list_questions(db, pending, forum)] == [question]
            with pytest.raises(AccountPending):
                forums.ask_question(db, pending, forum, "Otra pregunta", "¿Se puede recuperar?")

    def test_outsider_cannot_read(self, world, forum):
        with get_db_context() as db:
            with pytest.raises(Forbidden):
                forums.list_questions(db, db.get(User, world["outsider"]), forum)


class TestAnswers:
    def test_teacher_answer_is_flagged_and_author_notified(self, world, question):
        with get_db_context() as db:
            answer = forums.answer_question(db, db.get(User, world["teacher_a"]), question,
                                            "El 15 de mayo")
            inbox = db.query(Notification).filter(
                Notification.user_id == world["student"]).all()
        assert answer["is_teacher_answer"] is True
        assert [n.title for n in inbox] == ["Nueva respuesta"]

    def test_teacher_only_forum(self, world, forum, question):
        with get_db_context() as db:
            forums.update_forum(db, db.get(User, world["teacher_a"]), forum,
                                {"allow_student_answers": False})
            with pytest.raises(Forbidden) as exc:
                forums.answer_question(db, db.get(User, world["student"]), question, "Yo sé")
        assert exc.value.message == "Solo el profesor puede responder en este foro"

    def test_locked_question(self, world, question):
        with get_db_context() as db:
            forums.set_question_locked(db, db.get(User, world["teacher_a"]), question, True)
            with pytest.raises(Forbidden) as exc:
                forums.answer_question(db, db.get(User, world["admin"]), question, "Tarde")
        assert exc.value.message == "Esta pregunta no acepta más respuestas"

    def test_outsider_does_not_learn_the_lock_state(self, world, question):
        with get_db_context() as db:
            forums.set_question_locked(db, db.get(User, world["teacher_a"]), question, True)
            with pytest.raises(Forbidden) as exc:
                forums.answer_question(db, db.get(User, world["outsider"]), question, "Hola")
        assert exc.value.message == "No estás inscrito en esta materia"

    def test_pending_student_gets_the_approval_message(self, world, forum, question):
        with get_db_context() as db:
            forums.update_forum(db, db.get(User, world["teacher_a"]), forum,
                                {"allow_student_answers": False})
            with pytest.raises(AccountPending):
                forums.answer_question(db, db.get(User, world["pending"]), question, "Yo sé")

    def test_student_cannot_moderate(self, world, question):
        with get_db_context() as db:
            with pytest.raises(Forbidden):
                forums.set_question_locked(db, db.get(User, world["student"]), question, True)

    def test_accept_answer_is_exclusive(self, world, question):
        with get_db_context() as db:
            teacher = db.get(User, world["teacher_a"])
            first = forums.answer_question(db, db.get(User, world["student"]), question,
                                           "Creo que en mayo")
            second = forums.answer_question(db, teacher, question, "El 15 de mayo")
            forums.accept_answer(db, teacher, question, first["id"])
            forums.accept_answer(db, teacher, question, second["id"])
            detail = forums.get_question(db, db.get(User, world["student"]), question)
        assert detail["is_resolved"] is True
        assert [(a["id"], a["is_accepted"]) for a in detail["answers"]] == [
            (second["id"], True), (first["id"], False)
        ]

    def test_accept_answer_from_another_question(self, world, forum, question):
        with get_db_context() as db:
            teacher = db.get(User, world["teacher_a"])
            other = forums.ask_question(db, db.get(User, world["student"]), forum,
                                        "Otra consulta", "¿Hay que imprimir el TP?")
            answer = forums.answer_question(db, teacher, other["id"], "No hace falta")
            with pytest.raises(NotFound):
                forums.accept_answer(db, teacher, question, answer["id"])
