"""
Unit tests for the authorization layer: role gate, ownership/enrollment
filter, approval gate and the message edit window.
"""
from datetime import timedelta

import pytest

from database import get_db_context, User, UserRole, Message, Conversation, \
    ConversationParticipant, utcnow
from services import (
    Access,
    AuthorizationService,
    AccountPending,
    AccountRejected,
    Forbidden,
    NotFound,
    role_satisfies,
)
from services import units, forums


class TestRoleGate:
    """Tests for role_satisfies."""

    def test_admin_satisfies_every_gate(self):
        for allowed in ([UserRole.STUDENT], [UserRole.TEACHER], [UserRole.ADMIN_DIRECTOR]):
            assert role_satisfies(UserRole.ADMIN, allowed)

    def test_exact_role(self):
        assert role_satisfies(UserRole.TEACHER, [UserRole.TEACHER])
        assert not role_satisfies(UserRole.STUDENT, [UserRole.TEACHER])
        assert not role_satisfies(UserRole.TEACHER, [UserRole.ADMIN])

    def test_admin_director_only_on_student_management(self):
        assert not role_satisfies(UserRole.ADMIN_DIRECTOR, [UserRole.ADMIN])
        assert role_satisfies(UserRole.ADMIN_DIRECTOR, [UserRole.ADMIN], student_management=True)

    def test_unknown_role_is_denied(self):
        assert not role_satisfies(None, [UserRole.STUDENT, UserRole.TEACHER])

    def test_require_role_raises_forbidden(self, world):
        with get_db_context() as db:
            auth = AuthorizationService(db)
            student = auth.get_user(world["student"])
            with pytest.raises(Forbidden):
                auth.require_role(student, [UserRole.TEACHER])
            admin = auth.get_user(world["admin"])
            assert auth.require_role(admin, [UserRole.TEACHER]) is admin

    def test_invalid_user(self, world):
        with get_db_context() as db:
            with pytest.raises(NotFound):
                AuthorizationService(db).get_user(9999)


class TestSubjectFilter:
    """Tests for the ownership/enrollment rule table."""

    def test_admin_reads_and_writes_any_subject(self, world):
        with get_db_context() as db:
            auth = AuthorizationService(db)
            admin = db.get(User, world["admin"])
            for access in (Access.READ, Access.WRITE):
                assert auth.subject_for(admin, world["subject"], access).id == world["subject"]

    def test_owner_teacher_passes_foreign_teacher_fails(self, world):
        with get_db_context() as db:
            auth = AuthorizationService(db)
            owner = db.get(User, world["teacher_a"])
            other = db.get(User, world["teacher_b"])
            auth.subject_for(owner, world["subject"], Access.WRITE)
            with pytest.raises(Forbidden):
                auth.subject_for(other, world["subject"], Access.WRITE)
            with pytest.raises(Forbidden):
                auth.subject_for(other, world["subject"], Access.READ)

    def test_enrolled_student_reads(self, world):
        with get_db_context() as db:
            auth = AuthorizationService(db)
            auth.subject_for(db.get(User, world["student"]), world["subject"], Access.READ)
            auth.subject_for(db.get(User, world["student"]), world["subject"], Access.WRITE)

    def test_pending_student_reads_but_cannot_write(self, world):
        with get_db_context() as db:
            auth = AuthorizationService(db)
            pending = db.get(User, world["pending"])
            auth.subject_for(pending, world["subject"], Access.READ)
            with pytest.raises(AccountPending) as exc:
                auth.subject_for(pending, world["subject"], Access.WRITE)
            assert "pendiente de aprobación" in exc.value.message

    def test_rejected_student_gets_distinct_message(self, world):
        with get_db_context() as db:
            auth = AuthorizationService(db)
            with pytest.raises(AccountRejected) as exc:
                auth.subject_for(db.get(User, world["rejected"]), world["subject"], Access.WRITE)
            assert "rechazada" in exc.value.message
            assert "pendiente" not in exc.value.message

    def test_outsider_student_is_forbidden(self, world):
        with get_db_context() as db:
            with pytest.raises(Forbidden) as exc:
                AuthorizationService(db).subject_for(
                    db.get(User, world["outsider"]), world["subject"], Access.READ
                )
            assert exc.value.message == "No estás inscrito en esta materia"

    def test_admin_director_has_no_subject_access(self, world):
        with get_db_context() as db:
            with pytest.raises(Forbidden):
                AuthorizationService(db).subject_for(
                    db.get(User, world["director"]), world["subject"], Access.READ
                )

    def test_missing_subject_is_404_before_403(self, world):
        with get_db_context() as db:
            with pytest.raises(NotFound):
                AuthorizationService(db).subject_for(
                    db.get(User, world["teacher_b"]), 9999, Access.WRITE
                )

    def test_missing_unit_under_foreign_subject_is_404(self, world):
        with get_db_context() as db:
            with pytest.raises(NotFound):
                units.update_unit(db, db.get(User, world["teacher_b"]), world["subject"], 9999,
                                  {"title": "Nueva"})

    def test_foreign_teacher_cannot_write_nested_content(self, world):
        with get_db_context() as db:
            owner = db.get(User, world["teacher_a"])
            unit = units.create_unit(db, owner, world["subject"], "Unidad 1")
            with pytest.raises(Forbidden):
                units.update_unit(db, db.get(User, world["teacher_b"]), world["subject"],
                                  unit["id"], {"title": "Otra"})
            with pytest.raises(Forbidden):
                units.create_content(db, db.get(User, world["teacher_b"]), world["subject"],
                                     "Apunte", "text", content="...")

    def test_foreign_teacher_cannot_create_forum(self, world):
        with get_db_context() as db:
            with pytest.raises(Forbidden) as exc:
                forums.create_forum(db, db.get(User, world["teacher_b"]), world["subject"],
                                    "Consultas")
            assert exc.value.message == "No tienes permiso para crear foros en esta materia"


class TestConversationFilter:
    """Tests for participant checks and the message edit window."""

    @pytest.fixture
    def chat(self, world):
        with get_db_context() as db:
            conversation = Conversation(type="direct", created_by=world["student"])
            db.add(conversation)
            db.flush()
            db.add_all([
                ConversationParticipant(conversation_id=conversation.id,
                                        user_id=world["student"]),
                ConversationParticipant(conversation_id=conversation.id,
                                        user_id=world["teacher_a"]),
            ])
            message = Message(conversation_id=conversation.id, sender_id=world["student"],
                              content="Hola profe")
            db.add(message)
            db.flush()
            return {"conversation": conversation.id, "message": message.id}

    def test_non_participant_is_forbidden(self, world, chat):
        with get_db_context() as db:
            with pytest.raises(Forbidden):
                AuthorizationService(db).participant_for(
                    db.get(User, world["outsider"]), chat["conversation"]
                )

    def test_admin_bypasses_participant_check(self, world, chat):
        with get_db_context() as db:
            assert AuthorizationService(db).participant_for(
                db.get(User, world["admin"]), chat["conversation"]
            ) is None

    def test_missing_conversation(self, world):
        with get_db_context() as db:
            with pytest.raises(NotFound):
                AuthorizationService(db).participant_for(db.get(User, world["student"]), 9999)

    def test_only_sender_may_modify(self, world, chat):
        with get_db_context() as db:
            message = db.get(Message, chat["message"])
            with pytest.raises(Forbidden):
                AuthorizationService(db).enforce_message_owner(
                    db.get(User, world["teacher_a"]), message
                )

    def test_edit_window_boundary(self, world, chat):
        with get_db_context() as db:
            auth = AuthorizationService(db)
            sender = db.get(User, world["student"])
            message = db.get(Message, chat["message"])
            created = message.created_at

            auth.enforce_message_owner(sender, message,
                                       now=created + timedelta(minutes=14, seconds=59))
            with pytest.raises(Forbidden):
                auth.enforce_message_owner(sender, message, now=created + timedelta(minutes=15))
            with pytest.raises(Forbidden):
                auth.enforce_message_owner(sender, message, now=created + timedelta(hours=1))

    def test_admin_does_not_bypass_edit_rule(self, world, chat):
        with get_db_context() as db:
            with pytest.raises(Forbidden):
                AuthorizationService(db).enforce_message_owner(
                    db.get(User, world["admin"]), db.get(Message, chat["message"]), now=utcnow()
                )
