"""
Tests for calendar events: who may publish to which scope, and who sees what.
"""
from datetime import date, timedelta

import pytest

from database import get_db_context, utcnow, User, CalendarEvent
from services import AccountPending, Forbidden, NotFound, ValidationError
from services import calendar, subjects


def _soon(days: int = 7) -> date:
    return utcnow().date() + timedelta(days=days)


def _create(user_id: int, title: str = "Evento", **scope):
    with get_db_context() as db:
        return calendar.create_event(db, db.get(User, user_id), title, _soon(), "exam", **scope)


def _titles(user_id: int, **filters):
    with get_db_context() as db:
        return [e["title"] for e in calendar.list_events(db, db.get(User, user_id), **filters)]


class TestCreateEvent:
    def test_no_scope_means_personal(self, world):
        event = _create(world["student"], "Estudiar")
        assert event["is_personal"] is True
        assert event["created_by"] == world["student"]

    @pytest.mark.parametrize("scope", [
        {"is_global": True}, {"year": 1}, {"is_personal": False, "year": 2},
    ])
    def test_students_only_create_personal_events(self, world, scope):
        with pytest.raises(Forbidden) as exc:
            _create(world["student"], **scope)
        assert exc.value.message == calendar.STUDENT_SCOPE_DENIED

    def test_student_cannot_target_a_subject(self, world):
        with pytest.raises(Forbidden):
            _create(world["student"], subject_id=world["subject"])

    def test_pending_student_is_blocked(self, world):
        with pytest.raises(AccountPending):
            _create(world["pending"], "Estudiar")

    def test_teacher_publishes_to_own_subject(self, world):
        event = _create(world["teacher_a"], "Parcial", subject_id=world["subject"])
        assert event["subject_id"] == world["subject"]
        assert event["year"] == 1
        assert event["subject"]["id"] == world["subject"]

    def test_foreign_teacher_cannot_publish_to_subject(self, world):
        with pytest.raises(Forbidden) as exc:
            _create(world["teacher_b"], "Parcial", subject_id=world["subject"])
        assert exc.value.message == calendar.SUBJECT_EVENT_DENIED

    def test_missing_subject_is_not_found(self, world):
        with pytest.raises(NotFound):
            _create(world["teacher_b"], subject_id=9999)

    def test_only_admin_publishes_global_or_year_events(self, world):
        with pytest.raises(Forbidden):
            _create(world["teacher_a"], is_global=True)
        with pytest.raises(Forbidden):
            _create(world["teacher_a"], year=3)
        assert _create(world["admin"], "Feriado", is_global=True)["is_global"] is True
        assert _create(world["admin"], "Acto", year=3)["year"] == 3

    def test_admin_publishes_to_any_subject(self, world):
        event = _create(world["admin"], "Recuperatorio", subject_id=world["subject"])
        assert event["subject_id"] == world["subject"]

    def test_scopes_are_exclusive(self, world):
        with pytest.raises(ValidationError):
            _create(world["admin"], is_global=True, year=2)
        with pytest.raises(ValidationError):
            _create(world["admin"], is_personal=True, subject_id=world["subject"])

    def test_year_must_match_the_subject(self, world):
        with pytest.raises(ValidationError):
            _create(world["teacher_a"], subject_id=world["subject"], year=4)

    def test_field_validation(self, world):
        with get_db_context() as db:
            teacher = db.get(User, world["teacher_a"])
            with pytest.raises(ValidationError):
                calendar.create_event(db, teacher, "Ayer", utcnow().date() - timedelta(days=1),
                                      "exam")
            with pytest.raises(ValidationError):
                calendar.create_event(db, teacher, "Fiesta", _soon(), "party")
            with pytest.raises(ValidationError):
                calendar.create_event(db, teacher, "Clase", _soon(), "class", time="25:00")
            today = calendar.create_event(db, teacher, "Hoy", utcnow().date(), "class",
                                          time="08:30")
        assert today["time"] == "08:30"


class TestVisibility:
    @pytest.fixture
    def events(self, world, make_subject):
        other = make_subject(teacher_id=world["teacher_b"], year=2)
        _create(world["admin"], "Feriado", is_global=True)
        _create(world["admin"], "Acto 1° año", year=1)
        _create(world["admin"], "Acto 2° año", year=2)
        _create(world["teacher_a"], "Parcial", subject_id=world["subject"])
        _create(world["teacher_b"], "Parcial ajeno", subject_id=other)
        _create(world["student"], "Estudiar")
        _create(world["teacher_a"], "Reunión privada")
        return other

    def test_student_view(self, world, events):
        assert sorted(_titles(world["student"])) == [
            "Acto 1° año", "Estudiar", "Feriado", "Parcial",
        ]

    def test_non_enrolled_student_of_same_year(self, world, events):
        assert sorted(_titles(world["outsider"])) == ["Acto 1° año", "Feriado"]

    def test_teacher_view(self, world, events):
        assert sorted(_titles(world["teacher_a"])) == [
            "Acto 1° año", "Acto 2° año", "Feriado", "Parcial", "Reunión privada",
        ]

    def test_admin_sees_everything_shared_but_not_personal(self, world, events):
        seen = _titles(world["admin"])
        assert "Parcial ajeno" in seen
        assert "Estudiar" not in seen
        assert "Reunión privada" not in seen
        assert len(seen) == 5

    def test_filters(self, world, events):
        assert _titles(world["admin"], subject_id=events) == ["Parcial ajeno"]
        assert sorted(_titles(world["admin"], year=2)) == ["Acto 2° año", "Parcial ajeno"]
        with pytest.raises(ValidationError):
            _titles(world["admin"], month=13)

    def test_month_window(self, world):
        target = _soon(40)
        with get_db_context() as db:
            calendar.create_event(db, db.get(User, world["admin"]), "Lejano", target, "holiday",
                                  is_global=True)
        assert _titles(world["student"], month=target.month,
                       calendar_year=target.year) == ["Lejano"]
        other_month = 1 if target.month == 12 else target.month + 1
        assert _titles(world["student"], month=other_month, calendar_year=target.year) == []

    def test_events_of_deleted_subjects_disappear(self, world, events):
        with get_db_context() as db:
            subjects.delete_subject(db, db.get(User, world["admin"]), world["subject"])
        assert "Parcial" not in _titles(world["student"])


class TestManageEvent:
    def test_student_edits_own_personal_event(self, world):
        event = _create(world["student"], "Estudiar")
        with get_db_context() as db:
            updated = calendar.update_event(db, db.get(User, world["student"]), event["id"],
                                            {"title": "Estudiar química", "time": "18:00"})
        assert updated["title"] == "Estudiar química"
        assert updated["time"] == "18:00"

    def test_student_cannot_change_visibility(self, world):
        event = _create(world["student"], "Estudiar")
        with get_db_context() as db:
            with pytest.raises(Forbidden) as exc:
                calendar.update_event(db, db.get(User, world["student"]), event["id"],
                                      {"is_global": True})
        assert exc.value.message == "No puedes cambiar la visibilidad de un evento personal"

    def test_personal_events_belong_to_their_creator(self, world):
        event = _create(world["teacher_a"], "Reunión privada")
        with get_db_context() as db:
            with pytest.raises(Forbidden):
                calendar.delete_event(db, db.get(User, world["admin"]), event["id"])

    def test_subject_owner_manages_subject_events(self, world):
        event = _create(world["admin"], "Recuperatorio", subject_id=world["subject"])
        with get_db_context() as db:
            with pytest.raises(Forbidden) as exc:
                calendar.update_event(db, db.get(User, world["teacher_b"]), event["id"],
                                      {"title": "Otro"})
            assert exc.value.message == "No tienes permisos para modificar este evento"
            calendar.update_event(db, db.get(User, world["teacher_a"]), event["id"],
                                  {"date": _soon(10)})
            assert db.get(CalendarEvent, event["id"]).date == _soon(10)

    def test_teacher_cannot_manage_global_events(self, world):
        event = _create(world["admin"], "Feriado", is_global=True)
        with get_db_context() as db:
            with pytest.raises(Forbidden) as exc:
                calendar.delete_event(db, db.get(User, world["teacher_a"]), event["id"])
        assert exc.value.message == "No tienes permisos para eliminar este evento"

    def test_admin_moves_event_to_another_scope(self, world):
        event = _create(world["teacher_a"], "Parcial", subject_id=world["subject"])
        with get_db_context() as db:
            moved = calendar.update_event(db, db.get(User, world["admin"]), event["id"],
                                          {"is_global": True})
        assert (moved["is_global"], moved["subject_id"], moved["year"]) == (True, None, None)

    def test_past_date_on_update(self, world):
        event = _create(world["student"], "Estudiar")
        with get_db_context() as db:
            with pytest.raises(ValidationError) as exc:
                calendar.update_event(db, db.get(User, world["student"]), event["id"],
                                      {"date": utcnow().date() - timedelta(days=1)})
        assert exc.value.message == "No se pueden establecer fechas pasadas"

    def test_delete_is_soft_and_missing_is_not_found(self, world):
        event = _create(world["student"], "Estudiar")
        with get_db_context() as db:
            student = db.get(User, world["student"])
            calendar.delete_event(db, student, event["id"])
            assert db.get(CalendarEvent, event["id"]).is_active is False
            with pytest.raises(NotFound):
                calendar.delete_event(db, student, event["id"])
