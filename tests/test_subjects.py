"""
Tests for subjects, enrollment, units and content.
"""
import pytest

from database import get_db_context, User, StudentSubject, SubjectContent
from services import Conflict, Forbidden, NotFound, ValidationError
from services import subjects, units
from services.content_types import wrap_content, unwrap_content
from services.divisions import validate_year_division, format_year_division


class TestDivisions:
    def test_lower_years_require_a_division(self):
        assert validate_year_division(2, "b") == "B"
        with pytest.raises(ValidationError):
            validate_year_division(2, None)
        with pytest.raises(ValidationError):
            validate_year_division(3, "C")

    def test_upper_years_have_no_divisions(self):
        assert validate_year_division(5, None) is None
        with pytest.raises(ValidationError):
            validate_year_division(6, "A")

    def test_year_out_of_range(self):
        with pytest.raises(ValidationError):
            validate_year_division(7, None)

    def test_format(self):
        assert format_year_division(1, "A") == '1° Año "A"'
        assert format_year_division(5) == "5° Año"


class TestContentTypes:
    def test_stored_types_pass_through(self):
        assert wrap_content("video", "https://example.org/v") == ("video", "https://example.org/v")

    def test_unknown_type_is_wrapped(self):
        stored_type, body = wrap_content("quiz", "Pregunta 1")
        assert stored_type == "assignment"
        assert body.startswith("[TIPO: QUIZ]")
        assert unwrap_content(stored_type, body) == ("quiz", "Pregunta 1")

    def test_plain_assignment_is_untouched(self):
        assert unwrap_content("assignment", "Resolver") == ("assignment", "Resolver")


class TestSubjectListing:
    def test_each_role_sees_its_own_subjects(self, world, make_subject):
        other = make_subject(teacher_id=world["teacher_b"])
        with get_db_context() as db:
            admin_ids = {s["id"] for s in subjects.list_subjects_for(db, db.get(User, world["admin"]))}
            teacher_ids = {s["id"] for s in
                           subjects.list_subjects_for(db, db.get(User, world["teacher_a"]))}
            student_ids = {s["id"] for s in
                           subjects.list_subjects_for(db, db.get(User, world["student"]))}
            director = subjects.list_subjects_for(db, db.get(User, world["director"]))

        assert admin_ids == {world["subject"], other}
        assert teacher_ids == {world["subject"]}
        assert student_ids == {world["subject"]}
        assert director == []

    def test_detail_for_outsider_is_forbidden(self, world):
        with get_db_context() as db:
            with pytest.raises(Forbidden):
                subjects.get_subject_detail(db, db.get(User, world["outsider"]), world["subject"])


class TestSubjectAdmin:
    def test_create_normalizes_code(self, world):
        with get_db_context() as db:
            created = subjects.create_subject(db, db.get(User, world["admin"]), "Química",
                                              " qui-2a ", 2, "a", teacher_id=world["teacher_b"])
        assert created["code"] == "QUI-2A"
        assert created["division"] == "A"

    def test_duplicate_code(self, world):
        with get_db_context() as db:
            admin = db.get(User, world["admin"])
            subjects.create_subject(db, admin, "Química", "QUI-2A", 2, "A")
            with pytest.raises(Conflict):
                subjects.create_subject(db, admin, "Química II", "qui-2a", 2, "B")

    def test_teacher_must_be_a_teacher(self, world):
        with get_db_context() as db:
            with pytest.raises(ValidationError):
                subjects.create_subject(db, db.get(User, world["admin"]), "Química", "QUI",
                                        5, teacher_id=world["student"])

    def test_deleted_subject_is_not_found(self, world):
        with get_db_context() as db:
            subjects.delete_subject(db, db.get(User, world["admin"]), world["subject"])
            with pytest.raises(NotFound):
                subjects.get_subject_detail(db, db.get(User, world["admin"]), world["subject"])


class TestEnrollment:
    def test_upsert_is_idempotent(self, world, make_subject):
        second = make_subject()
        with get_db_context() as db:
            assert subjects.upsert_enrollments(db, world["outsider"], [world["subject"], second]) == 2
            assert subjects.upsert_enrollments(db, world["outsider"], [world["subject"], second]) == 0
            count = db.query(StudentSubject).filter(
                StudentSubject.student_id == world["outsider"]).count()
        assert count == 2

    def test_enroll_in_year_matches_division(self, world, make_subject):
        same_division = make_subject(year=1, division="A")
        make_subject(year=1, division="B")
        no_division = make_subject(year=5, division=None)
        with get_db_context() as db:
            result = subjects.enroll_in_year(db, db.get(User, world["outsider"]))
            enrolled = {row["subject"]["id"] for row in
                        subjects.list_enrollments(db, db.get(User, world["outsider"]))}
        assert result["enrolled"] == 2
        assert enrolled == {world["subject"], same_division}
        assert no_division not in enrolled

    def test_pending_student_cannot_enroll(self, world):
        with get_db_context() as db:
            with pytest.raises(Forbidden):
                subjects.enroll_in_year(db, db.get(User, world["pending"]))

    def test_assign_rejects_unknown_students(self, world):
        with get_db_context() as db:
            with pytest.raises(ValidationError):
                subjects.assign_students(db, db.get(User, world["admin"]), world["subject"],
                                         [world["outsider"], 9999])

    def test_unenrolled_student_loses_access(self, world):
        with get_db_context() as db:
            subjects.unenroll_student(db, db.get(User, world["admin"]), world["subject"],
                                      world["student"])
            with pytest.raises(Forbidden):
                subjects.get_subject_detail(db, db.get(User, world["student"]), world["subject"])


class TestUnitsAndContent:
    def test_units_are_ordered_and_reorderable(self, world):
        with get_db_context() as db:
            teacher = db.get(User, world["teacher_a"])
            first = units.create_unit(db, teacher, world["subject"], "Unidad 1")
            second = units.create_unit(db, teacher, world["subject"], "Unidad 2")
            assert [first["order_index"], second["order_index"]] == [1, 2]

            reordered = units.reorder_units(db, teacher, world["subject"],
                                            [second["id"], first["id"], 9999])
        assert [u["id"] for u in reordered] == [second["id"], first["id"]]

    def test_students_only_see_published_units(self, world):
        with get_db_context() as db:
            teacher = db.get(User, world["teacher_a"])
            units.create_unit(db, teacher, world["subject"], "Publicada")
            units.create_unit(db, teacher, world["subject"], "Borrador", is_published=False)
            seen = units.list_units(db, db.get(User, world["student"]), world["subject"])
        assert [u["title"] for u in seen] == ["Publicada"]

    def test_content_type_roundtrip_through_storage(self, world):
        with get_db_context() as db:
            created = units.create_content(db, db.get(User, world["teacher_a"]), world["subject"],
                                           "Evaluación", "quiz", content="Pregunta 1")
            row = db.get(SubjectContent, created["id"])
            assert row.content_type == "assignment"
            assert row.content.startswith("[TIPO: QUIZ]")
        assert created["content_type"] == "quiz"
        assert created["content"] == "Pregunta 1"

    def test_admin_can_create_content(self, world):
        with get_db_context() as db:
            created = units.create_content(db, db.get(User, world["admin"]), world["subject"],
                                           "Aviso", "text", content="Sin clases el lunes")
        assert created["created_by"] == world["admin"]

    def test_outsider_sees_only_public_content(self, world):
        with get_db_context() as db:
            teacher = db.get(User, world["teacher_a"])
            units.create_content(db, teacher, world["subject"], "Programa", "text",
                                 content="...", is_public=True)
            units.create_content(db, teacher, world["subject"], "Apunte", "text", content="...")
            seen = units.list_content(db, db.get(User, world["outsider"]), world["subject"])
            everything = units.list_content(db, db.get(User, world["student"]), world["subject"])
        assert [c["title"] for c in seen] == ["Programa"]
        assert len(everything) == 2

    def test_content_in_foreign_unit_is_rejected(self, world, make_subject):
        other = make_subject(teacher_id=world["teacher_b"])
        with get_db_context() as db:
            foreign_unit = units.create_unit(db, db.get(User, world["teacher_b"]), other, "Ajena")
            with pytest.raises(NotFound):
                units.create_content(db, db.get(User, world["teacher_a"]), world["subject"],
                                     "Apunte", "text", unit_id=foreign_unit["id"])

    def test_content_of_draft_units_is_hidden_from_students(self, world):
        with get_db_context() as db:
            teacher = db.get(User, world["teacher_a"])
            draft = units.create_unit(db, teacher, world["subject"], "Borrador", is_published=False)
            units.create_content(db, teacher, world["subject"], "Suelto", "text", content="...")
            hidden = units.create_content(db, teacher, world["subject"], "En borrador", "text",
                                          content="...", unit_id=draft["id"])
            student = db.get(User, world["student"])
            seen = units.list_content(db, student, world["subject"])
            owner_view = units.list_content(db, teacher, world["subject"])
            with pytest.raises(NotFound):
                units.get_content(db, student, world["subject"], hidden["id"])
        assert [c["title"] for c in seen] == ["Suelto"]
        assert len(owner_view) == 2
