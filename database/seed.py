"""
Seed data script for the Campus Virtual system.
Creates demo accounts, subjects and a bit of content.

Run with: python -m database.seed
"""
from datetime import timedelta

from database import (
    get_db_context, init_db, utcnow,
    User, Subject, StudentSubject, SubjectUnit, SubjectContent, Assignment,
    Forum, ForumQuestion, Notification, AuditLog, UserSession, SiteConfig,
    ConversationParticipant, Conversation, Message, MessageReaction,
    AssignmentSubmission, ForumAnswer, Document, SupportTicket, CalendarEvent,
)
from services.passwords import get_password_hash

DEMO_PASSWORD = "Campus#2024"


def seed_database():
    """Populate database with sample data."""

    with get_db_context() as db:
        # Clear existing data, children first
        for model in (CalendarEvent, MessageReaction, Message, ConversationParticipant,
                      Conversation, ForumAnswer, ForumQuestion, Forum, AssignmentSubmission,
                      Assignment, Document, SubjectContent, SubjectUnit, StudentSubject, Subject,
                      Notification, AuditLog, UserSession, SupportTicket, SiteConfig, User):
            db.query(model).delete()

        password_hash = get_password_hash(DEMO_PASSWORD)
        now = utcnow()

        # Staff
        admin = User(email="admin@campus.edu", name="Administración", role="admin",
                     password_hash=password_hash)
        director = User(email="direccion@campus.edu", name="Dirección", role="admin_director",
                        password_hash=password_hash)
        teachers = [
            User(email="lgarcia@campus.edu", name="Prof. Laura García", role="teacher",
                 password_hash=password_hash),
            User(email="mfernandez@campus.edu", name="Prof. Martín Fernández", role="teacher",
                 password_hash=password_hash),
        ]
        db.add_all([admin, director] + teachers)
        db.flush()

        # Students: approved ones in 1°A and 5°, one still pending
        students = [
            User(email="sofia.lopez@campus.edu", name="Sofía López", role="student",
                 year=1, division="A", approval_status="approved", approved_by=admin.id,
                 approved_at=now, password_hash=password_hash),
            User(email="tomas.perez@campus.edu", name="Tomás Pérez", role="student",
                 year=1, division="A", approval_status="approved", approved_by=admin.id,
                 approved_at=now, password_hash=password_hash),
            User(email="valentina.ruiz@campus.edu", name="Valentina Ruiz", role="student",
                 year=5, approval_status="approved", approved_by=admin.id,
                 approved_at=now, password_hash=password_hash),
            User(email="lucas.gomez@campus.edu", name="Lucas Gómez", role="student",
                 year=1, division="B", approval_status="pending",
                 password_hash=password_hash),
        ]
        db.add_all(students)
        db.flush()

        # Subjects
        subjects = [
            Subject(name="Matemática", code="MAT-1A", year=1, division="A",
                    teacher_id=teachers[0].id),
            Subject(name="Lengua", code="LEN-1A", year=1, division="A",
                    teacher_id=teachers[1].id),
            Subject(name="Física", code="FIS-5", year=5, teacher_id=teachers[0].id),
            Subject(name="Historia", code="HIS-1B", year=1, division="B"),
        ]
        db.add_all(subjects)
        db.flush()

        # Enrollments follow year and division
        enrollments = [
            StudentSubject(student_id=s.id, subject_id=subj.id)
            for s in students if s.approval_status == "approved"
            for subj in subjects
            if subj.year == s.year and (subj.division is None or subj.division == s.division)
        ]
        db.add_all(enrollments)
        db.flush()

        # Units, content and one assignment per subject with a teacher
        units = []
        for subject in subjects:
            if subject.teacher_id is None:
                continue
            unit = SubjectUnit(subject_id=subject.id, title="Unidad 1: Introducción",
                               order_index=1)
            db.add(unit)
            db.flush()
            units.append(unit)
            db.add(SubjectContent(subject_id=subject.id, unit_id=unit.id,
                                  title="Programa de la materia", content_type="text",
                                  content=f"Programa de {subject.name}.", is_public=True,
                                  created_by=subject.teacher_id))
            db.add(Assignment(subject_id=subject.id, unit_id=unit.id,
                              title="Trabajo práctico 1",
                              description="Resolver los ejercicios de la unidad 1.",
                              due_date=now + timedelta(days=7), max_score=10,
                              created_by=subject.teacher_id))

        # A forum with a first question
        forum = Forum(subject_id=subjects[0].id, title="Consultas generales",
                      created_by=teachers[0].id)
        db.add(forum)
        db.flush()
        db.add(ForumQuestion(forum_id=forum.id, title="Fecha del primer parcial",
                             content="¿Cuándo es el primer parcial de la materia?",
                             author_id=students[0].id))

        # Calendar: the first exam of that subject and a holiday for everyone
        db.add(CalendarEvent(title="Primer parcial", date=(now + timedelta(days=21)).date(),
                             time="10:00", type="exam", subject_id=subjects[0].id,
                             year=subjects[0].year, created_by=teachers[0].id))
        db.add(CalendarEvent(title="Receso de invierno", date=(now + timedelta(days=45)).date(),
                             type="holiday", is_global=True, created_by=admin.id))

        db.add(SiteConfig(key="teacher_emails",
                          value=[t.email for t in teachers], updated_by=admin.id))
        db.commit()

        print("Database seeded successfully!")
        print("Created:")
        print(f"  - {len(teachers)} teachers, 2 administrators")
        print(f"  - {len(students)} students")
        print(f"  - {len(subjects)} subjects")
        print(f"  - {len(enrollments)} enrollments")
        print(f"  - {len(units)} units")

        # Print some logins for reference
        print(f"\nDemo logins (password: {DEMO_PASSWORD}):")
        for user in [admin, director] + teachers + students:
            print(f"  {user.role:<15} {user.email}")


if __name__ == "__main__":
    print("Initializing database...")
    init_db()
    print("Seeding database...")
    seed_database()
