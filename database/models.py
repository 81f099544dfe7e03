"""
Database models for the Campus Virtual system.
Defines all SQLAlchemy models backing users, subjects, coursework,
forums, messaging, notifications and the security audit trail.
"""
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, Integer, String, Text, Float, Boolean, Date, DateTime, Enum, ForeignKey,
    JSON, UniqueConstraint
)
from sqlalchemy.orm import relationship, declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, the format every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class UserRole(str, PyEnum):
    """User roles enum."""
    STUDENT = "student"
    TEACHER = "teacher"
    ADMIN = "admin"
    ADMIN_DIRECTOR = "admin_director"


class ApprovalStatus(str, PyEnum):
    """Registration approval states (students only)."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TicketStatus(str, PyEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class EventType(str, PyEnum):
    EXAM = "exam"
    ASSIGNMENT = "assignment"
    CLASS = "class"
    HOLIDAY = "holiday"
    MEETING = "meeting"


def _values(enum_cls) -> list:
    return [member.value for member in enum_cls]


class User(Base):
    """
    Users table - students, teachers and administrators.

    Attributes:
        role: one of UserRole
        year: academic year 1-6 (students only)
        division: "A"/"B" for years 1-4, empty otherwise
        approval_status: registration state (students only)
        is_active: soft-deactivation flag, users are never hard-deleted
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    password_hash = Column(String(255), nullable=False)
    role = Column(Enum(*_values(UserRole), name="user_role"), nullable=False)
    year = Column(Integer, nullable=True)
    division = Column(String(1), nullable=True)
    approval_status = Column(Enum(*_values(ApprovalStatus), name="approval_status"), nullable=True)
    approved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    rejection_reason = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    avatar_url = Column(String(500), nullable=True)
    phone = Column(String(50), nullable=True)
    bio = Column(Text, nullable=True)
    two_factor_enabled = Column(Boolean, nullable=False, default=False)
    two_factor_secret = Column(String(64), nullable=True)
    two_factor_secret_temp = Column(String(64), nullable=True)
    last_login = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    enrollments = relationship("StudentSubject", back_populates="student")
    subjects_taught = relationship("Subject", back_populates="teacher")

    def __repr__(self):
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"

    def to_dict(self):
        """Public projection, never includes secrets."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "year": self.year,
            "division": self.division,
            "approval_status": self.approval_status,
            "is_active": self.is_active,
            "avatar_url": self.avatar_url,
            "phone": self.phone,
            "bio": self.bio,
            "two_factor_enabled": self.two_factor_enabled,
            "last_login": self.last_login.isoformat() if self.last_login else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Subject(Base):
    """
    Subjects (courses). Owned by at most one teacher.
    """
    __tablename__ = "subjects"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    year = Column(Integer, nullable=False)
    division = Column(String(1), nullable=True)
    credits = Column(Integer, nullable=True)
    image_url = Column(String(500), nullable=True)
    teacher_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    teacher = relationship("User", back_populates="subjects_taught")
    enrollments = relationship("StudentSubject", back_populates="subject")
    units = relationship("SubjectUnit", back_populates="subject")

    def __repr__(self):
        return f"<Subject(id={self.id}, code='{self.code}', teacher_id={self.teacher_id})>"

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "description": self.description,
            "year": self.year,
            "division": self.division,
            "credits": self.credits,
            "image_url": self.image_url,
            "teacher_id": self.teacher_id,
            "teacher_name": self.teacher.name if self.teacher else None,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class StudentSubject(Base):
    """
    Enrollment link between students and subjects.
    """
    __tablename__ = "student_subjects"
    __table_args__ = (UniqueConstraint("student_id", "subject_id", name="uq_student_subject"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    enrolled_at = Column(DateTime, nullable=False, default=utcnow)

    student = relationship("User", back_populates="enrollments")
    subject = relationship("Subject", back_populates="enrollments")

    def __repr__(self):
        return f"<StudentSubject(student_id={self.student_id}, subject_id={self.subject_id})>"


class SubjectUnit(Base):
    __tablename__ = "subject_units"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    order_index = Column(Integer, nullable=False, default=1)
    is_published = Column(Boolean, nullable=False, default=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    subject = relationship("Subject", back_populates="units")

    def to_dict(self):
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "title": self.title,
            "description": self.description,
            "order_index": self.order_index,
            "is_published": self.is_published,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class SubjectContent(Base):
    """
    Content items of a subject. `content_type` only accepts the values in
    services.content_types.STORED_CONTENT_TYPES.
    """
    __tablename__ = "subject_content"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    unit_id = Column(Integer, ForeignKey("subject_units.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(255), nullable=False)
    content_type = Column(String(20), nullable=False)
    content = Column(Text, nullable=True)
    file_url = Column(Text, nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


class Document(Base):
    __tablename__ = "documents"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    unit_id = Column(Integer, ForeignKey("subject_units.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    file_url = Column(Text, nullable=False)
    file_name = Column(String(255), nullable=False)
    file_size = Column(Integer, nullable=True)
    mime_type = Column(String(100), nullable=True)
    is_public = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    uploaded_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "unit_id": self.unit_id,
            "title": self.title,
            "description": self.description,
            "file_url": self.file_url,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "is_public": self.is_public,
            "uploaded_by": self.uploaded_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Assignment(Base):
    __tablename__ = "assignments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    unit_id = Column(Integer, ForeignKey("subject_units.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    due_date = Column(DateTime, nullable=True)
    max_score = Column(Float, nullable=False, default=10)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    subject = relationship("Subject")
    submissions = relationship("AssignmentSubmission", back_populates="assignment")

    def to_dict(self):
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "subject_name": self.subject.name if self.subject else None,
            "unit_id": self.unit_id,
            "title": self.title,
            "description": self.description,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "max_score": self.max_score,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AssignmentSubmission(Base):
    __tablename__ = "assignment_submissions"
    __table_args__ = (UniqueConstraint("assignment_id", "student_id", name="uq_submission_student"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    assignment_id = Column(Integer, ForeignKey("assignments.id", ondelete="CASCADE"), nullable=False)
    student_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    submission_text = Column(Text, nullable=True)
    file_url = Column(Text, nullable=True)
    file_name = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="submitted")
    score = Column(Float, nullable=True)
    feedback = Column(Text, nullable=True)
    graded_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    graded_at = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=False, default=utcnow)

    assignment = relationship("Assignment", back_populates="submissions")
    student = relationship("User", foreign_keys=[student_id])

    def to_dict(self):
        return {
            "id": self.id,
            "assignment_id": self.assignment_id,
            "student_id": self.student_id,
            "student_name": self.student.name if self.student else None,
            "submission_text": self.submission_text,
            "file_url": self.file_url,
            "file_name": self.file_name,
            "status": self.status,
            "score": self.score,
            "feedback": self.feedback,
            "graded_by": self.graded_by,
            "graded_at": self.graded_at.isoformat() if self.graded_at else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
        }


class Forum(Base):
    __tablename__ = "forums"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=False)
    unit_id = Column(Integer, ForeignKey("subject_units.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    allow_student_answers = Column(Boolean, nullable=False, default=True)
    require_approval = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "subject_id": self.subject_id,
            "unit_id": self.unit_id,
            "title": self.title,
            "description": self.description,
            "created_by": self.created_by,
            "allow_student_answers": self.allow_student_answers,
            "require_approval": self.require_approval,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ForumQuestion(Base):
    __tablename__ = "forum_questions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    forum_id = Column(Integer, ForeignKey("forums.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_locked = Column(Boolean, nullable=False, default=False)
    is_resolved = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    forum = relationship("Forum")
    author = relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "forum_id": self.forum_id,
            "title": self.title,
            "content": self.content,
            "author_id": self.author_id,
            "author_name": self.author.name if self.author else None,
            "is_locked": self.is_locked,
            "is_resolved": self.is_resolved,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class ForumAnswer(Base):
    __tablename__ = "forum_answers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    question_id = Column(Integer, ForeignKey("forum_questions.id", ondelete="CASCADE"), nullable=False)
    content = Column(Text, nullable=False)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    is_teacher_answer = Column(Boolean, nullable=False, default=False)
    is_accepted = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    author = relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "question_id": self.question_id,
            "content": self.content,
            "author_id": self.author_id,
            "author_name": self.author.name if self.author else None,
            "is_teacher_answer": self.is_teacher_answer,
            "is_accepted": self.is_accepted,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=True)
    type = Column(String(20), nullable=False, default="direct")
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    participants = relationship("ConversationParticipant", back_populates="conversation")

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "type": self.type,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ConversationParticipant(Base):
    __tablename__ = "conversation_participants"
    __table_args__ = (UniqueConstraint("conversation_id", "user_id", name="uq_conversation_user"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    joined_at = Column(DateTime, nullable=False, default=utcnow)
    last_read_at = Column(DateTime, nullable=True)

    conversation = relationship("Conversation", back_populates="participants")
    user = relationship("User")


class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content = Column(Text, nullable=False)
    message_type = Column(String(20), nullable=False, default="text")
    file_url = Column(Text, nullable=True)
    file_name = Column(String(255), nullable=True)
    reply_to_id = Column(Integer, ForeignKey("messages.id", ondelete="SET NULL"), nullable=True)
    is_edited = Column(Boolean, nullable=False, default=False)
    edited_at = Column(DateTime, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    reactions = relationship("MessageReaction", back_populates="message")

    def to_dict(self):
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "sender_id": self.sender_id,
            "content": self.content,
            "message_type": self.message_type,
            "file_url": self.file_url,
            "file_name": self.file_name,
            "reply_to_id": self.reply_to_id,
            "is_edited": self.is_edited,
            "edited_at": self.edited_at.isoformat() if self.edited_at else None,
            "is_deleted": self.is_deleted,
            "reactions": [{"user_id": r.user_id, "emoji": r.emoji} for r in self.reactions],
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class MessageReaction(Base):
    __tablename__ = "message_reactions"
    __table_args__ = (UniqueConstraint("message_id", "user_id", "emoji", name="uq_message_reaction"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    message_id = Column(Integer, ForeignKey("messages.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    emoji = Column(String(16), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    message = relationship("Message", back_populates="reactions")


class Notification(Base):
    """
    Per-user inbox rows. Only `is_read`/`read_at` ever change.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(30), nullable=False, default="info")
    action_url = Column(String(500), nullable=True)
    extra = Column("metadata", JSON, nullable=True)
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "sender_id": self.sender_id,
            "title": self.title,
            "message": self.message,
            "type": self.type,
            "action_url": self.action_url,
            "metadata": self.extra,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AuditLog(Base):
    """
    Append-only security audit trail.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    email = Column(String(255), nullable=True, index=True)
    action = Column(String(64), nullable=False, index=True)
    details = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "email": self.email,
            "action": self.action,
            "details": self.details,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class UserSession(Base):
    """
    One row per login; the session token carries `token_id`.
    """
    __tablename__ = "user_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_id = Column(String(64), nullable=False, unique=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    last_active = Column(DateTime, nullable=False, default=utcnow)
    revoked_at = Column(DateTime, nullable=True)

    def to_dict(self, current_token_id: str = None):
        return {
            "id": self.id,
            "ip_address": self.ip_address,
            "user_agent": self.user_agent,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "last_active": self.last_active.isoformat() if self.last_active else None,
            "is_current": self.token_id == current_token_id,
        }


class CalendarEvent(Base):
    """
    Calendar entries. Exactly one scope applies: personal (creator only),
    global (everyone), a subject, or a whole school year.
    """
    __tablename__ = "calendar_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    date = Column(Date, nullable=False)
    time = Column(String(5), nullable=True)
    type = Column(Enum(*_values(EventType), name="event_type"), nullable=False)
    subject_id = Column(Integer, ForeignKey("subjects.id", ondelete="CASCADE"), nullable=True)
    year = Column(Integer, nullable=True)
    is_personal = Column(Boolean, nullable=False, default=False)
    is_global = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    subject = relationship("Subject")
    creator = relationship("User")

    def to_dict(self):
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "date": self.date.isoformat() if self.date else None,
            "time": self.time,
            "type": self.type,
            "subject_id": self.subject_id,
            "subject": {
                "id": self.subject.id, "name": self.subject.name,
                "code": self.subject.code, "year": self.subject.year,
            } if self.subject else None,
            "year": self.year,
            "is_personal": self.is_personal,
            "is_global": self.is_global,
            "created_by": self.created_by,
            "creator": {"id": self.creator.id, "name": self.creator.name} if self.creator else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SupportTicket(Base):
    __tablename__ = "support_tickets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    subject = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(String(50), nullable=False)
    screenshot_url = Column(String(500), nullable=True)
    status = Column(Enum(*_values(TicketStatus), name="ticket_status"), nullable=False, default="open")
    priority = Column(String(20), nullable=False, default="normal")
    admin_response = Column(Text, nullable=True)
    resolved_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "subject": self.subject,
            "description": self.description,
            "category": self.category,
            "screenshot_url": self.screenshot_url,
            "status": self.status,
            "priority": self.priority,
            "admin_response": self.admin_response,
            "resolved_by": self.resolved_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SiteConfig(Base):
    """
    Persisted configuration records (maintenance mode, teacher allow-list).
    """
    __tablename__ = "site_config"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=False)
    updated_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
