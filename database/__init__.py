"""Database module."""
from .models import (
    Base,
    utcnow,
    UserRole,
    ApprovalStatus,
    TicketStatus,
    EventType,
    User,
    Subject,
    StudentSubject,
    SubjectUnit,
    SubjectContent,
    Document,
    Assignment,
    AssignmentSubmission,
    Forum,
    ForumQuestion,
    ForumAnswer,
    Conversation,
    ConversationParticipant,
    Message,
    MessageReaction,
    Notification,
    AuditLog,
    UserSession,
    SupportTicket,
    CalendarEvent,
    SiteConfig,
)
from .connection import engine, SessionLocal, get_db, get_db_context, init_db

__all__ = [
    "Base",
    "utcnow",
    "UserRole",
    "ApprovalStatus",
    "TicketStatus",
    "EventType",
    "User",
    "Subject",
    "StudentSubject",
    "SubjectUnit",
    "SubjectContent",
    "Document",
    "Assignment",
    "AssignmentSubmission",
    "Forum",
    "ForumQuestion",
    "ForumAnswer",
    "Conversation",
    "ConversationParticipant",
    "Message",
    "MessageReaction",
    "Notification",
    "AuditLog",
    "UserSession",
    "SupportTicket",
    "CalendarEvent",
    "SiteConfig",
    "engine",
    "SessionLocal",
    "get_db",
    "get_db_context",
    "init_db",
]
