"""API module for the Campus Virtual system."""
from .routes import auth_router, user_router, admin_router
from .campus_routes import (
    subjects_router,
    assignments_router,
    student_router,
    teacher_router,
    forums_router,
    calendar_router,
)
from .communication_routes import conversations_router, notifications_router, support_router
from .schemas import SuccessResponse, ErrorResponse, ok

ROUTERS = [
    auth_router,
    user_router,
    admin_router,
    subjects_router,
    assignments_router,
    student_router,
    teacher_router,
    forums_router,
    calendar_router,
    conversations_router,
    notifications_router,
    support_router,
]

__all__ = [
    "ROUTERS",
    "auth_router",
    "user_router",
    "admin_router",
    "subjects_router",
    "assignments_router",
    "student_router",
    "teacher_router",
    "forums_router",
    "calendar_router",
    "conversations_router",
    "notifications_router",
    "support_router",
    "SuccessResponse",
    "ErrorResponse",
    "ok",
]
