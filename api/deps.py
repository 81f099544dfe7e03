"""
Request dependencies: session resolution, role gate and the per-request sink.
"""
import logging
from typing import Optional, Tuple

from fastapi import BackgroundTasks, Depends, Request
from sqlalchemy.orm import Session

from config.settings import settings
from database import get_db, User, UserRole, UserSession
from services.authorization import parse_role, role_satisfies
from services.exceptions import Forbidden
from services.sessions import resolve_session
from services.sink import AuditAction, SideEffectSink

logger = logging.getLogger(__name__)


def client_info(request: Request) -> Tuple[Optional[str], Optional[str]]:
    """(ip address, user agent) of the caller."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip()
    else:
        ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


def get_sink(background_tasks: BackgroundTasks) -> SideEffectSink:
    """Sink whose writes run after the response is sent."""
    return SideEffectSink(background=background_tasks)


def request_token(request: Request) -> Optional[str]:
    """Bearer header first, then the session cookie."""
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip()
    return request.cookies.get(settings.session_cookie_name)


def get_current_session(
    request: Request, db: Session = Depends(get_db)
) -> Tuple[User, UserSession]:
    return resolve_session(db, request_token(request))


def get_current_user(
    current: Tuple[User, UserSession] = Depends(get_current_session),
) -> User:
    return current[0]


def require_roles(*roles: UserRole, student_management: bool = False):
    """
    Dependency factory for the role gate.

    Usage:
        user: User = Depends(require_roles(UserRole.TEACHER))
    """
    def dependency(
        request: Request,
        user: User = Depends(get_current_user),
    ) -> User:
        if role_satisfies(parse_role(user.role), roles, student_management):
            return user
        ip_address, user_agent = client_info(request)
        logger.warning("Role gate denied user %s (%s) on %s %s",
                       user.id, user.role, request.method, request.url.path)
        # background tasks are dropped when the request fails, write right away
        SideEffectSink().audit(
            AuditAction.UNAUTHORIZED_ACCESS_ATTEMPT,
            user_id=user.id,
            email=user.email,
            details={"path": request.url.path, "method": request.method,
                     "required": [r.value for r in roles]},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        raise Forbidden("No tienes permisos para realizar esta acción", user_id=user.id,
                        action="role_gate")

    return dependency


require_admin = require_roles(UserRole.ADMIN)
require_student_manager = require_roles(UserRole.ADMIN, student_management=True)
require_teacher = require_roles(UserRole.TEACHER)
require_student = require_roles(UserRole.STUDENT)
