"""
Authorization module for the Campus Virtual system.
Implements the role gate and the ownership/enrollment filter that every
handler applies before touching a resource.

RULES:
1. Never trust the client for role - always get from DB
2. Admin satisfies every gate; admin_director only the student-management ones
3. Nested resources are authorized through their owning subject
4. Existence is checked before permission (404 before 403)
5. Students write only once approved
"""
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional
from sqlalchemy.orm import Session

from config.settings import settings
from database import (
    User,
    UserRole,
    ApprovalStatus,
    Subject,
    StudentSubject,
    Conversation,
    ConversationParticipant,
    Message,
    utcnow,
)
from .exceptions import (
    Forbidden,
    AccountPending,
    AccountRejected,
    NotFound,
)


class Access(str, Enum):
    """Kind of access requested on a subject-scoped resource."""
    READ = "read"
    WRITE = "write"


def parse_role(value) -> Optional[UserRole]:
    """Map a stored role string to the closed enum, None when unknown."""
    try:
        return UserRole(value)
    except ValueError:
        return None


def role_satisfies(role: Optional[UserRole], allowed: Iterable[UserRole],
                   student_management: bool = False) -> bool:
    """
    Single source of truth for the role gate.

    Admin is a superset of every role. admin_director acts as admin only on
    student-management endpoints (pending list, approve, reject).
    """
    if role is None:
        return False
    if role is UserRole.ADMIN:
        return True
    if role is UserRole.ADMIN_DIRECTOR and student_management:
        return True
    return role in set(allowed)


class AuthorizationService:
    """
    Service for handling authorization checks.
    All role information is fetched from the database, never trusted from client.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> User:
        """
        Get user from database.

        Raises:
            NotFound: If user not found
        """
        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFound("Usuario no encontrado")
        return user

    def require_role(self, user: User, allowed: Iterable[UserRole],
                     student_management: bool = False) -> User:
        """
        Role gate: return the user when its role is allowed.

        Raises:
            Forbidden: If the role is not among the allowed ones
        """
        if not role_satisfies(parse_role(user.role), allowed, student_management):
            raise Forbidden(user_id=user.id, action="role_gate")
        return user

    def enforce_approved(self, user: User, action: str = None) -> None:
        """
        Approval-status gate. Non-students always pass.

        Raises:
            AccountPending: student awaiting approval
            AccountRejected: student rejected by an administrator
        """
        if parse_role(user.role) is not UserRole.STUDENT:
            return
        status = user.approval_status
        if status == ApprovalStatus.APPROVED.value:
            return
        if status == ApprovalStatus.REJECTED.value:
            raise AccountRejected(user_id=user.id, action=action)
        raise AccountPending(user_id=user.id, action=action)

    # ---------------- Subjects ----------------

    def get_subject(self, subject_id: int) -> Subject:
        """Active subject or NotFound."""
        subject = (
            self.db.query(Subject)
            .filter(Subject.id == subject_id, Subject.is_active.is_(True))
            .first()
        )
        if not subject:
            raise NotFound("Materia no encontrada")
        return subject

    def is_enrolled(self, student_id: int, subject_id: int) -> bool:
        return (
            self.db.query(StudentSubject.id)
            .filter(
                StudentSubject.student_id == student_id,
                StudentSubject.subject_id == subject_id,
                StudentSubject.is_active.is_(True),
            )
            .first()
            is not None
        )

    def check_subject_access(
        self,
        user: User,
        subject: Subject,
        access: Access,
        is_public: bool = False,
        message: str = None,
    ) -> None:
        """
        Ownership/enrollment filter, first match wins.

        1. admin           -> always
        2. teacher         -> owns the subject
        3. student         -> enrolled (or public resource) for read,
                              enrolled and approved for write
        4. anything else   -> Forbidden

        Raises:
            Forbidden / AccountPending / AccountRejected
        """
        role = parse_role(user.role)

        if role is UserRole.ADMIN:
            return

        if role is UserRole.TEACHER:
            if subject.teacher_id == user.id:
                return
            raise Forbidden(
                message or "No tienes permisos para gestionar esta materia",
                user_id=user.id,
                action=f"subject_{access.value}",
            )

        if role is UserRole.STUDENT:
            if access is Access.READ:
                if is_public or self.is_enrolled(user.id, subject.id):
                    return
                raise Forbidden(
                    message or "No estás inscrito en esta materia",
                    user_id=user.id,
                    action="subject_read",
                )
            self.enforce_approved(user, action="subject_write")
            if self.is_enrolled(user.id, subject.id):
                return
            raise Forbidden(
                message or "No estás inscrito en esta materia",
                user_id=user.id,
                action="subject_write",
            )

        raise Forbidden(
            message or "No tienes acceso a esta materia",
            user_id=user.id,
            action=f"subject_{access.value}",
        )

    def subject_for(self, user: User, subject_id: int, access: Access,
                    message: str = None) -> Subject:
        """Existence first, then the ownership/enrollment filter."""
        subject = self.get_subject(subject_id)
        self.check_subject_access(user, subject, access, message=message)
        return subject

    def owns_subject(self, user: User, subject: Subject) -> bool:
        """True for admin or the subject's teacher."""
        role = parse_role(user.role)
        return role is UserRole.ADMIN or (
            role is UserRole.TEACHER and subject.teacher_id == user.id
        )

    # ---------------- Conversations ----------------

    def participant_for(self, user: User,
                        conversation_id: int) -> Optional[ConversationParticipant]:
        """
        Conversation-scoped filter: active participant row required.
        Admins pass without one, in which case None is returned.

        Raises:
            NotFound: conversation does not exist
            Forbidden: caller is not an active participant
        """
        conversation = self.db.query(Conversation).filter(Conversation.id == conversation_id).first()
        if not conversation:
            raise NotFound("Conversación no encontrada")
        participant = (
            self.db.query(ConversationParticipant)
            .filter(
                ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.user_id == user.id,
                ConversationParticipant.is_active.is_(True),
            )
            .first()
        )
        if not participant and parse_role(user.role) is not UserRole.ADMIN:
            raise Forbidden("No tienes acceso a esta conversación", user_id=user.id,
                            action="conversation_access")
        return participant

    def enforce_message_owner(self, user: User, message: Message,
                              now: datetime = None) -> None:
        """
        Edit/delete rule: sender only, strictly inside the edit window.

        Raises:
            Forbidden: not the sender, or window elapsed
        """
        if message.sender_id != user.id:
            raise Forbidden("Solo podés modificar tus propios mensajes", user_id=user.id,
                            action="message_modify")
        window = timedelta(minutes=settings.message_edit_window_minutes)
        elapsed = (now or utcnow()) - message.created_at
        if elapsed >= window:
            raise Forbidden(
                f"Solo podés modificar un mensaje dentro de los "
                f"{settings.message_edit_window_minutes} minutos posteriores a su envío",
                user_id=user.id,
                action="message_modify",
            )


def get_authorization_service(db: Session) -> AuthorizationService:
    """Factory function to create AuthorizationService."""
    return AuthorizationService(db)
