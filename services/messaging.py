"""
Messaging tools: conversations, participants, messages and reactions.

Everything here is scoped to a conversation rather than a subject: the
caller must be an active participant (admins excepted), and edit/delete of a
message is limited to its sender inside the edit window.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from database import (
    User, UserRole, Conversation, ConversationParticipant, Message, MessageReaction, utcnow
)
from .authorization import AuthorizationService, parse_role
from .exceptions import Forbidden, NotFound, ValidationError
from .sink import SideEffectSink
from .storage import ObjectStorage, get_storage

logger = logging.getLogger(__name__)

CONVERSATION_TYPES = ("direct", "group")
MESSAGE_TYPES = ("text", "file", "image")


def _active_participants(db: Session, conversation_id: int) -> List[ConversationParticipant]:
    return (
        db.query(ConversationParticipant)
        .filter(ConversationParticipant.conversation_id == conversation_id,
                ConversationParticipant.is_active.is_(True))
        .all()
    )


def _unread_count(db: Session, participant: ConversationParticipant) -> int:
    query = db.query(func.count(Message.id)).filter(
        Message.conversation_id == participant.conversation_id,
        Message.is_deleted.is_(False),
        Message.sender_id != participant.user_id,
    )
    if participant.last_read_at is not None:
        query = query.filter(Message.created_at > participant.last_read_at)
    return query.scalar()


def _conversation_dict(db: Session, conversation: Conversation,
                       participant: Optional[ConversationParticipant] = None) -> Dict[str, Any]:
    data = conversation.to_dict()
    data["participants"] = [
        {"user_id": p.user_id, "name": p.user.name if p.user else None}
        for p in _active_participants(db, conversation.id)
    ]
    last = (
        db.query(Message)
        .filter(Message.conversation_id == conversation.id, Message.is_deleted.is_(False))
        .order_by(Message.created_at.desc(), Message.id.desc())
        .first()
    )
    data["last_message"] = last.to_dict() if last else None
    data["unread_count"] = _unread_count(db, participant) if participant else 0
    return data


# ---------------- Conversations ----------------

def list_conversations(db: Session, user: User) -> List[Dict[str, Any]]:
    participations = (
        db.query(ConversationParticipant)
        .join(Conversation, Conversation.id == ConversationParticipant.conversation_id)
        .filter(ConversationParticipant.user_id == user.id,
                ConversationParticipant.is_active.is_(True))
        .order_by(Conversation.updated_at.desc(), Conversation.id.desc())
        .all()
    )
    return [_conversation_dict(db, p.conversation, p) for p in participations]


def get_conversation(db: Session, user: User, conversation_id: int) -> Dict[str, Any]:
    participant = AuthorizationService(db).participant_for(user, conversation_id)
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    return _conversation_dict(db, conversation, participant)


def _existing_users(db: Session, user_ids) -> List[int]:
    ids = set(user_ids)
    found = {
        row[0]
        for row in db.query(User.id).filter(User.id.in_(ids), User.is_active.is_(True)).all()
    }
    missing = sorted(ids - found)
    if missing:
        raise ValidationError(f"Usuarios no encontrados: {missing}", "participant_ids")
    return sorted(found)


def create_conversation(db: Session, user: User, participant_ids: List[int],
                        title: Optional[str] = None,
                        type: str = "direct") -> Dict[str, Any]:
    """
    Start a conversation. The creator is always a participant. A direct
    conversation with the same other user is reused.

    Raises:
        AccountPending / AccountRejected: student not approved
        ValidationError: bad type, no other participants, unknown users
    """
    AuthorizationService(db).enforce_approved(user, action="create_conversation")
    if type not in CONVERSATION_TYPES:
        raise ValidationError("Tipo de conversación inválido", "type")
    others = [uid for uid in _existing_users(db, participant_ids) if uid != user.id]
    if not others:
        raise ValidationError("La conversación necesita al menos otro participante",
                              "participant_ids")
    if type == "direct":
        if len(others) != 1:
            raise ValidationError("Una conversación directa tiene exactamente dos participantes",
                                  "participant_ids")
        existing = _find_direct(db, user.id, others[0])
        if existing:
            return get_conversation(db, user, existing.id)

    conversation = Conversation(title=title, type=type, created_by=user.id)
    db.add(conversation)
    db.flush()
    for uid in [user.id] + others:
        db.add(ConversationParticipant(conversation_id=conversation.id, user_id=uid))
    db.commit()
    db.refresh(conversation)
    return get_conversation(db, user, conversation.id)


def _find_direct(db: Session, user_a: int, user_b: int) -> Optional[Conversation]:
    mine = (
        db.query(ConversationParticipant.conversation_id)
        .filter(ConversationParticipant.user_id == user_a,
                ConversationParticipant.is_active.is_(True))
    )
    return (
        db.query(Conversation)
        .join(ConversationParticipant, ConversationParticipant.conversation_id == Conversation.id)
        .filter(Conversation.type == "direct",
                Conversation.id.in_(mine),
                ConversationParticipant.user_id == user_b,
                ConversationParticipant.is_active.is_(True))
        .first()
    )


def add_participants(db: Session, user: User, conversation_id: int,
                     user_ids: List[int]) -> Dict[str, Any]:
    """Any participant may add people to a group conversation."""
    auth = AuthorizationService(db)
    auth.participant_for(user, conversation_id)
    auth.enforce_approved(user, action="add_participants")
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if conversation.type != "group":
        raise ValidationError("Solo se pueden agregar participantes a conversaciones grupales")
    for uid in _existing_users(db, user_ids):
        row = (
            db.query(ConversationParticipant)
            .filter(ConversationParticipant.conversation_id == conversation.id,
                    ConversationParticipant.user_id == uid)
            .first()
        )
        if row:
            row.is_active = True
        else:
            db.add(ConversationParticipant(conversation_id=conversation.id, user_id=uid))
    db.commit()
    return get_conversation(db, user, conversation.id)


def remove_participant(db: Session, user: User, conversation_id: int, user_id: int) -> None:
    """
    Participants may leave. Removing someone else is reserved to the
    conversation's creator or an admin.
    """
    AuthorizationService(db).participant_for(user, conversation_id)
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if user_id != user.id and conversation.created_by != user.id \
            and parse_role(user.role) is not UserRole.ADMIN:
        raise Forbidden("Solo el creador de la conversación puede quitar participantes",
                        user_id=user.id, action="remove_participant")
    row = (
        db.query(ConversationParticipant)
        .filter(ConversationParticipant.conversation_id == conversation.id,
                ConversationParticipant.user_id == user_id,
                ConversationParticipant.is_active.is_(True))
        .first()
    )
    if not row:
        raise NotFound("Participante no encontrado")
    row.is_active = False
    db.commit()


# ---------------- Messages ----------------

def _get_message(db: Session, conversation_id: int, message_id: int) -> Message:
    message = (
        db.query(Message)
        .filter(Message.id == message_id, Message.conversation_id == conversation_id)
        .first()
    )
    if not message:
        raise NotFound("Mensaje no encontrado")
    return message


def list_messages(db: Session, user: User, conversation_id: int, limit: int = 50,
                  before_id: Optional[int] = None) -> List[Dict[str, Any]]:
    """Oldest first, at most `limit` messages before `before_id`."""
    AuthorizationService(db).participant_for(user, conversation_id)
    query = db.query(Message).filter(Message.conversation_id == conversation_id)
    if before_id is not None:
        query = query.filter(Message.id < before_id)
    rows = query.order_by(Message.created_at.desc(), Message.id.desc()).limit(min(limit, 200)).all()
    return [m.to_dict() for m in reversed(rows)]


def send_message(
    db: Session,
    user: User,
    conversation_id: int,
    content: str,
    reply_to_id: Optional[int] = None,
    message_type: str = "text",
    file_name: Optional[str] = None,
    data: Optional[bytes] = None,
    mime_type: Optional[str] = None,
    storage: ObjectStorage = None,
    sink: SideEffectSink = None,
) -> Dict[str, Any]:
    """
    Raises:
        NotFound: conversation, or reply target outside it
        Forbidden: not a participant
        AccountPending / AccountRejected: student not approved
        ValidationError: empty message
    """
    auth = AuthorizationService(db)
    auth.participant_for(user, conversation_id)
    auth.enforce_approved(user, action="send_message")

    content = (content or "").strip()
    if not content and not data:
        raise ValidationError("El mensaje no puede estar vacío", "content")
    if message_type not in MESSAGE_TYPES:
        raise ValidationError("Tipo de mensaje inválido", "message_type")
    if reply_to_id is not None:
        _get_message(db, conversation_id, reply_to_id)

    message = Message(
        conversation_id=conversation_id,
        sender_id=user.id,
        content=content or (file_name or ""),
        message_type=message_type,
        reply_to_id=reply_to_id,
    )
    if data:
        stored = (storage or get_storage()).upload("chat-files", conversation_id, file_name,
                                                   data, mime_type)
        message.file_url = stored.url
        message.file_name = stored.file_name
        if message_type == "text":
            message.message_type = "file"
    db.add(message)
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    conversation.updated_at = utcnow()
    db.commit()
    db.refresh(message)

    sink = sink or SideEffectSink()
    for participant in _active_participants(db, conversation_id):
        if participant.user_id == user.id:
            continue
        sink.notify(participant.user_id, "Nuevo mensaje",
                    f"{user.name}: {message.content[:100]}",
                    type="message", sender_id=user.id,
                    action_url=f"/campus/messages/{conversation_id}")
    return message.to_dict()


def edit_message(db: Session, user: User, conversation_id: int, message_id: int,
                 content: str, now: datetime = None) -> Dict[str, Any]:
    auth = AuthorizationService(db)
    auth.participant_for(user, conversation_id)
    auth.enforce_approved(user, action="edit_message")
    message = _get_message(db, conversation_id, message_id)
    if message.is_deleted:
        raise NotFound("Mensaje no encontrado")
    auth.enforce_message_owner(user, message, now=now)
    content = (content or "").strip()
    if not content:
        raise ValidationError("El mensaje no puede estar vacío", "content")
    message.content = content
    message.is_edited = True
    message.edited_at = now or utcnow()
    db.commit()
    db.refresh(message)
    return message.to_dict()


def delete_message(db: Session, user: User, conversation_id: int, message_id: int,
                   now: datetime = None) -> None:
    """Soft delete: only the `is_deleted` flag changes."""
    auth = AuthorizationService(db)
    auth.participant_for(user, conversation_id)
    auth.enforce_approved(user, action="delete_message")
    message = _get_message(db, conversation_id, message_id)
    if message.is_deleted:
        return
    auth.enforce_message_owner(user, message, now=now)
    message.is_deleted = True
    db.commit()


def toggle_reaction(db: Session, user: User, conversation_id: int, message_id: int,
                    emoji: str) -> Dict[str, Any]:
    auth = AuthorizationService(db)
    auth.participant_for(user, conversation_id)
    auth.enforce_approved(user, action="react")
    message = _get_message(db, conversation_id, message_id)
    emoji = (emoji or "").strip()
    if not emoji:
        raise ValidationError("El emoji es requerido", "emoji")
    existing = (
        db.query(MessageReaction)
        .filter(MessageReaction.message_id == message.id,
                MessageReaction.user_id == user.id,
                MessageReaction.emoji == emoji)
        .first()
    )
    if existing:
        db.delete(existing)
    else:
        db.add(MessageReaction(message_id=message.id, user_id=user.id, emoji=emoji))
    db.commit()
    db.refresh(message)
    return message.to_dict()


def mark_conversation_read(db: Session, user: User, conversation_id: int) -> None:
    participant = AuthorizationService(db).participant_for(user, conversation_id)
    if participant is None:
        return
    participant.last_read_at = utcnow()
    db.commit()


def total_unread(db: Session, user: User) -> int:
    participations = (
        db.query(ConversationParticipant)
        .filter(ConversationParticipant.user_id == user.id,
                ConversationParticipant.is_active.is_(True))
        .all()
    )
    return sum(_unread_count(db, p) for p in participations)
