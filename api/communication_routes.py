"""
API routes for conversations, notifications and support tickets.
"""
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from database import get_db, User
from services import messaging, notifications, support
from services.sink import SideEffectSink
from .deps import get_current_user, get_sink, require_admin
from .schemas import (
    ok,
    SuccessResponse,
    ConversationCreateRequest,
    ParticipantsRequest,
    MessageCreateRequest,
    MessageUpdateRequest,
    ReactionRequest,
    NotificationCreateRequest,
    TicketCreateRequest,
    TicketUpdateRequest,
)


# Router for conversations and messages
conversations_router = APIRouter(prefix="/api/conversations", tags=["Messaging"])

# Router for the notification inbox
notifications_router = APIRouter(prefix="/api/notifications", tags=["Notifications"])

# Router for support tickets
support_router = APIRouter(prefix="/api/support", tags=["Support"])


# ============== Conversations ==============

@conversations_router.get("", response_model=SuccessResponse)
def list_conversations(user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    return ok(messaging.list_conversations(db, user))


@conversations_router.post("", response_model=SuccessResponse, status_code=201)
def create_conversation(body: ConversationCreateRequest,
                        user: User = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    return ok(messaging.create_conversation(db, user, body.participant_ids, body.title, body.type))


@conversations_router.get("/unread-count", response_model=SuccessResponse)
def unread_messages(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok({"unread_count": messaging.total_unread(db, user)})


@conversations_router.get("/{conversation_id}", response_model=SuccessResponse)
def get_conversation(conversation_id: int, user: User = Depends(get_current_user),
                     db: Session = Depends(get_db)):
    return ok(messaging.get_conversation(db, user, conversation_id))


@conversations_router.post("/{conversation_id}/participants", response_model=SuccessResponse)
def add_participants(conversation_id: int, body: ParticipantsRequest,
                     user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(messaging.add_participants(db, user, conversation_id, body.user_ids))


@conversations_router.delete("/{conversation_id}/participants/{user_id}",
                             response_model=SuccessResponse)
def remove_participant(conversation_id: int, user_id: int,
                       user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    messaging.remove_participant(db, user, conversation_id, user_id)
    return ok(message="Participante eliminado")


@conversations_router.post("/{conversation_id}/read", response_model=SuccessResponse)
def mark_read(conversation_id: int, user: User = Depends(get_current_user),
              db: Session = Depends(get_db)):
    messaging.mark_conversation_read(db, user, conversation_id)
    return ok(message="Conversación marcada como leída")


# ============== Messages ==============

@conversations_router.get("/{conversation_id}/messages", response_model=SuccessResponse)
def list_messages(conversation_id: int, limit: int = 50, before_id: Optional[int] = None,
                  user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(messaging.list_messages(db, user, conversation_id, limit=limit, before_id=before_id))


@conversations_router.post("/{conversation_id}/messages", response_model=SuccessResponse,
                           status_code=201)
def send_message(conversation_id: int, body: MessageCreateRequest,
                 user: User = Depends(get_current_user), db: Session = Depends(get_db),
                 sink: SideEffectSink = Depends(get_sink)):
    return ok(messaging.send_message(db, user, conversation_id, body.content,
                                     reply_to_id=body.reply_to_id, sink=sink))


@conversations_router.post("/{conversation_id}/attachments", response_model=SuccessResponse,
                           status_code=201)
def send_attachment(
    conversation_id: int,
    content: Optional[str] = Form(None),
    file: UploadFile = File(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    sink: SideEffectSink = Depends(get_sink),
):
    data = file.file.read()
    message_type = "image" if (file.content_type or "").startswith("image/") else "file"
    return ok(messaging.send_message(db, user, conversation_id, content or "",
                                     message_type=message_type, file_name=file.filename,
                                     data=data, mime_type=file.content_type, sink=sink))


@conversations_router.put("/{conversation_id}/messages/{message_id}",
                          response_model=SuccessResponse)
def edit_message(conversation_id: int, message_id: int, body: MessageUpdateRequest,
                 user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(messaging.edit_message(db, user, conversation_id, message_id, body.content),
              "Mensaje editado")


@conversations_router.delete("/{conversation_id}/messages/{message_id}",
                             response_model=SuccessResponse)
def delete_message(conversation_id: int, message_id: int,
                   user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    messaging.delete_message(db, user, conversation_id, message_id)
    return ok(message="Mensaje eliminado")


@conversations_router.post("/{conversation_id}/messages/{message_id}/reactions",
                           response_model=SuccessResponse)
def react(conversation_id: int, message_id: int, body: ReactionRequest,
          user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(messaging.toggle_reaction(db, user, conversation_id, message_id, body.emoji))


# ============== Notifications ==============

@notifications_router.get("", response_model=SuccessResponse)
def list_notifications(unread_only: bool = False, page: int = 1, limit: int = 20,
                       user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    return ok(notifications.list_notifications(db, user, unread_only=unread_only,
                                               page=page, limit=limit))


@notifications_router.get("/unread-count", response_model=SuccessResponse)
def notification_count(user: User = Depends(get_current_user),
                       db: Session = Depends(get_db)):
    return ok({"unread_count": notifications.unread_count(db, user)})


@notifications_router.get("/security", response_model=SuccessResponse)
def security_notifications(limit: int = 20, user: User = Depends(get_current_user),
                           db: Session = Depends(get_db)):
    return ok(notifications.security_notifications(db, user, limit=limit))


@notifications_router.post("", response_model=SuccessResponse, status_code=201)
def create_notification(body: NotificationCreateRequest,
                        user: User = Depends(get_current_user),
                        db: Session = Depends(get_db)):
    return ok(notifications.create_notification(db, user, body.user_id, body.title, body.message,
                                                type=body.type, action_url=body.action_url,
                                                metadata=body.metadata))


@notifications_router.put("/read-all", response_model=SuccessResponse)
def mark_all_read(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return ok(notifications.mark_all_read(db, user),
              "Todas las notificaciones marcadas como leídas")


@notifications_router.put("/{notification_id}/read", response_model=SuccessResponse)
def mark_notification_read(notification_id: int, user: User = Depends(get_current_user),
                           db: Session = Depends(get_db)):
    return ok(notifications.mark_read(db, user, notification_id))


# ============== Support ==============

@support_router.post("/tickets", response_model=SuccessResponse, status_code=201)
def create_ticket(body: TicketCreateRequest, user: User = Depends(get_current_user),
                  db: Session = Depends(get_db)):
    return ok(support.create_ticket(db, user, body.subject, body.description, body.category,
                                    body.screenshot_url), "Ticket creado")


@support_router.get("/tickets", response_model=SuccessResponse)
def list_tickets(status: Optional[str] = None, user: User = Depends(get_current_user),
                 db: Session = Depends(get_db)):
    return ok(support.list_tickets(db, user, status))


@support_router.put("/tickets/{ticket_id}", response_model=SuccessResponse)
def update_ticket(ticket_id: int, body: TicketUpdateRequest,
                  current: User = Depends(require_admin), db: Session = Depends(get_db),
                  sink: SideEffectSink = Depends(get_sink)):
    return ok(support.update_ticket(db, current, ticket_id, body.model_dump(exclude_unset=True),
                                    sink=sink), "Ticket actualizado")
