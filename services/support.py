"""
Support ticket operations.
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from database import User, UserRole, SupportTicket, TicketStatus
from .authorization import parse_role
from .exceptions import NotFound, ValidationError
from .sink import SideEffectSink

TICKET_CATEGORIES = ("technical", "account", "academic", "content", "other")
TICKET_PRIORITIES = ("low", "normal", "high", "urgent")

STATUS_LABELS = {
    TicketStatus.OPEN.value: "abierto",
    TicketStatus.IN_PROGRESS.value: "en progreso",
    TicketStatus.RESOLVED.value: "resuelto",
    TicketStatus.CLOSED.value: "cerrado",
}


def create_ticket(db: Session, user: User, subject: str, description: str, category: str,
                  screenshot_url: Optional[str] = None) -> Dict[str, Any]:
    """
    Raises:
        ValidationError: subject, description or category missing or unknown category
    """
    if not subject or not description or not category:
        raise ValidationError("Asunto, descripción y categoría son requeridos")
    if category not in TICKET_CATEGORIES:
        raise ValidationError("Categoría inválida", "category")
    ticket = SupportTicket(
        user_id=user.id,
        subject=subject.strip(),
        description=description.strip(),
        category=category,
        screenshot_url=screenshot_url,
    )
    db.add(ticket)
    db.commit()
    db.refresh(ticket)
    return ticket.to_dict()


def list_tickets(db: Session, user: User, status: Optional[str] = None) -> List[Dict[str, Any]]:
    """Admins see every ticket, everybody else their own."""
    query = db.query(SupportTicket)
    if parse_role(user.role) is not UserRole.ADMIN:
        query = query.filter(SupportTicket.user_id == user.id)
    if status:
        if status not in STATUS_LABELS:
            raise ValidationError("Estado inválido", "status")
        query = query.filter(SupportTicket.status == status)
    tickets = query.order_by(SupportTicket.created_at.desc(), SupportTicket.id.desc()).all()
    return [t.to_dict() for t in tickets]


def update_ticket(db: Session, admin: User, ticket_id: int, changes: Dict[str, Any],
                  sink: SideEffectSink = None) -> Dict[str, Any]:
    ticket = db.query(SupportTicket).filter(SupportTicket.id == ticket_id).first()
    if not ticket:
        raise NotFound("Ticket no encontrado")

    if changes.get("status") is not None:
        if changes["status"] not in STATUS_LABELS:
            raise ValidationError("Estado inválido", "status")
        ticket.status = changes["status"]
        if ticket.status in (TicketStatus.RESOLVED.value, TicketStatus.CLOSED.value):
            ticket.resolved_by = admin.id
    if changes.get("priority") is not None:
        if changes["priority"] not in TICKET_PRIORITIES:
            raise ValidationError("Prioridad inválida", "priority")
        ticket.priority = changes["priority"]
    if changes.get("admin_response") is not None:
        ticket.admin_response = changes["admin_response"]
    db.commit()
    db.refresh(ticket)

    (sink or SideEffectSink()).notify(
        ticket.user_id, "Actualización de tu ticket",
        f"Tu ticket \"{ticket.subject}\" está {STATUS_LABELS[ticket.status]}.",
        type="support", sender_id=admin.id,
        action_url=f"/campus/support/{ticket.id}",
    )
    return ticket.to_dict()
