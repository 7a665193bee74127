"""Events handed from the workflow engine to the notification side."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol

from .statuses import TicketStatus, TransitionKind


@dataclass(frozen=True)
class TicketSnapshot:
    """Committed ticket state, detached from any database session."""
    id: int
    ticket_number: str
    title: str
    area_id: int
    plant_id: int
    status: TicketStatus
    reported_by: int
    assigned_to: Optional[int] = None
    escalated_to: Optional[int] = None
    severity_level: str = "medium"
    priority: str = "normal"
    pucode: Optional[str] = None
    machine_id: Optional[int] = None
    scheduled_complete: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    escalation_reason: Optional[str] = None
    cost_avoidance: Optional[float] = None
    downtime_avoidance_hours: Optional[float] = None
    failure_mode_id: Optional[int] = None
    satisfaction_rating: Optional[int] = None

    @classmethod
    def from_ticket(cls, ticket) -> "TicketSnapshot":
        return cls(
            id=ticket.id,
            ticket_number=ticket.ticket_number,
            title=ticket.title,
            area_id=ticket.area_id,
            plant_id=ticket.plant_id,
            status=TicketStatus(ticket.status),
            reported_by=ticket.reported_by,
            assigned_to=ticket.assigned_to,
            escalated_to=ticket.escalated_to,
            severity_level=ticket.severity_level,
            priority=ticket.priority,
            pucode=ticket.pucode,
            machine_id=ticket.machine_id,
            scheduled_complete=ticket.scheduled_complete,
            rejection_reason=ticket.rejection_reason,
            escalation_reason=ticket.escalation_reason,
            cost_avoidance=ticket.cost_avoidance,
            downtime_avoidance_hours=ticket.downtime_avoidance_hours,
            failure_mode_id=ticket.failure_mode_id,
            satisfaction_rating=ticket.satisfaction_rating,
        )


@dataclass(frozen=True)
class TransitionEvent:
    kind: TransitionKind
    ticket: TicketSnapshot
    old_status: Optional[TicketStatus]
    new_status: TicketStatus
    actor_id: int
    notes: Optional[str] = None
    history_id: Optional[int] = None
    # assignee before the transition
    previous_assignee: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventPublisher(Protocol):
    def publish(self, event: TransitionEvent) -> None:
        ...
