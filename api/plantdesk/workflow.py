"""Ticket workflow engine.

Each public method performs one guarded transition. Checks run in a fixed
order: arguments, actor, ticket, actor requirement, source state. The write is
a compare-and-swap on the observed status, committed together with one history
row and one status-change comment. Only after the commit is a TransitionEvent
handed to the publisher; publishing problems are logged and never reach the
caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from .approvals import ApprovalResolver
from .errors import Conflict, Forbidden, InvalidArgument, NotFound
from .events import EventPublisher, TicketSnapshot, TransitionEvent
from .models import Person, Ticket
from .rbac import Actor, require_perm
from .schemas import TicketCreate
from .statuses import (
    TRANSITIONS,
    ActorRule,
    TicketStatus,
    TransitionKind,
    reject_target,
)
from .store import TicketStore, status_change_message, store_guard, utcnow

logger = logging.getLogger(__name__)

ACCEPT_NOTES = {
    TicketStatus.OPEN: "Ticket accepted by L2 and work started",
    TicketStatus.REJECTED_PENDING_L3_REVIEW: "Ticket accepted by L3 after L2 rejection",
    TicketStatus.REOPENED_IN_PROGRESS: "Reopened ticket accepted and work restarted",
}


PUCODE_PARTS = ("Plant", "Area", "Line", "Machine", "Number")


def check_pucode(pucode: str) -> str:
    """Validate a PLANT-AREA-LINE-MACHINE-NUMBER production-unit code."""
    parts = pucode.split("-")
    if len(parts) != len(PUCODE_PARTS):
        raise InvalidArgument("pucode must have exactly 5 parts separated by dashes (PLANT-AREA-LINE-MACHINE-NUMBER)")
    for name, part in zip(PUCODE_PARTS, parts):
        if not part.strip():
            raise InvalidArgument(f"{name} code in pucode cannot be empty")
    if not parts[-1].strip().isdigit():
        raise InvalidArgument("Number part of pucode must be numeric")
    return pucode.strip()


@dataclass(frozen=True)
class TransitionResult:
    ticket_id: int
    ticket_number: str
    old_status: Optional[TicketStatus]
    new_status: TicketStatus
    history_id: int
    assigned_to: Optional[int] = None


class WorkflowEngine:
    def __init__(
        self,
        db: Session,
        approvals: Optional[ApprovalResolver] = None,
        publisher: Optional[EventPublisher] = None,
        store: Optional[TicketStore] = None,
    ):
        self.db = db
        self.store = store or TicketStore(db)
        self.approvals = approvals or ApprovalResolver(db)
        self.publisher = publisher

    # ========== CREATION ==========

    def create_ticket(self, actor: Actor, payload: TicketCreate) -> TransitionResult:
        require_perm(actor, "tickets:save")
        pucode = check_pucode(payload.pucode) if payload.pucode else None
        with store_guard(self.db):
            self._require_actor(actor)
            area = self.store.get_area(payload.area_id)
            if not area:
                raise InvalidArgument(f"Area {payload.area_id} does not exist")
            plant_id = area.plant_id

            assignee_id = None
            if payload.suggested_assignee_id is not None:
                self._require_person(payload.suggested_assignee_id, "Suggested assignee")
                assignee_id = payload.suggested_assignee_id
            status = TicketStatus.ASSIGNED if assignee_id else TicketStatus.OPEN

            ticket_number = self.store.next_ticket_number()
            ticket = self.store.insert_ticket(
                Ticket(
                    ticket_number=ticket_number,
                    title=payload.title.strip(),
                    description=(payload.description or "").strip() or None,
                    severity_level=payload.severity_level,
                    priority=payload.priority,
                    area_id=payload.area_id,
                    plant_id=plant_id,
                    machine_id=payload.machine_id,
                    pu_id=payload.pu_id,
                    pucode=pucode,
                    reported_by=actor.person_id,
                    assigned_to=assignee_id,
                    status=status,
                    scheduled_complete=payload.scheduled_complete,
                    cost_avoidance=payload.cost_avoidance,
                    downtime_avoidance_hours=payload.downtime_avoidance_hours,
                    failure_mode_id=payload.failure_mode_id,
                    created_at=utcnow(),
                    updated_at=utcnow(),
                )
            )
            entry = self.store.add_history(
                ticket.id, None, status, actor.person_id, notes="Ticket created", to_user=assignee_id
            )
            self.db.commit()

        self.db.refresh(ticket)
        logger.info(f"Created ticket {ticket.ticket_number} in area {ticket.area_id} ({status.value})")
        if payload.notify:
            self._publish(
                TransitionEvent(
                    kind=TransitionKind.CREATE,
                    ticket=TicketSnapshot.from_ticket(ticket),
                    old_status=None,
                    new_status=status,
                    actor_id=actor.person_id,
                    history_id=entry.id,
                )
            )
        return TransitionResult(ticket.id, ticket.ticket_number, None, status, entry.id, assignee_id)

    def notify_created(self, ticket_id: int, actor: Actor) -> None:
        """Re-send the creation broadcast, e.g. once evidence images are uploaded."""
        require_perm(actor, "tickets:save")
        with store_guard(self.db):
            ticket = self._load(ticket_id, actor)
            if ticket.reported_by != actor.person_id:
                raise Forbidden("Only the requestor can resend the creation notification")
            if ticket.status not in (TicketStatus.OPEN, TicketStatus.ASSIGNED):
                raise Conflict(
                    f"Cannot resend the creation notification for a ticket in status {TicketStatus(ticket.status).value}"
                )
        self._publish(
            TransitionEvent(
                kind=TransitionKind.CREATE,
                ticket=TicketSnapshot.from_ticket(ticket),
                old_status=None,
                new_status=ticket.status,
                actor_id=ticket.reported_by,
            )
        )

    def add_comment(self, ticket_id: int, actor: Actor, body: str):
        require_perm(actor, "tickets:save")
        if not body or not body.strip():
            raise InvalidArgument("Comment body is required")
        with store_guard(self.db):
            self._load(ticket_id, actor)
            comment = self.store.add_comment(ticket_id, actor.person_id, body.strip())
            self.db.commit()
        self.db.refresh(comment)
        return comment

    # ========== TRANSITIONS ==========

    def assign(self, ticket_id: int, actor: Actor, assigned_to: Optional[int], notes: Optional[str] = None) -> TransitionResult:
        if assigned_to is None:
            raise InvalidArgument("assigned_to is required")
        with store_guard(self.db):
            ticket = self._prepare(TransitionKind.ASSIGN, ticket_id, actor)
            self._require_person(assigned_to, "Assignee")
            return self._commit(
                TransitionKind.ASSIGN,
                ticket,
                actor,
                TicketStatus.ASSIGNED,
                {"assigned_to": assigned_to},
                notes=notes or "Ticket assigned",
                comment_note=notes,
                to_user=assigned_to,
            )

    def accept(
        self,
        ticket_id: int,
        actor: Actor,
        scheduled_complete: Optional[datetime] = None,
        notes: Optional[str] = None,
    ) -> TransitionResult:
        if scheduled_complete is None:
            raise InvalidArgument("Scheduled completion date is required")
        with store_guard(self.db):
            ticket = self._prepare(TransitionKind.ACCEPT, ticket_id, actor)
            now = utcnow()
            return self._commit(
                TransitionKind.ACCEPT,
                ticket,
                actor,
                TicketStatus.IN_PROGRESS,
                {
                    "assigned_to": actor.person_id,
                    "accepted_at": now,
                    "accepted_by": actor.person_id,
                    "scheduled_complete": scheduled_complete,
                },
                notes=notes or ACCEPT_NOTES[ticket.status],
                comment_note=notes,
                details={"scheduled_complete": scheduled_complete},
            )

    def reject(self, ticket_id: int, actor: Actor, rejection_reason: Optional[str] = None) -> TransitionResult:
        with store_guard(self.db):
            ticket = self._load(ticket_id, actor)
            level = self._authorize(TransitionKind.REJECT, ticket, actor)
            self._require_source(TransitionKind.REJECT, ticket)
            target = reject_target(level)
            if target is TicketStatus.REJECTED_FINAL:
                default_notes = "Ticket rejected by L3 (final decision)"
            else:
                default_notes = "Ticket rejected by L2, escalated to L3 for review"
            return self._commit(
                TransitionKind.REJECT,
                ticket,
                actor,
                target,
                {
                    "rejected_at": utcnow(),
                    "rejected_by": actor.person_id,
                    "rejection_reason": rejection_reason,
                },
                notes=rejection_reason or default_notes,
                comment_note=rejection_reason,
            )

    def complete(
        self,
        ticket_id: int,
        actor: Actor,
        completion_notes: Optional[str] = None,
        cost_avoidance: Optional[float] = None,
        downtime_avoidance_hours: Optional[float] = None,
        failure_mode_id: Optional[int] = None,
    ) -> TransitionResult:
        if cost_avoidance is not None and cost_avoidance < 0:
            raise InvalidArgument("cost_avoidance cannot be negative")
        if downtime_avoidance_hours is not None and downtime_avoidance_hours < 0:
            raise InvalidArgument("downtime_avoidance_hours cannot be negative")
        with store_guard(self.db):
            ticket = self._prepare(TransitionKind.COMPLETE, ticket_id, actor)
            return self._commit(
                TransitionKind.COMPLETE,
                ticket,
                actor,
                TicketStatus.COMPLETED,
                {
                    "completed_at": utcnow(),
                    "completed_by": actor.person_id,
                    "cost_avoidance": cost_avoidance,
                    "downtime_avoidance_hours": downtime_avoidance_hours,
                    "failure_mode_id": failure_mode_id,
                },
                notes=completion_notes or "Job completed",
                comment_note=completion_notes,
                expected_assignee=actor.person_id,
            )

    def escalate(
        self,
        ticket_id: int,
        actor: Actor,
        escalated_to: Optional[int],
        escalation_reason: Optional[str] = None,
    ) -> TransitionResult:
        if escalated_to is None:
            raise InvalidArgument("escalated_to is required")
        with store_guard(self.db):
            ticket = self._prepare(TransitionKind.ESCALATE, ticket_id, actor)
            self._require_person(escalated_to, "Escalation target")
            return self._commit(
                TransitionKind.ESCALATE,
                ticket,
                actor,
                TicketStatus.ESCALATED,
                {
                    "escalated_at": utcnow(),
                    "escalated_by": actor.person_id,
                    "escalated_to": escalated_to,
                    "escalation_reason": escalation_reason,
                },
                notes=escalation_reason or "Ticket escalated to L3",
                comment_note=escalation_reason,
                to_user=escalated_to,
                expected_assignee=actor.person_id,
            )

    def close(
        self,
        ticket_id: int,
        actor: Actor,
        satisfaction_rating: Optional[int] = None,
        close_reason: Optional[str] = None,
    ) -> TransitionResult:
        if satisfaction_rating is not None and not 1 <= satisfaction_rating <= 5:
            raise InvalidArgument("satisfaction_rating must be between 1 and 5")
        with store_guard(self.db):
            ticket = self._prepare(TransitionKind.CLOSE, ticket_id, actor)
            return self._commit(
                TransitionKind.CLOSE,
                ticket,
                actor,
                TicketStatus.CLOSED,
                {
                    "closed_at": utcnow(),
                    "closed_by": actor.person_id,
                    "satisfaction_rating": satisfaction_rating,
                },
                notes=close_reason or "Ticket closed by requestor",
                comment_note=close_reason,
                details={"satisfaction_rating": satisfaction_rating},
            )

    def reopen(self, ticket_id: int, actor: Actor, reopen_reason: Optional[str] = None) -> TransitionResult:
        with store_guard(self.db):
            ticket = self._prepare(TransitionKind.REOPEN, ticket_id, actor)
            return self._commit(
                TransitionKind.REOPEN,
                ticket,
                actor,
                TicketStatus.REOPENED_IN_PROGRESS,
                {"reopened_at": utcnow(), "reopened_by": actor.person_id},
                notes=reopen_reason or "Ticket reopened by requestor",
                comment_note=reopen_reason,
            )

    def reassign(
        self,
        ticket_id: int,
        actor: Actor,
        assigned_to: Optional[int],
        reassignment_reason: Optional[str] = None,
    ) -> TransitionResult:
        if assigned_to is None:
            raise InvalidArgument("assigned_to is required")
        with store_guard(self.db):
            ticket = self._prepare(TransitionKind.REASSIGN, ticket_id, actor)
            assignee = self._require_person(assigned_to, "New assignee")
            return self._commit(
                TransitionKind.REASSIGN,
                ticket,
                actor,
                TicketStatus.OPEN,
                {"assigned_to": assigned_to},
                notes=f"Ticket reassigned to {assignee.full_name}: {reassignment_reason or 'Reassigned by L3'}",
                comment_note=reassignment_reason,
                to_user=assigned_to,
            )

    # ========== helpers ==========

    def _require_actor(self, actor: Actor) -> Person:
        person = self.store.get_person(actor.person_id)
        if not person:
            raise NotFound(f"Actor {actor.person_id} not found")
        return person

    def _require_person(self, person_id: int, role: str) -> Person:
        person = self.store.get_person(person_id)
        if not person:
            raise InvalidArgument(f"{role} {person_id} not found or inactive")
        return person

    def _load(self, ticket_id: int, actor: Actor) -> Ticket:
        self._require_actor(actor)
        ticket = self.store.get_ticket(ticket_id)
        if not ticket:
            raise NotFound(f"Ticket {ticket_id} not found")
        return ticket

    def _prepare(self, kind: TransitionKind, ticket_id: int, actor: Actor) -> Ticket:
        ticket = self._load(ticket_id, actor)
        self._authorize(kind, ticket, actor)
        self._require_source(kind, ticket)
        return ticket

    def _authorize(self, kind: TransitionKind, ticket: Ticket, actor: Actor) -> int:
        """Check the actor requirement for `kind`; returns the actor's area level."""
        require_perm(actor, "tickets:save")
        rule = TRANSITIONS[kind].actor
        level = 0
        if rule in (ActorRule.LEVEL_2, ActorRule.LEVEL_3):
            level = self.approvals.approval_level(actor.person_id, ticket.area_id)
            needed = 3 if rule is ActorRule.LEVEL_3 else 2
            if level < needed:
                logger.warning(
                    f"Person {actor.person_id} (L{level}) denied {kind.value} on {ticket.ticket_number}"
                )
                raise Forbidden(f"Approval level {needed} or higher in this area is required to {kind.value}")
        elif rule is ActorRule.ASSIGNEE and ticket.assigned_to != actor.person_id:
            raise Forbidden(f"Only the assigned user can {kind.value} this ticket")
        elif rule is ActorRule.REPORTER and ticket.reported_by != actor.person_id:
            raise Forbidden(f"Only the requestor can {kind.value} this ticket")
        return level

    def _require_source(self, kind: TransitionKind, ticket: Ticket) -> None:
        if ticket.status not in TRANSITIONS[kind].sources:
            raise Conflict(f"Cannot {kind.value} a ticket in status {TicketStatus(ticket.status).value}")

    def _commit(
        self,
        kind: TransitionKind,
        ticket: Ticket,
        actor: Actor,
        target: TicketStatus,
        changes: Dict[str, Any],
        notes: Optional[str],
        comment_note: Optional[str] = None,
        to_user: Optional[int] = None,
        expected_assignee: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> TransitionResult:
        old_status = TicketStatus(ticket.status)
        previous_assignee = ticket.assigned_to
        swapped = self.store.compare_and_swap(
            ticket.id, old_status, {"status": target, **changes}, expected_assignee=expected_assignee
        )
        if not swapped:
            self.db.rollback()
            logger.info(f"Lost race on {ticket.ticket_number}: {kind.value} from {old_status.value}")
            raise Conflict("Ticket status changed concurrently; reload and retry")

        entry = self.store.add_history(ticket.id, old_status, target, actor.person_id, notes, to_user)
        self.store.add_comment(
            ticket.id, actor.person_id, status_change_message(old_status, target, comment_note)
        )
        self.db.commit()
        self.db.refresh(ticket)

        logger.info(
            f"{ticket.ticket_number}: {kind.value} by {actor.person_id} "
            f"{old_status.value} -> {target.value} (history {entry.id})"
        )
        self._publish(
            TransitionEvent(
                kind=kind,
                ticket=TicketSnapshot.from_ticket(ticket),
                old_status=old_status,
                new_status=target,
                actor_id=actor.person_id,
                notes=comment_note,
                history_id=entry.id,
                previous_assignee=previous_assignee,
                details=details or {},
            )
        )
        return TransitionResult(ticket.id, ticket.ticket_number, old_status, target, entry.id, ticket.assigned_to)

    def _publish(self, event: TransitionEvent) -> None:
        if self.publisher is None:
            return
        try:
            self.publisher.publish(event)
        except Exception as e:
            logger.error(
                f"Failed to publish {event.kind.value} event for {event.ticket.ticket_number}: {e}"
            )
