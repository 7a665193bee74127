from contextlib import contextmanager

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from .approvals import ApprovalResolver
from .audit import write_audit
from .auth import current_actor
from .db import get_db
from .errors import Conflict, Forbidden, NotFound
from .rbac import Actor, require_perm
from .schemas import (
    AcceptIn,
    ApproverListOut,
    AssignIn,
    CloseIn,
    CommentCreate,
    CommentOut,
    CompleteIn,
    EscalateIn,
    HistoryOut,
    ReassignIn,
    RejectIn,
    ReopenIn,
    TicketCreate,
    TicketOut,
    TransitionOut,
)
from .store import TicketStore
from .workflow import TransitionResult, WorkflowEngine

router = APIRouter(prefix="/tickets", tags=["tickets"])

# failures worth keeping in the audit trail
AUDITED_ERRORS = (NotFound, Forbidden, Conflict)


def client_ip(request: Request) -> str | None:
    """Extract client IP from request."""
    return request.client.host if request.client else None


def get_engine(request: Request, db: Session = Depends(get_db)) -> WorkflowEngine:
    return WorkflowEngine(db, publisher=getattr(request.app.state, "notifier", None))


@contextmanager
def audited(db: Session, request: Request, actor: Actor, action: str, target: str):
    """Audit the attempt wrapped by this block, successful or not."""
    try:
        yield
    except AUDITED_ERRORS as e:
        write_audit(
            db,
            actor_id=actor.person_id, ip=client_ip(request),
            action=action, target=target,
            result="fail", reason=f"{e.code}: {e.message}",
        )
        raise
    write_audit(
        db,
        actor_id=actor.person_id, ip=client_ip(request),
        action=action, target=target,
        result="success", reason=None,
    )


def _out(result: TransitionResult) -> TransitionOut:
    return TransitionOut(
        ticket_id=result.ticket_id,
        ticket_number=result.ticket_number,
        old_status=result.old_status,
        new_status=result.new_status,
        history_id=result.history_id,
        assigned_to=result.assigned_to,
    )


def _viewable(db: Session, actor: Actor, ticket_id: int):
    require_perm(actor, "tickets:view")
    ticket = TicketStore(db).get_ticket(ticket_id)
    if not ticket:
        raise NotFound(f"Ticket {ticket_id} not found")
    return ticket


# ========== TICKET ENDPOINTS ==========

@router.post("", response_model=TicketOut)
async def create_ticket(
    request: Request,
    payload: TicketCreate,
    db: Session = Depends(get_db),
    engine: WorkflowEngine = Depends(get_engine),
    actor: Actor = Depends(current_actor),
):
    """Report a new abnormal finding. Requires tickets:save permission."""
    with audited(db, request, actor, "tickets:create", f"area:{payload.area_id}"):
        result = engine.create_ticket(actor, payload)
    return TicketStore(db).get_ticket(result.ticket_id)


@router.get("/approvers", response_model=ApproverListOut)
async def list_approvers(
    area_id: int,
    min_level: int = 2,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    """People holding an active grant of at least `min_level` in the area."""
    require_perm(actor, "tickets:view")
    approvers = ApprovalResolver(db).list_area_approvers(area_id, min_level)
    return {"approvers": approvers, "total": len(approvers)}


@router.get("/{ticket_id}", response_model=TicketOut)
async def get_ticket(
    ticket_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    return _viewable(db, actor, ticket_id)


@router.get("/{ticket_id}/history", response_model=list[HistoryOut])
async def get_history(
    ticket_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    _viewable(db, actor, ticket_id)
    return TicketStore(db).history(ticket_id)


@router.post("/{ticket_id}/notify")
async def notify_created(
    ticket_id: int,
    request: Request,
    db: Session = Depends(get_db),
    engine: WorkflowEngine = Depends(get_engine),
    actor: Actor = Depends(current_actor),
):
    """Re-send the new-ticket notification, e.g. after images finish uploading."""
    with audited(db, request, actor, "tickets:notify", f"ticket:{ticket_id}"):
        engine.notify_created(ticket_id, actor)
    return {"message": "Notification queued"}


# ========== TRANSITIONS ==========

@router.post("/{ticket_id}/assign", response_model=TransitionOut)
async def assign_ticket(
    ticket_id: int,
    payload: AssignIn,
    request: Request,
    db: Session = Depends(get_db),
    engine: WorkflowEngine = Depends(get_engine),
    actor: Actor = Depends(current_actor),
):
    with audited(db, request, actor, "tickets:assign", f"ticket:{ticket_id}"):
        result = engine.assign(ticket_id, actor, payload.assigned_to, payload.notes)
    return _out(result)


@router.post("/{ticket_id}/accept", response_model=TransitionOut)
async def accept_ticket(
    ticket_id: int,
    payload: AcceptIn,
    request: Request,
    db: Session = Depends(get_db),
    engine: WorkflowEngine = Depends(get_engine),
    actor: Actor = Depends(current_actor),
):
    with audited(db, request, actor, "tickets:accept", f"ticket:{ticket_id}"):
        result = engine.accept(ticket_id, actor, payload.scheduled_complete, payload.notes)
    return _out(result)


@router.post("/{ticket_id}/reject", response_model=TransitionOut)
async def reject_ticket(
    ticket_id: int,
    payload: RejectIn,
    request: Request,
    db: Session = Depends(get_db),
    engine: WorkflowEngine = Depends(get_engine),
    actor: Actor = Depends(current_actor),
):
    with audited(db, request, actor, "tickets:reject", f"ticket:{ticket_id}"):
        result = engine.reject(ticket_id, actor, payload.rejection_reason)
    return _out(result)


@router.post("/{ticket_id}/complete", response_model=TransitionOut)
async def complete_ticket(
    ticket_id: int,
    payload: CompleteIn,
    request: Request,
    db: Session = Depends(get_db),
    engine: WorkflowEngine = Depends(get_engine),
    actor: Actor = Depends(current_actor),
):
    with audited(db, request, actor, "tickets:complete", f"ticket:{ticket_id}"):
        result = engine.complete(
            ticket_id,
            actor,
            completion_notes=payload.completion_notes,
            cost_avoidance=payload.cost_avoidance,
            downtime_avoidance_hours=payload.downtime_avoidance_hours,
            failure_mode_id=payload.failure_mode_id,
        )
    return _out(result)


@router.post("/{ticket_id}/escalate", response_model=TransitionOut)
async def escalate_ticket(
    ticket_id: int,
    payload: EscalateIn,
    request: Request,
    db: Session = Depends(get_db),
    engine: WorkflowEngine = Depends(get_engine),
    actor: Actor = Depends(current_actor),
):
    with audited(db, request, actor, "tickets:escalate", f"ticket:{ticket_id}"):
        result = engine.escalate(ticket_id, actor, payload.escalated_to, payload.escalation_reason)
    return _out(result)


@router.post("/{ticket_id}/close", response_model=TransitionOut)
async def close_ticket(
    ticket_id: int,
    payload: CloseIn,
    request: Request,
    db: Session = Depends(get_db),
    engine: WorkflowEngine = Depends(get_engine),
    actor: Actor = Depends(current_actor),
):
    with audited(db, request, actor, "tickets:close", f"ticket:{ticket_id}"):
        result = engine.close(ticket_id, actor, payload.satisfaction_rating, payload.close_reason)
    return _out(result)


@router.post("/{ticket_id}/reopen", response_model=TransitionOut)
async def reopen_ticket(
    ticket_id: int,
    payload: ReopenIn,
    request: Request,
    db: Session = Depends(get_db),
    engine: WorkflowEngine = Depends(get_engine),
    actor: Actor = Depends(current_actor),
):
    with audited(db, request, actor, "tickets:reopen", f"ticket:{ticket_id}"):
        result = engine.reopen(ticket_id, actor, payload.reopen_reason)
    return _out(result)


@router.post("/{ticket_id}/reassign", response_model=TransitionOut)
async def reassign_ticket(
    ticket_id: int,
    payload: ReassignIn,
    request: Request,
    db: Session = Depends(get_db),
    engine: WorkflowEngine = Depends(get_engine),
    actor: Actor = Depends(current_actor),
):
    with audited(db, request, actor, "tickets:reassign", f"ticket:{ticket_id}"):
        result = engine.reassign(ticket_id, actor, payload.assigned_to, payload.reassignment_reason)
    return _out(result)


# ========== COMMENT ENDPOINTS ==========

@router.post("/{ticket_id}/comments", response_model=CommentOut)
async def add_comment(
    ticket_id: int,
    payload: CommentCreate,
    engine: WorkflowEngine = Depends(get_engine),
    actor: Actor = Depends(current_actor),
):
    """Add a free-text comment to a ticket. Requires tickets:save permission."""
    return engine.add_comment(ticket_id, actor, payload.body)


@router.get("/{ticket_id}/comments", response_model=list[CommentOut])
async def list_comments(
    ticket_id: int,
    db: Session = Depends(get_db),
    actor: Actor = Depends(current_actor),
):
    _viewable(db, actor, ticket_id)
    return TicketStore(db).comments(ticket_id)
