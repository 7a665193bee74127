from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

from .statuses import TicketStatus


# Ticket schemas
class TicketCreate(BaseModel):
    """Schema for reporting a new abnormal finding."""
    title: str = Field(min_length=3, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    area_id: int
    machine_id: Optional[int] = None
    pu_id: Optional[int] = None
    pucode: Optional[str] = Field(None, max_length=100)
    severity_level: Literal["low", "medium", "high", "critical"] = "medium"
    priority: Literal["low", "normal", "high", "urgent"] = "normal"
    cost_avoidance: Optional[float] = Field(None, ge=0)
    downtime_avoidance_hours: Optional[float] = Field(None, ge=0)
    failure_mode_id: Optional[int] = None
    suggested_assignee_id: Optional[int] = None
    scheduled_complete: Optional[datetime] = None
    # hold the creation broadcast until evidence images are uploaded
    notify: bool = True


class TicketOut(BaseModel):
    """Schema for ticket response output."""
    id: int
    ticket_number: str
    title: str
    description: Optional[str] = None
    status: TicketStatus
    severity_level: str
    priority: str
    area_id: int
    plant_id: int
    machine_id: Optional[int] = None
    pu_id: Optional[int] = None
    pucode: Optional[str] = None
    reported_by: int
    assigned_to: Optional[int] = None
    scheduled_complete: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    accepted_by: Optional[int] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[int] = None
    completed_at: Optional[datetime] = None
    completed_by: Optional[int] = None
    escalated_at: Optional[datetime] = None
    escalated_by: Optional[int] = None
    escalated_to: Optional[int] = None
    escalation_reason: Optional[str] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[int] = None
    reopened_at: Optional[datetime] = None
    reopened_by: Optional[int] = None
    rejection_reason: Optional[str] = None
    cost_avoidance: Optional[float] = None
    downtime_avoidance_hours: Optional[float] = None
    failure_mode_id: Optional[int] = None
    satisfaction_rating: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Transition payloads. Required workflow fields are validated by the engine
# so that direct callers and HTTP callers get the same InvalidArgument.
class AssignIn(BaseModel):
    assigned_to: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=500)


class AcceptIn(BaseModel):
    scheduled_complete: Optional[datetime] = None
    notes: Optional[str] = Field(None, max_length=500)


class RejectIn(BaseModel):
    rejection_reason: Optional[str] = Field(None, max_length=500)


class CompleteIn(BaseModel):
    completion_notes: Optional[str] = Field(None, max_length=500)
    cost_avoidance: Optional[float] = None
    downtime_avoidance_hours: Optional[float] = None
    failure_mode_id: Optional[int] = None


class EscalateIn(BaseModel):
    escalated_to: Optional[int] = None
    escalation_reason: Optional[str] = Field(None, max_length=500)


class CloseIn(BaseModel):
    close_reason: Optional[str] = Field(None, max_length=500)
    satisfaction_rating: Optional[int] = None


class ReopenIn(BaseModel):
    reopen_reason: Optional[str] = Field(None, max_length=500)


class ReassignIn(BaseModel):
    assigned_to: Optional[int] = None
    reassignment_reason: Optional[str] = Field(None, max_length=500)


class TransitionOut(BaseModel):
    """Result of a successful transition."""
    ticket_id: int
    ticket_number: str
    old_status: Optional[TicketStatus] = None
    new_status: TicketStatus
    history_id: int
    assigned_to: Optional[int] = None


class HistoryOut(BaseModel):
    id: int
    ticket_id: int
    old_status: Optional[TicketStatus] = None
    new_status: TicketStatus
    changed_by: int
    to_user: Optional[int] = None
    notes: Optional[str] = None
    changed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Comment schemas
class CommentCreate(BaseModel):
    """Schema for creating a comment."""
    body: str = Field(min_length=1, max_length=2000)


class CommentOut(BaseModel):
    """Schema for comment response."""
    id: int
    ticket_id: int
    user_id: int
    comment: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ApproverOut(BaseModel):
    id: int
    full_name: str
    email: Optional[str] = None

    class Config:
        from_attributes = True


class ApproverListOut(BaseModel):
    approvers: List[ApproverOut]
    total: int
