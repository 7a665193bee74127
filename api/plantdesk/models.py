from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates
from sqlalchemy.sql import func

from .db import Base
from .statuses import TicketStatus

StatusType = Enum(
    TicketStatus,
    name="ticket_status",
    native_enum=False,
    length=50,
    values_callable=lambda enum: [member.value for member in enum],
    validate_strings=True,
)


class Plant(Base):
    __tablename__ = "plants"
    id = Column(Integer, primary_key=True)
    code = Column(String(20), nullable=False, unique=True)
    name = Column(String(200), nullable=False)


class Area(Base):
    __tablename__ = "areas"
    id = Column(Integer, primary_key=True)
    plant_id = Column(Integer, ForeignKey("plants.id"), nullable=False, index=True)
    code = Column(String(20), nullable=False)
    name = Column(String(200), nullable=False)

    plant = relationship("Plant")


class Person(Base):
    __tablename__ = "persons"
    id = Column(Integer, primary_key=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    display_name = Column(String(200), nullable=True)
    email = Column(String(256), nullable=True)
    chat_user_id = Column(String(64), nullable=True)  # U + 32 hex
    is_active = Column(Boolean, nullable=False, default=True)

    @property
    def full_name(self) -> str:
        if self.display_name and self.display_name.strip():
            return self.display_name.strip()
        combined = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return combined or f"User {self.id}"


class ApprovalGrant(Base):
    __tablename__ = "ticket_approvals"
    __table_args__ = (UniqueConstraint("person_id", "area_id", name="uq_approval_person_area"),)
    id = Column(Integer, primary_key=True)
    person_id = Column(Integer, ForeignKey("persons.id"), nullable=False, index=True)
    area_id = Column(Integer, ForeignKey("areas.id"), nullable=False, index=True)
    approval_level = Column(Integer, nullable=False)  # 1/2/3
    is_active = Column(Boolean, nullable=False, default=True)

    person = relationship("Person")


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(Integer, primary_key=True, index=True)
    ticket_number = Column(String(20), nullable=False, unique=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    severity_level = Column(String(20), nullable=False, default="medium")
    priority = Column(String(20), nullable=False, default="normal")

    area_id = Column(Integer, ForeignKey("areas.id"), nullable=False, index=True)
    plant_id = Column(Integer, ForeignKey("plants.id"), nullable=False)
    machine_id = Column(Integer, nullable=True)
    pu_id = Column(Integer, nullable=True)
    pucode = Column(String(100), nullable=True)

    reported_by = Column(Integer, ForeignKey("persons.id"), nullable=False, index=True)
    assigned_to = Column(Integer, ForeignKey("persons.id"), nullable=True, index=True)
    status = Column(StatusType, nullable=False, default=TicketStatus.OPEN, index=True)
    scheduled_complete = Column(DateTime(timezone=True), nullable=True)

    accepted_at = Column(DateTime(timezone=True), nullable=True)
    accepted_by = Column(Integer, nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by = Column(Integer, nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completed_by = Column(Integer, nullable=True)
    escalated_at = Column(DateTime(timezone=True), nullable=True)
    escalated_by = Column(Integer, nullable=True)
    escalated_to = Column(Integer, ForeignKey("persons.id"), nullable=True)
    escalation_reason = Column(String(500), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    closed_by = Column(Integer, nullable=True)
    reopened_at = Column(DateTime(timezone=True), nullable=True)
    reopened_by = Column(Integer, nullable=True)

    rejection_reason = Column(String(500), nullable=True)
    cost_avoidance = Column(Numeric(15, 2, asdecimal=False), nullable=True)
    downtime_avoidance_hours = Column(Numeric(8, 2, asdecimal=False), nullable=True)
    failure_mode_id = Column(Integer, nullable=True)
    satisfaction_rating = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    area = relationship("Area")
    comments = relationship("Comment", back_populates="ticket", lazy="dynamic")

    @validates("status")
    def _validate_status(self, key, value):
        return TicketStatus(value)


class StatusHistoryEntry(Base):
    __tablename__ = "ticket_status_history"
    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True)
    old_status = Column(StatusType, nullable=True)  # null on the creation row
    new_status = Column(StatusType, nullable=False)
    changed_by = Column(Integer, ForeignKey("persons.id"), nullable=False)
    to_user = Column(Integer, ForeignKey("persons.id"), nullable=True)
    notes = Column(String(500), nullable=True)
    changed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Comment(Base):
    __tablename__ = "ticket_comments"
    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("persons.id"), nullable=False)
    comment = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    ticket = relationship("Ticket", back_populates="comments")
    author = relationship("Person")


class TicketImage(Base):
    __tablename__ = "ticket_images"
    id = Column(Integer, primary_key=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id"), nullable=False, index=True)
    image_type = Column(String(10), nullable=False, default="before")  # before/after
    image_url = Column(String(500), nullable=False)
    image_name = Column(String(255), nullable=True)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now())


class TicketDailyCounter(Base):
    __tablename__ = "ticket_daily_counters"
    date_str = Column(String(8), primary_key=True)  # YYYYMMDD
    case_number = Column(Integer, nullable=False, default=0)


class NotificationDelivery(Base):
    __tablename__ = "notification_deliveries"
    id = Column(Integer, primary_key=True, index=True)
    ts = Column(DateTime(timezone=True), server_default=func.now())
    ticket_id = Column(Integer, nullable=False, index=True)
    case_state = Column(String(32), nullable=False)
    channel = Column(String(16), nullable=False)  # email/chat
    person_id = Column(Integer, nullable=False)
    address = Column(String(256), nullable=True)
    result = Column(String(16), nullable=False)  # sent/failed/invalid/timeout/skipped
    attempts = Column(Integer, nullable=False, default=0)
    error = Column(String(500), nullable=True)


class AuditEvent(Base):
    __tablename__ = "audit_events"
    id = Column(Integer, primary_key=True, index=True)
    ts = Column(DateTime(timezone=True), server_default=func.now())
    actor_id = Column(Integer, nullable=True, index=True)
    ip = Column(String(64), nullable=True)
    action = Column(String(64), nullable=False)
    target = Column(String(256), nullable=True)
    result = Column(String(16), nullable=False)  # success/fail
    reason = Column(String(256), nullable=True)
