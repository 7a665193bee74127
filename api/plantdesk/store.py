"""Persistence helpers for tickets, their history and comments."""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from .config import settings
from .errors import DependencyUnavailable
from .models import (
    Area,
    Comment,
    Person,
    StatusHistoryEntry,
    Ticket,
    TicketDailyCounter,
    TicketImage,
)
from .statuses import TicketStatus

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def status_change_message(old_status, new_status, note: Optional[str] = None) -> str:
    old = old_status.value if isinstance(old_status, TicketStatus) else old_status
    new = new_status.value if isinstance(new_status, TicketStatus) else new_status
    message = f"Status changed from {old} to {new}"
    if note:
        message += f" - {note}"
    return message


@contextmanager
def store_guard(db: Session):
    """Roll back on any failure and surface lost connections as DependencyUnavailable."""
    try:
        yield
    except OperationalError as e:
        db.rollback()
        logger.error(f"Ticket store unavailable: {e}")
        raise DependencyUnavailable("Ticket store is unavailable") from e
    except Exception:
        db.rollback()
        raise


class TicketStore:
    def __init__(self, db: Session, tz: Optional[str] = None):
        self.db = db
        self.tz = ZoneInfo(tz or settings.plant_timezone)

    # ---------- reads ----------

    def get_ticket(self, ticket_id: int) -> Optional[Ticket]:
        return self.db.query(Ticket).filter(Ticket.id == ticket_id).first()

    def get_person(self, person_id: Optional[int], active_only: bool = True) -> Optional[Person]:
        if person_id is None:
            return None
        query = self.db.query(Person).filter(Person.id == person_id)
        if active_only:
            query = query.filter(Person.is_active.is_(True))
        return query.first()

    def get_area(self, area_id: int) -> Optional[Area]:
        return self.db.query(Area).filter(Area.id == area_id).first()

    def history(self, ticket_id: int) -> List[StatusHistoryEntry]:
        return (
            self.db.query(StatusHistoryEntry)
            .filter(StatusHistoryEntry.ticket_id == ticket_id)
            .order_by(StatusHistoryEntry.changed_at, StatusHistoryEntry.id)
            .all()
        )

    def comments(self, ticket_id: int) -> List[Comment]:
        return (
            self.db.query(Comment)
            .filter(Comment.ticket_id == ticket_id)
            .order_by(Comment.created_at, Comment.id)
            .all()
        )

    def images(self, ticket_id: int) -> List[TicketImage]:
        return (
            self.db.query(TicketImage)
            .filter(TicketImage.ticket_id == ticket_id)
            .order_by(TicketImage.uploaded_at, TicketImage.id)
            .all()
        )

    # ---------- writes (caller commits) ----------

    def next_ticket_number(self, now: Optional[datetime] = None) -> str:
        """Bump today's counter and format TKT-YYYYMMDD-NNN.

        Must be the first write of the creating transaction: losing the race
        to create today's counter row rolls the transaction back and retries.
        """
        local = (now or utcnow()).astimezone(self.tz)
        date_str = local.strftime("%Y%m%d")

        for _ in range(3):
            bumped = self.db.execute(
                update(TicketDailyCounter)
                .where(TicketDailyCounter.date_str == date_str)
                .values(case_number=TicketDailyCounter.case_number + 1)
                .execution_options(synchronize_session=False)
            )
            if bumped.rowcount:
                break
            try:
                self.db.add(TicketDailyCounter(date_str=date_str, case_number=1))
                self.db.flush()
                break
            except IntegrityError:
                self.db.rollback()
                logger.info(f"Counter row for {date_str} created concurrently, retrying")
        else:
            logger.error(f"Gave up allocating a ticket number for {date_str}")
            raise DependencyUnavailable("Could not allocate a ticket number; try again")

        case_number = (
            self.db.query(TicketDailyCounter.case_number)
            .filter(TicketDailyCounter.date_str == date_str)
            .scalar()
        )
        return f"TKT-{date_str}-{case_number:03d}"

    def insert_ticket(self, ticket: Ticket) -> Ticket:
        self.db.add(ticket)
        self.db.flush()
        return ticket

    def compare_and_swap(
        self,
        ticket_id: int,
        expected_status: TicketStatus,
        changes: Dict[str, Any],
        expected_assignee: Optional[int] = None,
    ) -> bool:
        """Apply `changes` only if the row still has `expected_status`.

        Returns False when another transition got there first.
        """
        stmt = update(Ticket).where(Ticket.id == ticket_id).where(Ticket.status == expected_status)
        if expected_assignee is not None:
            stmt = stmt.where(Ticket.assigned_to == expected_assignee)
        values = dict(changes)
        values.setdefault("updated_at", utcnow())
        result = self.db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        return result.rowcount == 1

    def add_history(
        self,
        ticket_id: int,
        old_status: Optional[TicketStatus],
        new_status: TicketStatus,
        changed_by: int,
        notes: Optional[str] = None,
        to_user: Optional[int] = None,
    ) -> StatusHistoryEntry:
        entry = StatusHistoryEntry(
            ticket_id=ticket_id,
            old_status=old_status,
            new_status=new_status,
            changed_by=changed_by,
            to_user=to_user,
            notes=(notes or None) and notes[:500],
            changed_at=utcnow(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def add_comment(self, ticket_id: int, user_id: int, body: str) -> Comment:
        comment = Comment(ticket_id=ticket_id, user_id=user_id, comment=body, created_at=utcnow())
        self.db.add(comment)
        self.db.flush()
        return comment
