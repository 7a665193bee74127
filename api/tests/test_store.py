from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from plantdesk.errors import DependencyUnavailable
from plantdesk.models import Ticket, TicketDailyCounter
from plantdesk.statuses import TicketStatus
from plantdesk.store import TicketStore, status_change_message, store_guard


def make_ticket(store, seed, number="TKT-20260301-001"):
    ticket = store.insert_ticket(
        Ticket(
            ticket_number=number,
            title="Pump noise",
            area_id=seed.area,
            plant_id=1,
            reported_by=seed.reporter,
            status=TicketStatus.OPEN,
        )
    )
    store.db.commit()
    return ticket


def test_ticket_number_counts_per_plant_day(db_session, seed):
    store = TicketStore(db_session, tz="Asia/Bangkok")
    morning = datetime(2026, 3, 1, 3, 0, tzinfo=timezone.utc)  # 10:00 local

    assert store.next_ticket_number(morning) == "TKT-20260301-001"
    db_session.commit()
    assert store.next_ticket_number(morning) == "TKT-20260301-002"
    db_session.commit()


def test_ticket_number_uses_plant_local_date(db_session, seed):
    store = TicketStore(db_session, tz="Asia/Bangkok")
    evening_utc = datetime(2026, 3, 1, 20, 0, tzinfo=timezone.utc)  # 03:00 next day local

    assert store.next_ticket_number(evening_utc) == "TKT-20260302-001"
    db_session.commit()
    # a new day starts from 001 again
    assert store.next_ticket_number(datetime(2026, 3, 3, 2, 0, tzinfo=timezone.utc)) == "TKT-20260303-001"


def test_ticket_number_gives_up_after_repeated_collisions(db_session, seed, monkeypatch):
    store = TicketStore(db_session, tz="Asia/Bangkok")
    attempts = []
    real_flush = db_session.flush

    def colliding_flush(*args, **kwargs):
        if any(isinstance(obj, TicketDailyCounter) for obj in db_session.new):
            attempts.append(1)
            raise IntegrityError("INSERT INTO ticket_daily_counters", {}, Exception("UNIQUE constraint failed"))
        return real_flush(*args, **kwargs)

    monkeypatch.setattr(db_session, "flush", colliding_flush)

    with pytest.raises(DependencyUnavailable):
        store.next_ticket_number(datetime(2026, 3, 4, 2, 0, tzinfo=timezone.utc))

    assert len(attempts) == 3
    monkeypatch.undo()
    assert db_session.query(TicketDailyCounter).filter(TicketDailyCounter.date_str == "20260304").count() == 0


def test_compare_and_swap_only_matches_observed_status(db_session, seed):
    store = TicketStore(db_session)
    ticket = make_ticket(store, seed)

    assert store.compare_and_swap(ticket.id, TicketStatus.ASSIGNED, {"status": TicketStatus.IN_PROGRESS}) is False
    assert store.compare_and_swap(ticket.id, TicketStatus.OPEN, {"status": TicketStatus.IN_PROGRESS}) is True
    db_session.commit()

    db_session.expire_all()
    assert store.get_ticket(ticket.id).status == TicketStatus.IN_PROGRESS


def test_compare_and_swap_checks_assignee(db_session, seed):
    store = TicketStore(db_session)
    ticket = make_ticket(store, seed)
    ticket.assigned_to = seed.engineer
    db_session.commit()

    swapped = store.compare_and_swap(
        ticket.id, TicketStatus.OPEN, {"status": TicketStatus.COMPLETED}, expected_assignee=seed.engineer2
    )
    assert swapped is False


def test_history_is_ordered(db_session, seed):
    store = TicketStore(db_session)
    ticket = make_ticket(store, seed)
    store.add_history(ticket.id, None, TicketStatus.OPEN, seed.reporter, notes="Ticket created")
    store.add_history(ticket.id, TicketStatus.OPEN, TicketStatus.IN_PROGRESS, seed.engineer)
    db_session.commit()

    rows = store.history(ticket.id)
    assert [r.new_status for r in rows] == [TicketStatus.OPEN, TicketStatus.IN_PROGRESS]
    assert rows[0].old_status is None


def test_inactive_person_hidden_unless_asked(db_session, seed):
    store = TicketStore(db_session)
    assert store.get_person(seed.retired) is None
    assert store.get_person(seed.retired, active_only=False).full_name == "Retired Manager"
    assert store.get_person(None) is None


def test_status_change_message():
    assert status_change_message(TicketStatus.OPEN, TicketStatus.CLOSED) == "Status changed from open to closed"
    assert (
        status_change_message(TicketStatus.COMPLETED, TicketStatus.REOPENED_IN_PROGRESS, "Leak is back")
        == "Status changed from completed to reopened_in_progress - Leak is back"
    )


def test_store_guard_maps_lost_connection(db_session):
    with pytest.raises(DependencyUnavailable):
        with store_guard(db_session):
            raise OperationalError("UPDATE tickets", {}, Exception("connection reset"))


def test_store_guard_reraises_other_errors(db_session):
    with pytest.raises(ValueError):
        with store_guard(db_session):
            raise ValueError("bad")
