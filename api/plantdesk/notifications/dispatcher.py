"""Fan a TransitionEvent out to every recipient over every channel.

Database reads and writes run in a worker thread; only channel calls run on
the event loop.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

from sqlalchemy.orm import Session

from ..approvals import ApprovalResolver
from ..config import settings
from ..events import TransitionEvent
from ..models import NotificationDelivery, Person
from ..store import TicketStore
from .channels import ChannelError, ChannelNotConfigured, ChatChannel, EmailChannel, InvalidRecipient
from .messages import (
    HERO_IMAGE_TAGS,
    CaseState,
    build_context,
    case_state_for,
    render_chat,
    render_email,
    select_hero_image,
)
from .recipients import select_recipients

logger = logging.getLogger(__name__)


@dataclass
class DeliveryJob:
    person_id: int
    channel: str  # email/chat
    address: str
    payload: Any  # (subject, html) for email, flex dict for chat


@dataclass
class Delivery:
    person_id: int
    channel: str
    address: str
    result: str  # sent/failed/invalid/timeout/skipped
    attempts: int
    error: Optional[str] = None


@dataclass
class DispatchReport:
    ticket_id: int
    state: CaseState
    recipients: List[int] = field(default_factory=list)
    deliveries: List[Delivery] = field(default_factory=list)

    @property
    def sent(self) -> List[Delivery]:
        return [d for d in self.deliveries if d.result == "sent"]

    @property
    def failed(self) -> List[Delivery]:
        return [d for d in self.deliveries if d.result not in ("sent", "skipped")]


class NotificationDispatcher:
    """Reads what it needs from the store, never writes tickets.

    Deliveries run concurrently under a semaphore; each call is bounded by a
    timeout and transient channel errors get at most `max_attempts` tries.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        email: Optional[EmailChannel] = None,
        chat: Optional[ChatChannel] = None,
        frontend_url: Optional[str] = None,
        public_base_url: Optional[str] = None,
        max_concurrency: Optional[int] = None,
        timeout: Optional[float] = None,
        max_attempts: Optional[int] = None,
        record: bool = True,
    ):
        self.session_factory = session_factory
        self.timeout = timeout or settings.notify_timeout_seconds
        self.email = email or EmailChannel(timeout=self.timeout)
        self.chat = chat or ChatChannel(timeout=self.timeout)
        self.frontend_url = frontend_url or settings.frontend_url
        self.public_base_url = public_base_url or settings.public_base_url
        self.max_concurrency = max_concurrency or settings.notify_max_concurrency
        self.max_attempts = max(1, max_attempts or settings.notify_max_attempts)
        self.record = record

    async def dispatch(self, event: TransitionEvent) -> DispatchReport:
        state = case_state_for(event)
        report = DispatchReport(ticket_id=event.ticket.id, state=state)
        report.recipients, jobs = await asyncio.to_thread(self._plan, event, state)
        if not jobs:
            logger.info(f"{event.ticket.ticket_number}: no deliverable recipients for {state.value}")
            return report

        sem = asyncio.Semaphore(self.max_concurrency)
        report.deliveries = list(await asyncio.gather(*(self._deliver(sem, event, job) for job in jobs)))
        logger.info(
            f"{event.ticket.ticket_number}: {state.value} delivered {len(report.sent)}/{len(jobs)}"
            f" to {len(report.recipients)} recipient(s)"
        )
        if self.record:
            await asyncio.to_thread(self._record, event, state, report.deliveries)
        return report

    # ---------- planning ----------

    def _image_url(self, url: str) -> str:
        if url.startswith("http://") or url.startswith("https://"):
            return url
        return f"{self.public_base_url.rstrip('/')}/{url.lstrip('/')}"

    def _plan(self, event: TransitionEvent, state: CaseState):
        ticket = event.ticket
        with self.session_factory() as db:
            approvals = ApprovalResolver(db)
            recipients = select_recipients(
                event,
                lambda area_id, level: [p.id for p in approvals.list_area_approvers(area_id, level)],
            )
            people = {
                p.id: p
                for p in db.query(Person)
                .filter(Person.id.in_(recipients + [event.actor_id]))
                .all()
            }
            actor = people.get(event.actor_id)
            action_by = actor.full_name if actor else f"User {event.actor_id}"

            hero = None
            if state in HERO_IMAGE_TAGS:
                images = [(i.image_type, self._image_url(i.image_url)) for i in TicketStore(db).images(ticket.id)]
                hero = select_hero_image(state, images)

            jobs: List[DeliveryJob] = []
            for person_id in recipients:
                person = people.get(person_id)
                if person is None or not person.is_active:
                    continue
                ctx = build_context(event, action_by, self.frontend_url, hero, recipient_id=person_id)
                if person.email:
                    jobs.append(DeliveryJob(person_id, "email", person.email, render_email(ctx)))
                if person.chat_user_id:
                    jobs.append(DeliveryJob(person_id, "chat", person.chat_user_id, render_chat(ctx)))
        return recipients, jobs

    # ---------- delivery ----------

    async def _send(self, job: DeliveryJob):
        if job.channel == "email":
            subject, html = job.payload
            return await self.email.send(job.address, subject, html)
        return await self.chat.push(job.address, job.payload)

    async def _deliver(self, sem: asyncio.Semaphore, event: TransitionEvent, job: DeliveryJob) -> Delivery:
        label = f"{event.ticket.ticket_number} {job.channel} -> person {job.person_id}"
        attempts = 0
        async with sem:
            while True:
                attempts += 1
                try:
                    await asyncio.wait_for(self._send(job), timeout=self.timeout)
                    logger.debug(f"Sent {label}")
                    return Delivery(job.person_id, job.channel, job.address, "sent", attempts)
                except ChannelNotConfigured as e:
                    logger.debug(f"Skipped {label}: {e}")
                    return Delivery(job.person_id, job.channel, job.address, "skipped", attempts, str(e))
                except InvalidRecipient as e:
                    logger.warning(f"Invalid recipient for {label}: {e}")
                    return Delivery(job.person_id, job.channel, job.address, "invalid", attempts, str(e))
                except asyncio.TimeoutError:
                    logger.warning(f"Timed out after {self.timeout}s: {label}")
                    return Delivery(job.person_id, job.channel, job.address, "timeout", attempts, "timeout")
                except ChannelError as e:
                    if attempts >= self.max_attempts:
                        logger.error(f"Giving up on {label} after {attempts} attempt(s): {e}")
                        return Delivery(job.person_id, job.channel, job.address, "failed", attempts, str(e))
                    logger.info(f"Retrying {label}: {e}")
                except Exception as e:
                    logger.exception(f"Unexpected error delivering {label}")
                    return Delivery(job.person_id, job.channel, job.address, "failed", attempts, str(e))

    def _record(self, event: TransitionEvent, state: CaseState, deliveries: List[Delivery]) -> None:
        try:
            with self.session_factory() as db:
                for d in deliveries:
                    db.add(
                        NotificationDelivery(
                            ticket_id=event.ticket.id,
                            case_state=state.value,
                            channel=d.channel,
                            person_id=d.person_id,
                            address=d.address[:256],
                            result=d.result,
                            attempts=d.attempts,
                            error=(d.error or None) and d.error[:500],
                        )
                    )
                db.commit()
        except Exception as e:
            logger.warning(f"Could not record notification deliveries for {event.ticket.ticket_number}: {e}")
