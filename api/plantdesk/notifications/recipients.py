"""Who hears about which transition."""

from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..events import TransitionEvent
from ..statuses import TransitionKind

# approvers at this level or above watch every new ticket in their area
AREA_WATCH_LEVEL = 2


class RecipientRole(str, Enum):
    REPORTER = "reporter"
    ASSIGNEE = "assignee"
    AREA_APPROVERS = "area_approvers"
    ESCALATION_TARGET = "escalation_target"


RECIPIENT_RULES: Dict[TransitionKind, Tuple[RecipientRole, ...]] = {
    TransitionKind.CREATE: (RecipientRole.REPORTER, RecipientRole.AREA_APPROVERS, RecipientRole.ASSIGNEE),
    TransitionKind.ASSIGN: (RecipientRole.ASSIGNEE,),
    TransitionKind.ACCEPT: (RecipientRole.REPORTER,),
    TransitionKind.REJECT: (RecipientRole.REPORTER, RecipientRole.ASSIGNEE),
    TransitionKind.COMPLETE: (RecipientRole.REPORTER,),
    TransitionKind.ESCALATE: (RecipientRole.ESCALATION_TARGET, RecipientRole.REPORTER),
    TransitionKind.CLOSE: (RecipientRole.ASSIGNEE,),
    TransitionKind.REOPEN: (RecipientRole.ASSIGNEE,),
    TransitionKind.REASSIGN: (RecipientRole.ASSIGNEE,),
}


def select_recipients(
    event: TransitionEvent,
    area_approvers: Callable[[int, int], Iterable[int]],
) -> List[int]:
    """Person ids to notify, in rule order, each at most once.

    `area_approvers(area_id, min_level)` is only called for rules that need it.
    """
    ticket = event.ticket
    seen = set()
    ordered: List[int] = []

    def add(person_id: Optional[int]):
        if person_id is not None and person_id not in seen:
            seen.add(person_id)
            ordered.append(person_id)

    for role in RECIPIENT_RULES[event.kind]:
        if role is RecipientRole.REPORTER:
            add(ticket.reported_by)
        elif role is RecipientRole.ASSIGNEE:
            add(ticket.assigned_to)
        elif role is RecipientRole.ESCALATION_TARGET:
            add(ticket.escalated_to)
        elif role is RecipientRole.AREA_APPROVERS:
            for person_id in area_approvers(ticket.area_id, AREA_WATCH_LEVEL):
                add(person_id)
    return ordered
