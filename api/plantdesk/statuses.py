"""Ticket states and the transition table."""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional


class TicketStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    REJECTED_PENDING_L3_REVIEW = "rejected_pending_l3_review"
    REJECTED_FINAL = "rejected_final"
    COMPLETED = "completed"
    ESCALATED = "escalated"
    CLOSED = "closed"
    REOPENED_IN_PROGRESS = "reopened_in_progress"


TERMINAL_STATUSES: FrozenSet[TicketStatus] = frozenset(
    {TicketStatus.REJECTED_FINAL, TicketStatus.CLOSED}
)
NON_TERMINAL_STATUSES: FrozenSet[TicketStatus] = frozenset(TicketStatus) - TERMINAL_STATUSES


class TransitionKind(str, Enum):
    CREATE = "create"
    ASSIGN = "assign"
    ACCEPT = "accept"
    REJECT = "reject"
    COMPLETE = "complete"
    ESCALATE = "escalate"
    CLOSE = "close"
    REOPEN = "reopen"
    REASSIGN = "reassign"


class ActorRule(str, Enum):
    """Who may perform a transition."""
    SAVE_RIGHTS = "save_rights"
    LEVEL_2 = "level_2"
    LEVEL_3 = "level_3"
    ASSIGNEE = "assignee"
    REPORTER = "reporter"


@dataclass(frozen=True)
class TransitionRule:
    sources: FrozenSet[TicketStatus]
    actor: ActorRule
    # None means the target depends on the actor (reject)
    target: Optional[TicketStatus]


TRANSITIONS = {
    TransitionKind.ASSIGN: TransitionRule(
        frozenset({TicketStatus.OPEN}), ActorRule.SAVE_RIGHTS, TicketStatus.ASSIGNED
    ),
    TransitionKind.ACCEPT: TransitionRule(
        frozenset({
            TicketStatus.OPEN,
            TicketStatus.REJECTED_PENDING_L3_REVIEW,
            TicketStatus.REOPENED_IN_PROGRESS,
        }),
        ActorRule.LEVEL_2,
        TicketStatus.IN_PROGRESS,
    ),
    TransitionKind.REJECT: TransitionRule(NON_TERMINAL_STATUSES, ActorRule.LEVEL_2, None),
    TransitionKind.COMPLETE: TransitionRule(
        frozenset({TicketStatus.IN_PROGRESS, TicketStatus.REOPENED_IN_PROGRESS}),
        ActorRule.ASSIGNEE,
        TicketStatus.COMPLETED,
    ),
    TransitionKind.ESCALATE: TransitionRule(
        frozenset({TicketStatus.IN_PROGRESS, TicketStatus.REOPENED_IN_PROGRESS}),
        ActorRule.ASSIGNEE,
        TicketStatus.ESCALATED,
    ),
    TransitionKind.CLOSE: TransitionRule(
        frozenset({TicketStatus.COMPLETED}), ActorRule.REPORTER, TicketStatus.CLOSED
    ),
    TransitionKind.REOPEN: TransitionRule(
        frozenset({TicketStatus.COMPLETED}), ActorRule.REPORTER, TicketStatus.REOPENED_IN_PROGRESS
    ),
    TransitionKind.REASSIGN: TransitionRule(NON_TERMINAL_STATUSES, ActorRule.LEVEL_3, TicketStatus.OPEN),
}


def reject_target(approval_level: int) -> TicketStatus:
    if approval_level >= 3:
        return TicketStatus.REJECTED_FINAL
    return TicketStatus.REJECTED_PENDING_L3_REVIEW


def allowed_targets(status: TicketStatus) -> set:
    """Every state reachable from `status` in one transition."""
    targets = set()
    for rule in TRANSITIONS.values():
        if status not in rule.sources:
            continue
        if rule.target is None:
            targets.update({TicketStatus.REJECTED_FINAL, TicketStatus.REJECTED_PENDING_L3_REVIEW})
        else:
            targets.add(rule.target)
    return targets
