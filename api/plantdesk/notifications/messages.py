"""Email and chat message rendering for ticket notifications."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from html import escape
from typing import List, Optional, Sequence, Tuple

from ..events import TransitionEvent
from ..statuses import TicketStatus, TransitionKind


class CaseState(str, Enum):
    CREATED = "CREATED"
    ASSIGNED = "ASSIGNED"
    ACCEPTED = "ACCEPTED"
    COMPLETED = "COMPLETED"
    REJECT_TO_MANAGER = "REJECT_TO_MANAGER"
    REJECT_FINAL = "REJECT_FINAL"
    ESCALATED = "ESCALATED"
    CLOSED = "CLOSED"
    REOPENED = "REOPENED"
    REASSIGNED = "REASSIGNED"


@dataclass(frozen=True)
class CaseStyle:
    label: str
    color: str
    icon: str
    subject: str
    default_comment: str


CASE_STYLES = {
    CaseState.CREATED: CaseStyle("New case", "#0EA5E9", "🚨", "New Abnormal Finding Ticket", "New case awaiting acceptance"),
    CaseState.ASSIGNED: CaseStyle("Assigned", "#6366F1", "📌", "Ticket Assigned To You", "This job has been assigned to you"),
    CaseState.ACCEPTED: CaseStyle("Accepted", "#22C55E", "✅", "Ticket Accepted", "Your ticket has been accepted and work has started"),
    CaseState.REJECT_TO_MANAGER: CaseStyle("Rejected, awaiting manager review", "#F59E0B", "❌", "Ticket Rejected", "Ticket rejected"),
    CaseState.REJECT_FINAL: CaseStyle("Rejected (final)", "#EF4444", "❌", "Ticket Rejected", "Ticket rejected"),
    CaseState.COMPLETED: CaseStyle("Completed", "#10B981", "✅", "Job Completed", "Job completed"),
    CaseState.REASSIGNED: CaseStyle("Reassigned", "#A855F7", "🔄", "Ticket Reassigned", "This job has been reassigned to you"),
    CaseState.ESCALATED: CaseStyle("Escalated to manager", "#FB7185", "🚨", "Ticket Escalated", "Ticket escalated for manager attention"),
    CaseState.CLOSED: CaseStyle("Closed", "#64748B", "✅", "Ticket Closed", "Case closed by the requestor"),
    CaseState.REOPENED: CaseStyle("Reopened", "#F97316", "🔄", "Ticket Reopened", "Case reopened by the requestor"),
}

_KIND_STATES = {
    TransitionKind.CREATE: CaseState.CREATED,
    TransitionKind.ASSIGN: CaseState.ASSIGNED,
    TransitionKind.ACCEPT: CaseState.ACCEPTED,
    TransitionKind.COMPLETE: CaseState.COMPLETED,
    TransitionKind.ESCALATE: CaseState.ESCALATED,
    TransitionKind.CLOSE: CaseState.CLOSED,
    TransitionKind.REOPEN: CaseState.REOPENED,
    TransitionKind.REASSIGN: CaseState.REASSIGNED,
}

# which evidence tag makes the hero image for a state
HERO_IMAGE_TAGS = {
    CaseState.CREATED: "before",
    CaseState.ESCALATED: "before",
    CaseState.COMPLETED: "after",
}


def case_state_for(event: TransitionEvent) -> CaseState:
    if event.kind is TransitionKind.REJECT:
        if event.new_status is TicketStatus.REJECTED_FINAL:
            return CaseState.REJECT_FINAL
        return CaseState.REJECT_TO_MANAGER
    return _KIND_STATES[event.kind]


def select_hero_image(state: CaseState, images: Sequence[Tuple[str, str]]) -> Optional[str]:
    """Pick the hero image URL from `(image_type, url)` pairs in upload order.

    Uses the first image with the state's tag, else the first image of any tag.
    States without a hero tag get no image.
    """
    tag = HERO_IMAGE_TAGS.get(state)
    if tag is None or not images:
        return None
    for image_type, url in images:
        if image_type == tag:
            return url
    return images[0][1]


@dataclass
class MessageContext:
    state: CaseState
    case_no: str
    asset_name: str
    problem: str
    action_by: str
    comment: Optional[str] = None
    detail_url: str = ""
    hero_image_url: Optional[str] = None
    extra_kvs: List[Tuple[str, str]] = field(default_factory=list)

    @property
    def style(self) -> CaseStyle:
        return CASE_STYLES[self.state]


def _fmt_date(value) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d")
    return str(value) if value else "-"


def _fmt_number(value, unit: str) -> str:
    if value is None:
        return "-"
    return f"{value:,.2f} {unit}".replace(".00 ", " ")


def extra_rows(state: CaseState, event: TransitionEvent) -> List[Tuple[str, str]]:
    ticket = event.ticket
    if state is CaseState.CREATED:
        return [("Priority", ticket.priority or "normal"), ("Severity", ticket.severity_level or "medium")]
    if state is CaseState.ACCEPTED:
        return [("Scheduled Complete", _fmt_date(ticket.scheduled_complete))]
    if state is CaseState.COMPLETED:
        return [
            ("Cost Avoidance", _fmt_number(ticket.cost_avoidance, "THB")),
            ("Downtime Avoidance", _fmt_number(ticket.downtime_avoidance_hours, "hours")),
            ("Failure Mode", str(ticket.failure_mode_id) if ticket.failure_mode_id else "-"),
        ]
    if state is CaseState.CLOSED:
        rating = ticket.satisfaction_rating
        return [("Satisfaction Rating", f"{rating}/5" if rating else "Not rated")]
    return []


def build_context(
    event: TransitionEvent,
    action_by: str,
    frontend_url: str,
    hero_image_url: Optional[str] = None,
    recipient_id: Optional[int] = None,
) -> MessageContext:
    state = case_state_for(event)
    ticket = event.ticket
    comment = event.notes or CASE_STYLES[state].default_comment
    if state is CaseState.CREATED and recipient_id is not None and recipient_id == ticket.assigned_to:
        comment = "New case - you have been assigned this job"
    elif state is CaseState.REJECT_TO_MANAGER or state is CaseState.REJECT_FINAL:
        comment = ticket.rejection_reason or comment
    elif state is CaseState.ESCALATED:
        comment = ticket.escalation_reason or comment
    return MessageContext(
        state=state,
        case_no=ticket.ticket_number,
        asset_name=ticket.pucode or (f"Machine {ticket.machine_id}" if ticket.machine_id else "Unknown Asset"),
        problem=ticket.title or "No description",
        action_by=action_by,
        comment=comment,
        detail_url=f"{frontend_url.rstrip('/')}/tickets/{ticket.id}",
        hero_image_url=hero_image_url,
        extra_kvs=extra_rows(state, event),
    )


# ========== EMAIL ==========

def render_email(ctx: MessageContext) -> Tuple[str, str]:
    """Return (subject, html body)."""
    style = ctx.style
    subject = f"{style.icon} {style.subject} - {ctx.case_no}"
    rows = [("Ticket", f"#{ctx.case_no}"), ("Asset", ctx.asset_name), ("Title", ctx.problem), ("Action By", ctx.action_by)]
    rows.extend(ctx.extra_kvs)
    row_html = "\n".join(
        f"<p><strong>{escape(label)}:</strong> {escape(str(value))}</p>" for label, value in rows
    )
    hero = (
        f'<img src="{escape(ctx.hero_image_url)}" alt="evidence" style="max-width: 100%; border-radius: 6px;">'
        if ctx.hero_image_url
        else ""
    )
    comment = f"<p>{escape(ctx.comment)}</p>" if ctx.comment else ""
    html = f"""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: {style.color};">{style.icon} {escape(style.label)}</h2>
  {hero}
  {row_html}
  {comment}
  <p><a href="{escape(ctx.detail_url)}" style="background: {style.color}; color: white; padding: 10px 20px; text-decoration: none; border-radius: 6px;">View details</a></p>
  <p style="color: #666; font-size: 12px;">This is an automated message from PlantDesk. Please do not reply to this email.</p>
</div>
""".strip()
    return subject, html


# ========== CHAT ==========

def _kv_row(label: str, value) -> dict:
    return {
        "type": "box",
        "layout": "baseline",
        "contents": [
            {"type": "text", "text": str(label or "-"), "size": "sm", "color": "#6B7280", "flex": 5, "align": "start"},
            {"type": "text", "text": str(value if value is not None else "-"), "size": "sm", "flex": 7, "align": "end", "wrap": True},
        ],
    }


def _button(label: str, uri: str) -> dict:
    return {
        "type": "box",
        "layout": "vertical",
        "backgroundColor": "#F3F4F6",
        "cornerRadius": "6px",
        "paddingAll": "12px",
        "margin": "md",
        "action": {"type": "uri", "label": label, "uri": uri},
        "contents": [
            {"type": "text", "text": label, "size": "sm", "align": "center", "color": "#374151", "weight": "bold"}
        ],
    }


def render_chat(ctx: MessageContext) -> dict:
    """Build a flex bubble message for the chat channel."""
    style = ctx.style
    body = [
        {"type": "text", "text": style.label, "size": "sm", "weight": "bold", "color": style.color},
        {"type": "text", "text": str(ctx.case_no or "-"), "size": "xl", "weight": "bold"},
        {"type": "text", "text": str(ctx.asset_name or "-"), "size": "sm", "color": "#9CA3AF"},
        {"type": "separator", "margin": "md"},
        {
            "type": "box",
            "layout": "vertical",
            "spacing": "sm",
            "contents": [_kv_row("Problem", ctx.problem), _kv_row("Action by", ctx.action_by)]
            + [_kv_row(label, value) for label, value in ctx.extra_kvs],
        },
        {"type": "separator", "margin": "md"},
    ]
    if ctx.comment:
        body.append({"type": "text", "text": "Comment", "size": "sm", "color": "#6B7280"})
        body.append({"type": "text", "text": ctx.comment, "size": "sm", "wrap": True, "color": "#374151"})
    body.append(_button("View details", ctx.detail_url))

    bubble = {
        "type": "bubble",
        "body": {"type": "box", "layout": "vertical", "spacing": "md", "paddingAll": "16px", "contents": body},
    }
    if ctx.hero_image_url:
        bubble["hero"] = {
            "type": "image",
            "url": ctx.hero_image_url,
            "size": "full",
            "aspectRatio": "20:13",
            "aspectMode": "cover",
        }
    return {"type": "flex", "altText": f"[{style.label}] {ctx.case_no}".strip(), "contents": bubble}
