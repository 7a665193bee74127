from sqlalchemy.orm import Session

from .models import AuditEvent


def write_audit(
    db: Session,
    *,
    actor_id: int | None,
    ip: str | None,
    action: str,
    target: str | None,
    result: str,
    reason: str | None = None,
):
    """Record one attempt in its own commit; call after any failed work was rolled back."""
    ev = AuditEvent(
        actor_id=actor_id,
        ip=ip,
        action=action,
        target=target,
        result=result,
        reason=(reason or None) and reason[:256],
    )
    db.add(ev)
    db.commit()
