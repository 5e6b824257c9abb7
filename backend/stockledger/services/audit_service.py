# Overview: Best-effort activity feed for stock changes.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditEvent
"""
Audit Feed Invariants (authoritative)

- Append-only: no updates or deletes of existing events.
- Written AFTER the stock transaction commits, in its own transaction.
- A failed audit write is logged and swallowed; it never rolls back or
  masks the stock change it describes.
"""


# Event types
EVENT_INVENTORY_ADJUSTMENT = "INVENTORY_ADJUSTMENT"
EVENT_PHYSICAL_INVENTORY_APPROVED = "INVENTORY_PHYSICAL"
EVENT_PHYSICAL_INVENTORY_REVERTED = "INVENTORY_PHYSICAL_REVERTED"


def log_activity(
    *,
    event_type: str,
    subject: str,
    actor: str | None,
    description: str | None = None,
    metadata: dict | None = None,
) -> AuditEvent | None:
    """
    Append one activity entry and commit it.

    Returns the event, or None when the write failed.
    """
    try:
        ev = AuditEvent(
            event_type=event_type,
            subject=subject,
            description=description,
            actor=actor,
            payload=metadata or {},
        )
        db.session.add(ev)
        db.session.commit()
        return ev
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning(
            "Failed to write audit event %s (%s)", event_type, subject, exc_info=True
        )
        return None


def list_activity(*, event_type: str | None = None, limit: int = 100) -> list[AuditEvent]:
    q = db.session.query(AuditEvent)
    if event_type:
        q = q.filter(AuditEvent.event_type == event_type)
    return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()
