from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Prevent race conditions when generating document numbers
    (physical inventories, transfer and adjustment references).
    """
    __tablename__ = "document_sequences"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }


class AuditEvent(db.Model):
    """
    Append-only activity feed entry.

    Written after the stock change it describes has committed, so a failed
    audit write never undoes inventory. No updates or deletes.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_type_created", "event_type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    event_type = db.Column(db.String(64), nullable=False)
    subject = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    actor = db.Column(db.String(64), nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "subject": self.subject,
            "description": self.description,
            "actor": self.actor,
            "payload": self.payload,
            "created_at": to_utc_z(self.created_at),
        }
