"""Audit event model.

Records billing state transitions (subscription created, webhook-driven
status changes, user cancel/resume) for support and debugging.
"""

import uuid

from noxpay.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # None for gateway-initiated events with no known user
    action = db.Column(db.String(255), nullable=False)  # e.g. "payment.refunded"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid clashing with SQLAlchemy's Model.metadata
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<AuditEvent {self.action}>"
