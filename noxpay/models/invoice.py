"""Invoice model.

Written once at finalize time with status "paid". Webhooks do not touch
invoices (a later refund leaves the invoice as-is).
"""

import uuid

from noxpay.extensions import db
from noxpay.models.serialize import isoformat


class Invoice(db.Model):
    __tablename__ = "invoices"

    STATUSES = ["draft", "open", "paid", "uncollectible", "void"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    subscription_id = db.Column(
        db.String(36), db.ForeignKey("subscriptions.id"), nullable=True
    )
    payment_id = db.Column(db.String(255), nullable=True)  # gateway payment id
    status = db.Column(db.String(20), nullable=False)
    amount_due = db.Column(db.Integer, nullable=False)
    amount_paid = db.Column(db.Integer, nullable=False, default=0)
    currency = db.Column(db.String(3), nullable=False, default="INR")
    invoice_number = db.Column(db.String(64), unique=True, nullable=False)
    invoice_date = db.Column(db.DateTime(timezone=True), nullable=False)
    due_date = db.Column(db.DateTime(timezone=True), nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "payment_id": self.payment_id,
            "status": self.status,
            "amount_due": self.amount_due,
            "amount_paid": self.amount_paid,
            "currency": self.currency,
            "invoice_number": self.invoice_number,
            "invoice_date": isoformat(self.invoice_date),
            "due_date": isoformat(self.due_date),
        }

    def __repr__(self):
        return f"<Invoice {self.invoice_number} ({self.status})>"
