"""Payment model.

One row per gateway payment. Webhooks only know the gateway's ids, so
`gateway_payment_id` is the lookup key and is unique.
"""

import uuid

from noxpay.extensions import db
from noxpay.models.serialize import isoformat


class Payment(db.Model):
    __tablename__ = "payments"

    STATUSES = ["created", "authorized", "captured", "refunded", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    subscription_id = db.Column(
        db.String(36), db.ForeignKey("subscriptions.id"), nullable=True
    )
    gateway_payment_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "pay_29QQoUBi66xm2f"
    gateway_order_id = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Integer, nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="INR")
    status = db.Column(db.String(20), nullable=False)  # created | authorized | captured | refunded | failed
    metadata_ = db.Column("metadata", db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="payments")
    subscription = db.relationship("Subscription", back_populates="payments")

    def to_dict(self):
        return {
            "id": self.id,
            "subscription_id": self.subscription_id,
            "gateway_payment_id": self.gateway_payment_id,
            "gateway_order_id": self.gateway_order_id,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "metadata": self.metadata_ or {},
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<Payment {self.gateway_payment_id} ({self.status})>"
