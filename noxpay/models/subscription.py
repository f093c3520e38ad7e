"""Subscription model.

Uniqueness per user is NOT enforced at the storage layer. The "current"
subscription is always the most recently created row for the user.
"""

import uuid

from noxpay.extensions import db
from noxpay.models.serialize import isoformat


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    STATUSES = ["active", "past_due", "cancelled", "trialing"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    plan_id = db.Column(
        db.String(36), db.ForeignKey("subscription_plans.id"), nullable=False
    )
    # Set only for gateway-managed recurring subscriptions (e.g. "sub_...")
    gateway_subscription_id = db.Column(
        db.String(255), unique=True, nullable=True
    )
    status = db.Column(db.String(20), nullable=False)  # active | past_due | cancelled | trialing
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=False)
    current_period_end = db.Column(db.DateTime(timezone=True), nullable=False)
    cancel_at_period_end = db.Column(db.Boolean, default=False, nullable=False)
    metadata_ = db.Column("metadata", db.JSON, default=dict)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now(), index=True
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="subscriptions")
    plan = db.relationship("SubscriptionPlan")
    payments = db.relationship(
        "Payment", back_populates="subscription", lazy="dynamic"
    )

    def to_dict(self, include_plan=False):
        data = {
            "id": self.id,
            "user_id": self.user_id,
            "plan_id": self.plan_id,
            "gateway_subscription_id": self.gateway_subscription_id,
            "status": self.status,
            "current_period_start": isoformat(self.current_period_start),
            "current_period_end": isoformat(self.current_period_end),
            "cancel_at_period_end": bool(self.cancel_at_period_end),
            "metadata": self.metadata_ or {},
            "created_at": isoformat(self.created_at),
        }
        if include_plan and self.plan is not None:
            data["plan"] = self.plan.to_dict()
        return data

    def __repr__(self):
        return f"<Subscription {self.id} ({self.status})>"
