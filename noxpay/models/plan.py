"""Subscription plan catalog.

Plans are created by administrators (`flask seed-plans` for the defaults)
and are read-only to the payment flow. Prices are integer minor units:
`price` in paise, `price_usd` in cents.
"""

import uuid

from noxpay.extensions import db


class SubscriptionPlan(db.Model):
    __tablename__ = "subscription_plans"

    INTERVALS = ["weekly", "monthly", "yearly"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    interval = db.Column(db.String(20), nullable=False)  # weekly | monthly | yearly
    price = db.Column(db.Integer, nullable=False)
    price_usd = db.Column(db.Integer, nullable=True)
    features = db.Column(db.JSON, default=list)
    active = db.Column(db.Boolean, default=True, nullable=False)
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
            "name": self.name,
            "description": self.description,
            "interval": self.interval,
            "price": self.price,
            "price_usd": self.price_usd,
            "features": self.features or [],
            "active": self.active,
        }

    def __repr__(self):
        return f"<SubscriptionPlan {self.name} ({self.interval})>"
