"""User model.

Profile rows are provisioned by the auth provider; this service only reads
them. Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from noxpay.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    full_name = db.Column(db.String(255))
    phone_number = db.Column(db.String(32))
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    subscriptions = db.relationship(
        "Subscription", back_populates="user", lazy="dynamic"
    )
    payments = db.relationship("Payment", back_populates="user", lazy="dynamic")

    def __repr__(self):
        return f"<User {self.email}>"
