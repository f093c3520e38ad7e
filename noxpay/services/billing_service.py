"""Billing service: subscription / payment / invoice persistence.

Responsible for:
- Billing period arithmetic (weekly / monthly / yearly)
- Finalizing a verified checkout: Subscription + Payment + Invoice written
  in one transaction
- Lookups shared by the checkout flow and the webhook reconciler
- User-initiated cancel / resume (cancel_at_period_end flag)
- Billing audit log

Functions flush but do NOT commit, except finalize_verified_payment(),
which owns its transaction.
"""

import calendar
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import SQLAlchemyError

from noxpay.errors import NotFoundError, PartialWriteError, PlanNotFound, ValidationError
from noxpay.extensions import db
from noxpay.models.audit import AuditEvent
from noxpay.models.invoice import Invoice
from noxpay.models.payment import Payment
from noxpay.models.plan import SubscriptionPlan
from noxpay.models.subscription import Subscription

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────
# Period arithmetic
# ──────────────────────────────────────────────

def _add_months(start, months):
    """Calendar month addition, clamped to the last day of the target month."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def compute_period_end(start, interval):
    """Return the end of a billing period that begins at `start`.

    2024-01-15 monthly -> 2024-02-15; 2024-01-31 monthly -> 2024-02-29;
    2024-02-29 yearly -> 2025-02-28.
    """
    if interval == "weekly":
        return start + timedelta(days=7)
    if interval == "monthly":
        return _add_months(start, 1)
    if interval == "yearly":
        return _add_months(start, 12)
    raise ValidationError(f"Unknown billing interval: {interval}")


def generate_invoice_number(user_id, now):
    """INV-<epoch-millis>-<first 6 chars of user id>."""
    millis = int(now.timestamp() * 1000)
    return f"INV-{millis}-{user_id[:6]}"


# ──────────────────────────────────────────────
# Lookups
# ──────────────────────────────────────────────

def get_plan(plan_id, active_only=False):
    query = SubscriptionPlan.query.filter_by(id=plan_id)
    if active_only:
        query = query.filter_by(active=True)
    return query.first()


def list_active_plans():
    return (
        SubscriptionPlan.query
        .filter_by(active=True)
        .order_by(SubscriptionPlan.price)
        .all()
    )


def find_payment_by_gateway_id(gateway_payment_id):
    return Payment.query.filter_by(gateway_payment_id=gateway_payment_id).first()


def get_current_subscription(user_id):
    """Most recently created subscription for the user, or None."""
    return (
        Subscription.query
        .filter_by(user_id=user_id)
        .order_by(Subscription.created_at.desc())
        .first()
    )


def find_subscription(subscription_ref):
    """Resolve a subscription from a gateway subscription id or a local id."""
    if not subscription_ref:
        return None
    sub = Subscription.query.filter_by(
        gateway_subscription_id=subscription_ref
    ).first()
    if sub is None:
        sub = db.session.get(Subscription, subscription_ref)
    return sub


def list_payments(user_id):
    return (
        Payment.query
        .filter_by(user_id=user_id)
        .order_by(Payment.created_at.desc())
        .all()
    )


def list_invoices(user_id):
    return (
        Invoice.query
        .filter_by(user_id=user_id)
        .order_by(Invoice.invoice_date.desc())
        .all()
    )


# ──────────────────────────────────────────────
# Finalize a verified checkout
# ──────────────────────────────────────────────

def finalize_verified_payment(user_id, plan_id, payment_id, order_id,
                              amount, currency="INR", now=None):
    """Create the Subscription, Payment and Invoice for a verified checkout.

    Preconditions (enforced by the caller): the checkout signature verified
    AND the payment was fetched from Razorpay with status "captured".

    All three rows are written in one transaction. If any step fails the
    transaction is rolled back and PartialWriteError names the step.

    Returns the new Subscription (committed).
    Raises PlanNotFound before anything is written.
    """
    plan = get_plan(plan_id)
    if plan is None:
        raise PlanNotFound()

    now = now or datetime.now(timezone.utc)
    period_end = compute_period_end(now, plan.interval)

    step = "subscription"
    try:
        subscription = Subscription(
            user_id=user_id,
            plan_id=plan.id,
            status="active",
            current_period_start=now,
            current_period_end=period_end,
            cancel_at_period_end=False,
            created_at=now,
        )
        db.session.add(subscription)
        db.session.flush()

        step = "payment"
        db.session.add(Payment(
            user_id=user_id,
            subscription_id=subscription.id,
            gateway_payment_id=payment_id,
            gateway_order_id=order_id,
            amount=amount,
            currency=currency,
            status="captured",
        ))
        db.session.flush()

        step = "invoice"
        db.session.add(Invoice(
            user_id=user_id,
            subscription_id=subscription.id,
            payment_id=payment_id,
            status="paid",
            amount_due=amount,
            amount_paid=amount,
            currency=currency,
            invoice_number=generate_invoice_number(user_id, now),
            invoice_date=now,
            due_date=now,
        ))
        db.session.flush()

        log_billing_audit(user_id, "subscription.created", {
            "subscription_id": subscription.id,
            "plan_id": plan.id,
            "gateway_payment_id": payment_id,
            "gateway_order_id": order_id,
            "amount": amount,
            "currency": currency,
        })

        step = "commit"
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(
            f"Finalize failed at step '{step}' for user {user_id}, "
            f"payment {payment_id}: {e}"
        )
        raise PartialWriteError(step) from e

    logger.info(
        f"Subscription {subscription.id} created for user {user_id} "
        f"(plan={plan.id}, payment={payment_id})"
    )
    return subscription


# ──────────────────────────────────────────────
# User-initiated cancel / resume
# ──────────────────────────────────────────────

def set_cancel_at_period_end(user_id, cancel):
    """Flip cancel_at_period_end on the user's current subscription.

    Returns the Subscription (flushed, not committed).
    Raises NotFoundError if the user has no subscription and
    ValidationError if it is already cancelled.
    """
    sub = get_current_subscription(user_id)
    if sub is None:
        raise NotFoundError("No subscription found")
    if sub.status == "cancelled":
        raise ValidationError("Subscription is already cancelled")

    sub.cancel_at_period_end = bool(cancel)
    db.session.flush()

    log_billing_audit(
        user_id,
        "subscription.cancel_requested" if cancel else "subscription.resumed",
        {"subscription_id": sub.id},
    )
    return sub


# ──────────────────────────────────────────────
# Audit
# ──────────────────────────────────────────────

def log_billing_audit(user_id, action, metadata=None):
    """Log a billing-related audit event."""
    event = AuditEvent(
        user_id=user_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
