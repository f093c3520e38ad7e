"""Webhook service: Razorpay event authentication, parsing and reconciliation.

Flow:
1. Verify the HMAC of the raw body with RAZORPAY_WEBHOOK_SECRET (fail closed)
2. Parse the envelope {event, payload} into one of a closed set of event
   types; unknown names become Unhandled
3. Dispatch to the handler for that type; each handler is idempotent
4. Commit per event. Storage errors are rolled back and logged, and only
   fail the request when fail_on_storage_error is set

Razorpay does not guarantee delivery order and retries on non-2xx, so every
transition is keyed on the gateway payment id and safe to replay.
"""

import json
import logging
from collections import namedtuple
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from noxpay.errors import ValidationError, WriteFailure
from noxpay.extensions import db
from noxpay.models.payment import Payment
from noxpay.services.billing_service import (
    compute_period_end,
    find_payment_by_gateway_id,
    find_subscription,
    log_billing_audit,
)
from noxpay.services.signatures import verify_webhook_signature

logger = logging.getLogger(__name__)

# 9999-12-31T23:59:59Z, the last second datetime.fromtimestamp accepts
MAX_EPOCH_SECONDS = 253402300799


# ──────────────────────────────────────────────
# Event types
# ──────────────────────────────────────────────

PaymentCaptured = namedtuple(
    "PaymentCaptured", ["payment_id", "order_id", "amount", "currency"]
)
PaymentFailed = namedtuple(
    "PaymentFailed", ["payment_id", "error_code", "error_description"]
)
RefundCreated = namedtuple(
    "RefundCreated",
    ["refund_id", "payment_id", "amount", "status", "created_at", "subscription_ref"],
)
SubscriptionCharged = namedtuple(
    "SubscriptionCharged",
    [
        "subscription_id",
        "payment_id",
        "order_id",
        "amount",
        "currency",
        "status",
        "current_end",
        "user_ref",
    ],
)
Unhandled = namedtuple("Unhandled", ["name"])


def _entity(payload, key):
    """payload[key]["entity"] as a dict, or {} when absent/malformed."""
    wrapper = payload.get(key)
    if not isinstance(wrapper, dict):
        return {}
    entity = wrapper.get("entity")
    return entity if isinstance(entity, dict) else {}


def _notes(entity):
    # Razorpay sends an empty list instead of an empty object
    notes = entity.get("notes")
    return notes if isinstance(notes, dict) else {}


def _require(value, what):
    if not value:
        raise ValidationError(f"Webhook payload missing {what}")
    return value


def _epoch(value, what):
    """Optional epoch-seconds field as int, within datetime's range."""
    if value in (None, ""):
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Webhook payload has invalid {what}") from e
    if not 0 <= seconds <= MAX_EPOCH_SECONDS:
        raise ValidationError(f"Webhook payload has out-of-range {what}")
    return seconds


def _parse_payment_captured(payload):
    payment = _entity(payload, "payment")
    return PaymentCaptured(
        payment_id=_require(payment.get("id"), "payment id"),
        order_id=payment.get("order_id"),
        amount=payment.get("amount"),
        currency=payment.get("currency"),
    )


def _parse_payment_failed(payload):
    payment = _entity(payload, "payment")
    return PaymentFailed(
        payment_id=_require(payment.get("id"), "payment id"),
        error_code=payment.get("error_code"),
        error_description=payment.get("error_description"),
    )


def _parse_refund_created(payload):
    refund = _entity(payload, "refund")
    payment = _entity(payload, "payment")
    return RefundCreated(
        refund_id=_require(refund.get("id"), "refund id"),
        payment_id=_require(
            payment.get("id") or refund.get("payment_id"), "payment id"
        ),
        amount=refund.get("amount"),
        status=refund.get("status"),
        created_at=_epoch(refund.get("created_at"), "refund created_at"),
        subscription_ref=_notes(payment).get("subscription_id"),
    )


def _parse_subscription_charged(payload):
    subscription = _entity(payload, "subscription")
    payment = _entity(payload, "payment")
    return SubscriptionCharged(
        subscription_id=_require(subscription.get("id"), "subscription id"),
        payment_id=_require(payment.get("id"), "payment id"),
        order_id=payment.get("order_id"),
        amount=payment.get("amount"),
        currency=payment.get("currency") or "INR",
        status=payment.get("status") or "captured",
        current_end=_epoch(subscription.get("current_end"), "current_end"),
        user_ref=(
            _notes(subscription).get("user_id") or _notes(payment).get("user_id")
        ),
    )


_PARSERS = {
    "payment.captured": _parse_payment_captured,
    "payment.failed": _parse_payment_failed,
    "refund.created": _parse_refund_created,
    "subscription.charged": _parse_subscription_charged,
}


def parse_event(raw_body):
    """Parse an authenticated webhook body into an event tuple.

    Raises ValidationError if the envelope is malformed or a known event is
    missing the ids its handler keys on.
    """
    try:
        envelope = json.loads(raw_body)
    except ValueError as e:
        raise ValidationError("Webhook body is not valid JSON") from e

    if not isinstance(envelope, dict) or not isinstance(envelope.get("event"), str):
        raise ValidationError("Webhook body has no event name")

    name = envelope["event"]
    parser = _PARSERS.get(name)
    if parser is None:
        return Unhandled(name=name)

    payload = envelope.get("payload")
    return parser(payload if isinstance(payload, dict) else {})


# ──────────────────────────────────────────────
# Entry point
# ──────────────────────────────────────────────

def handle_webhook_event(raw_body, signature_header, secret,
                         fail_on_storage_error=False):
    """Authenticate, parse and apply one webhook delivery.

    Returns {"success": True} once the signature is verified, regardless of
    per-event outcome (unless fail_on_storage_error is set).

    Raises:
        ConfigurationError: webhook secret unset.
        SignatureMismatchError: missing or wrong signature.
        ValidationError: malformed envelope.
        WriteFailure: storage error and fail_on_storage_error=True.
    """
    verify_webhook_signature(raw_body, signature_header, secret)
    event = parse_event(raw_body)

    handler = _HANDLERS.get(type(event))
    if handler is None:
        logger.info(f"Ignoring unhandled webhook event '{event.name}'")
        return {"success": True}

    event_name = _EVENT_NAMES[type(event)]
    try:
        handler(event)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(
            f"Error handling {event_name} for payment {event.payment_id}: {e}",
            exc_info=True,
        )
        if fail_on_storage_error:
            raise WriteFailure(event_name) from e

    return {"success": True}


# ──────────────────────────────────────────────
# Event Handlers
# ──────────────────────────────────────────────

def _merge_metadata(row, **values):
    # Reassign so SQLAlchemy sees the JSON column change
    row.metadata_ = {**(row.metadata_ or {}), **values}


def _handle_payment_captured(event):
    """payment.captured -> status=captured on the existing row.

    A payment that is not in our table may have been created through
    another channel; that is a no-op. A refunded payment stays refunded.
    """
    payment = find_payment_by_gateway_id(event.payment_id)
    if payment is None:
        logger.info(
            f"payment.captured: no local record for {event.payment_id}, "
            f"it may have originated outside this service"
        )
        return

    if payment.status == "refunded":
        logger.warning(
            f"payment.captured: {event.payment_id} is already refunded, "
            f"ignoring out-of-order capture"
        )
        return

    if payment.status == "captured":
        return

    payment.status = "captured"
    db.session.flush()
    log_billing_audit(payment.user_id, "payment.captured", {
        "gateway_payment_id": event.payment_id,
    })


def _handle_payment_failed(event):
    """payment.failed -> status=failed, error details kept in metadata."""
    payment = find_payment_by_gateway_id(event.payment_id)
    if payment is None:
        logger.info(f"payment.failed: no local record for {event.payment_id}")
        return

    payment.status = "failed"
    _merge_metadata(
        payment,
        error_code=event.error_code,
        error_description=event.error_description,
    )
    db.session.flush()
    log_billing_audit(payment.user_id, "payment.failed", {
        "gateway_payment_id": event.payment_id,
        "error_code": event.error_code,
    })


def _handle_refund_created(event):
    """refund.created -> status=refunded, and cancel the linked subscription."""
    payment = find_payment_by_gateway_id(event.payment_id)
    subscription_ref = event.subscription_ref

    if payment is None:
        logger.warning(f"refund.created: no local record for {event.payment_id}")
    elif (payment.status == "refunded"
          and (payment.metadata_ or {}).get("refund_id") == event.refund_id):
        subscription_ref = payment.subscription_id or subscription_ref
    else:
        payment.status = "refunded"
        _merge_metadata(
            payment,
            refund_id=event.refund_id,
            refund_amount=event.amount,
            refund_status=event.status,
            refund_created_at=_epoch_to_iso(event.created_at),
        )
        subscription_ref = payment.subscription_id or subscription_ref
        db.session.flush()
        log_billing_audit(payment.user_id, "payment.refunded", {
            "gateway_payment_id": event.payment_id,
            "refund_id": event.refund_id,
            "refund_amount": event.amount,
        })

    if not subscription_ref:
        return

    sub = find_subscription(subscription_ref)
    if sub is None:
        logger.warning(
            f"refund.created: subscription {subscription_ref} not found for "
            f"payment {event.payment_id}"
        )
        return

    if sub.status != "cancelled":
        sub.status = "cancelled"
        db.session.flush()
        log_billing_audit(sub.user_id, "subscription.cancelled", {
            "subscription_id": sub.id,
            "reason": "refund",
            "refund_id": event.refund_id,
        })


def _handle_subscription_charged(event):
    """subscription.charged -> record the recurring payment, renew the period.

    Deduplicated on the gateway payment id: a redelivered charge neither
    inserts a second Payment nor moves the period again.
    """
    if find_payment_by_gateway_id(event.payment_id) is not None:
        logger.info(
            f"subscription.charged: payment {event.payment_id} already recorded, skipping"
        )
        return

    sub = find_subscription(event.subscription_id)
    user_id = sub.user_id if sub is not None else event.user_ref
    if not user_id:
        logger.warning(
            f"subscription.charged: cannot attribute payment {event.payment_id} "
            f"(unknown subscription {event.subscription_id}, no user_id note)"
        )
        return

    db.session.add(Payment(
        user_id=user_id,
        subscription_id=sub.id if sub is not None else None,
        gateway_payment_id=event.payment_id,
        gateway_order_id=event.order_id,
        amount=event.amount or 0,
        currency=event.currency,
        status=event.status,
        metadata_={"gateway_subscription_id": event.subscription_id},
    ))
    db.session.flush()

    if sub is None:
        logger.warning(
            f"subscription.charged: recorded payment {event.payment_id} but "
            f"subscription {event.subscription_id} has no local record"
        )
        return

    now = datetime.now(timezone.utc)
    sub.current_period_start = now
    if event.current_end:
        sub.current_period_end = datetime.fromtimestamp(
            event.current_end, tz=timezone.utc
        )
    else:
        # Keep current_period_end after current_period_start for the new
        # period: an unchanged end would now sit in the past
        sub.current_period_end = compute_period_end(now, sub.plan.interval)
    db.session.flush()

    log_billing_audit(user_id, "subscription.charged", {
        "subscription_id": sub.id,
        "gateway_payment_id": event.payment_id,
        "amount": event.amount,
    })


def _epoch_to_iso(ts):
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


_HANDLERS = {
    PaymentCaptured: _handle_payment_captured,
    PaymentFailed: _handle_payment_failed,
    RefundCreated: _handle_refund_created,
    SubscriptionCharged: _handle_subscription_charged,
}

_EVENT_NAMES = {
    PaymentCaptured: "payment.captured",
    PaymentFailed: "payment.failed",
    RefundCreated: "refund.created",
    SubscriptionCharged: "subscription.charged",
}
