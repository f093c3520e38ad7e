"""Payments blueprint: /payments/*

Razorpay checkout flow plus the read/cancel endpoints used by the billing
dashboard. All responses are JSON; errors are raised as PaymentError
subclasses and rendered by the app-level handler.

Routes:
- GET  /payments/csrf-token               CSRF token for the POST routes
- GET  /payments/plans                    active plan catalog
- POST /payments/create-order             create a Razorpay order for a plan
- GET  /payments/order/<order_id>         rebuild checkout data for an order
- POST /payments/verify-payment           verify checkout, create subscription
- GET  /payments/subscription             current subscription
- POST /payments/subscription/cancel      cancel at period end
- POST /payments/subscription/resume      undo a pending cancel
- GET  /payments/history                  payments + invoices
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required
from flask_wtf.csrf import generate_csrf

from noxpay.errors import (
    PartialWriteError,
    PlanNotFound,
    ValidationError,
)
from noxpay.extensions import db, limiter
from noxpay.services import billing_service, order_service
from noxpay.services.razorpay_client import get_gateway
from noxpay.services.signatures import verify_payment

logger = logging.getLogger(__name__)

payments_bp = Blueprint("payments", __name__, url_prefix="/payments")

VERIFICATION_FAILED = "Payment verification failed"


def _json_body():
    body = request.get_json(silent=True)
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _field(body, name, alias):
    """Read `name`, falling back to the razorpay_* name the checkout widget uses."""
    value = body.get(name) or body.get(alias)
    return value if isinstance(value, str) else None


# ──────────────────────────────────────────────
# GET /payments/csrf-token
# ──────────────────────────────────────────────

@payments_bp.route("/csrf-token")
def csrf_token():
    """Token for the session, sent back in the X-CSRFToken header on POSTs."""
    return jsonify({"csrfToken": generate_csrf()})


# ──────────────────────────────────────────────
# GET /payments/plans
# ──────────────────────────────────────────────

@payments_bp.route("/plans")
def list_plans():
    """Active subscription plans, cheapest first."""
    plans = billing_service.list_active_plans()
    return jsonify({"plans": [plan.to_dict() for plan in plans]})


# ──────────────────────────────────────────────
# POST /payments/create-order
# ──────────────────────────────────────────────

@payments_bp.route("/create-order", methods=["POST"])
@limiter.limit("20 per minute")
@login_required
def create_order():
    """Create a Razorpay order for the logged-in user.

    Body: {planId, receiptId?, currency?}. Currency defaults to INR.
    """
    body = _json_body()
    plan_id = body.get("planId")
    if not plan_id:
        raise ValidationError("Missing required field: planId")

    currency = str(body.get("currency") or "INR").upper()

    try:
        order = order_service.create_order(
            get_gateway(),
            user_id=current_user.id,
            plan_id=plan_id,
            currency=currency,
            receipt_id=body.get("receiptId"),
        )
    except PlanNotFound as e:
        raise ValidationError("Invalid subscription plan") from e

    return jsonify(order)


# ──────────────────────────────────────────────
# GET /payments/order/<order_id>
# ──────────────────────────────────────────────

@payments_bp.route("/order/<order_id>")
@login_required
def order_details(order_id):
    """Checkout data for an existing order (e.g. after a page reload)."""
    order = order_service.get_order_details(
        get_gateway(), order_id=order_id, user_id=current_user.id
    )
    return jsonify(order)


# ──────────────────────────────────────────────
# POST /payments/verify-payment
# ──────────────────────────────────────────────

@payments_bp.route("/verify-payment", methods=["POST"])
@limiter.limit("20 per minute")
@login_required
def verify_payment_route():
    """Verify a completed checkout and create the subscription.

    1. Check the checkout signature (RAZORPAY_KEY_SECRET)
    2. Fetch the payment from Razorpay and require status == captured
    3. Fetch the order and require its notes to name this user and plan,
       and the captured amount to be the plan's price
    4. Finalize: subscription + payment + invoice in one transaction

    A resubmitted confirmation for an already-recorded payment returns the
    existing subscription instead of writing again.
    """
    body = _json_body()
    payment_id = _field(body, "paymentId", "razorpayPaymentId")
    order_id = _field(body, "orderId", "razorpayOrderId")
    signature = _field(body, "signature", "razorpaySignature")
    plan_id = body.get("planId")

    if not payment_id or not order_id or not signature or not plan_id:
        raise ValidationError("Missing required fields for payment verification")

    result = verify_payment(
        order_id, payment_id, signature, current_app.config.get("RAZORPAY_KEY_SECRET")
    )
    if not result.success:
        logger.warning(
            f"Checkout signature mismatch: user={current_user.id} "
            f"order={order_id} payment={payment_id}"
        )
        return jsonify({"error": VERIFICATION_FAILED}), 400

    gateway_payment = get_gateway().fetch_payment(payment_id)
    status = gateway_payment.get("status")
    if status != "captured":
        logger.warning(
            f"Payment {payment_id} not captured (status={status}) for user {current_user.id}"
        )
        return jsonify({"error": VERIFICATION_FAILED}), 400

    amount = gateway_payment.get("amount")
    currency = gateway_payment.get("currency") or "INR"
    if not order_service.confirm_order_matches(
        get_gateway(),
        order_id=order_id,
        user_id=current_user.id,
        plan_id=plan_id,
        amount=amount,
        currency=currency,
    ):
        return jsonify({"error": VERIFICATION_FAILED}), 400

    subscription = _existing_subscription(payment_id)
    if subscription is None:
        try:
            subscription = billing_service.finalize_verified_payment(
                user_id=current_user.id,
                plan_id=plan_id,
                payment_id=payment_id,
                order_id=order_id,
                amount=amount,
                currency=currency,
            )
        except PartialWriteError:
            # A concurrent submit of the same confirmation may have won
            subscription = _existing_subscription(payment_id)
            if subscription is None:
                raise

    return jsonify({
        "subscription": subscription.to_dict(include_plan=True),
        "payment": {
            "id": gateway_payment.get("id"),
            "amount": gateway_payment.get("amount"),
            "currency": gateway_payment.get("currency"),
            "status": status,
        },
    })


def _existing_subscription(payment_id):
    """Subscription already created for this gateway payment, if any.

    Raises ValidationError if the payment belongs to a different user.
    """
    payment = billing_service.find_payment_by_gateway_id(payment_id)
    if payment is None or payment.subscription is None:
        return None
    if payment.user_id != current_user.id:
        logger.warning(
            f"User {current_user.id} submitted payment {payment_id} owned by {payment.user_id}"
        )
        raise ValidationError(VERIFICATION_FAILED)
    return payment.subscription


# ──────────────────────────────────────────────
# Subscription management
# ──────────────────────────────────────────────

@payments_bp.route("/subscription")
@login_required
def current_subscription():
    sub = billing_service.get_current_subscription(current_user.id)
    return jsonify({
        "subscription": sub.to_dict(include_plan=True) if sub else None,
    })


@payments_bp.route("/subscription/cancel", methods=["POST"])
@login_required
def cancel_subscription():
    """Cancel at the end of the current period. Access continues until then."""
    sub = billing_service.set_cancel_at_period_end(current_user.id, True)
    db.session.commit()
    return jsonify({"subscription": sub.to_dict(include_plan=True)})


@payments_bp.route("/subscription/resume", methods=["POST"])
@login_required
def resume_subscription():
    sub = billing_service.set_cancel_at_period_end(current_user.id, False)
    db.session.commit()
    return jsonify({"subscription": sub.to_dict(include_plan=True)})


# ──────────────────────────────────────────────
# GET /payments/history
# ──────────────────────────────────────────────

@payments_bp.route("/history")
@login_required
def history():
    return jsonify({
        "payments": [p.to_dict() for p in billing_service.list_payments(current_user.id)],
        "invoices": [i.to_dict() for i in billing_service.list_invoices(current_user.id)],
    })
