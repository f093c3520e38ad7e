"""Order service: turns (user, plan, currency) into a Razorpay order.

The checkout widget needs the order id plus plan and user details to
prefill the form; get_order_details() rebuilds the same shape from an
existing order so the checkout page can be reloaded.
"""

import logging
import time

from noxpay.errors import (
    GatewayError,
    OrderNotFound,
    PlanNotFound,
    UserNotFound,
    ValidationError,
)
from noxpay.extensions import db
from noxpay.models.user import User
from noxpay.services.billing_service import get_plan

logger = logging.getLogger(__name__)

SUPPORTED_CURRENCIES = ("INR", "USD")

# Fixed INR -> USD rate used when a plan has no explicit price_usd.
# Known limitation: not a live rate. Set price_usd on plans that sell in USD.
USD_PER_INR_FALLBACK_RATE = 0.012


def compute_charge_amount(plan, currency):
    """Return the charge in minor units for `plan` in `currency`."""
    if currency == "INR":
        return plan.price
    if currency == "USD":
        if plan.price_usd:
            return plan.price_usd
        amount = round(plan.price * USD_PER_INR_FALLBACK_RATE)
        logger.warning(
            f"Plan {plan.id} has no price_usd; using fallback rate "
            f"{USD_PER_INR_FALLBACK_RATE} ({plan.price} INR -> {amount} USD)"
        )
        return amount
    raise ValidationError(
        f"Unsupported currency '{currency}'. Must be one of: {', '.join(SUPPORTED_CURRENCIES)}"
    )


def _checkout_payload(gateway, order, plan, user):
    return {
        "orderId": order.get("id"),
        "amount": order.get("amount"),
        "currency": order.get("currency"),
        "receipt": order.get("receipt"),
        "planId": plan.id,
        "planName": plan.name,
        "interval": plan.interval,
        "gatewayPublicKey": gateway.key_id,
        "user": {
            "name": user.full_name or "",
            "email": user.email,
            "contact": user.phone_number or "",
        },
    }


def create_order(gateway, user_id, plan_id, currency="INR", receipt_id=None):
    """Create a Razorpay order for `plan_id` on behalf of `user_id`.

    Args:
        gateway: RazorpayClient.
        user_id: Local user id.
        plan_id: Must reference an active SubscriptionPlan.
        currency: "INR" or "USD".
        receipt_id: Defaults to receipt_<epoch-millis>.

    Returns the checkout payload dict.

    Raises:
        ValidationError: unsupported currency.
        PlanNotFound: plan missing or inactive.
        UserNotFound: no profile row for the user.
        GatewayError / GatewayTimeout: Razorpay failed (not retried).
    """
    if currency not in SUPPORTED_CURRENCIES:
        raise ValidationError(
            f"Unsupported currency '{currency}'. Must be one of: {', '.join(SUPPORTED_CURRENCIES)}"
        )

    plan = get_plan(plan_id, active_only=True)
    if plan is None:
        raise PlanNotFound()

    user = db.session.get(User, user_id)
    if user is None:
        raise UserNotFound()

    amount = compute_charge_amount(plan, currency)
    receipt = receipt_id or f"receipt_{int(time.time() * 1000)}"

    order = gateway.create_order(
        amount=amount,
        currency=currency,
        receipt=receipt,
        notes={
            "plan_id": plan.id,
            "plan_name": plan.name,
            "interval": plan.interval,
            "user_id": user.id,
            "user_email": user.email,
            "currency": currency,
        },
    )
    logger.info(
        f"Created Razorpay order {order.get('id')} for user {user.id} "
        f"(plan={plan.id}, amount={amount} {currency})"
    )
    return _checkout_payload(gateway, order, plan, user)


def get_order_details(gateway, order_id, user_id):
    """Rebuild the checkout payload for an existing Razorpay order.

    Raises:
        OrderNotFound: Razorpay has no such order, or it belongs to another user.
        ValidationError: the order carries no plan_id note.
        PlanNotFound / UserNotFound.
        GatewayError / GatewayTimeout.
    """
    try:
        order = gateway.fetch_order(order_id)
    except GatewayError as e:
        if e.upstream_status in (400, 404):
            raise OrderNotFound() from e
        raise

    notes = order.get("notes") or {}
    if not isinstance(notes, dict) or notes.get("user_id") != user_id:
        # Another user's order is reported as missing
        raise OrderNotFound()

    plan_id = notes.get("plan_id")
    if not plan_id:
        raise ValidationError("Plan ID not found in order notes")

    plan = get_plan(plan_id)
    if plan is None:
        raise PlanNotFound()

    user = db.session.get(User, user_id)
    if user is None:
        raise UserNotFound()

    return _checkout_payload(gateway, order, plan, user)


def confirm_order_matches(gateway, order_id, user_id, plan_id, amount, currency):
    """Check a captured payment against the order it was made for.

    The checkout signature only binds order_id to payment_id; the plan and
    the payer come from the notes written by create_order(). Returns False
    (and logs why) unless the order belongs to `user_id`, was created for
    `plan_id`, and `amount` is what the plan charges in `currency`.

    Raises GatewayError / GatewayTimeout for upstream failures other than
    an unknown order.
    """
    try:
        order = gateway.fetch_order(order_id)
    except GatewayError as e:
        if e.upstream_status in (400, 404):
            logger.warning(f"Order {order_id} not found at Razorpay during verification")
            return False
        raise

    notes = order.get("notes")
    notes = notes if isinstance(notes, dict) else {}
    if notes.get("user_id") != user_id:
        logger.warning(
            f"Order {order_id} belongs to {notes.get('user_id')}, submitted by {user_id}"
        )
        return False
    if notes.get("plan_id") != plan_id:
        logger.warning(
            f"Order {order_id} was created for plan {notes.get('plan_id')}, "
            f"submitted with plan {plan_id}"
        )
        return False

    plan = get_plan(plan_id)
    if plan is None:
        logger.warning(f"Order {order_id} references missing plan {plan_id}")
        return False

    try:
        expected = compute_charge_amount(plan, currency)
    except ValidationError:
        logger.warning(f"Order {order_id} paid in unsupported currency {currency}")
        return False
    if amount != expected or order.get("amount") != expected:
        logger.warning(
            f"Order {order_id} amount mismatch: paid {amount} {currency}, "
            f"order {order.get('amount')}, plan charges {expected}"
        )
        return False
    return True
