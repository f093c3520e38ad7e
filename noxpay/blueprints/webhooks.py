"""Webhooks blueprint: /payments/webhooks

Receives Razorpay webhook events. CSRF-exempt.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from noxpay.errors import SignatureMismatchError
from noxpay.services.webhook_service import handle_webhook_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/payments")


@webhooks_bp.route("/webhooks", methods=["POST"])
def razorpay_webhook():
    """Receive and process Razorpay webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with RAZORPAY_WEBHOOK_SECRET
    3. Pass to handle_webhook_event (idempotent per event type)
    4. Return 200 to acknowledge receipt

    401 on a missing/bad signature, 500 if the secret is not configured.
    CSRF is exempted for this blueprint in create_app().
    """
    raw_body = request.get_data()
    sig_header = (
        request.headers.get("X-Razorpay-Signature")
        or request.headers.get("X-Signature")
    )

    try:
        result = handle_webhook_event(
            raw_body,
            sig_header,
            current_app.config.get("RAZORPAY_WEBHOOK_SECRET"),
            fail_on_storage_error=current_app.config.get(
                "WEBHOOK_FAIL_ON_STORAGE_ERROR", False
            ),
        )
    except SignatureMismatchError:
        logger.warning(
            f"Webhook signature verification failed "
            f"(header present: {bool(sig_header)}, from {request.remote_addr})"
        )
        raise

    return jsonify(result), 200
