"""HMAC-SHA256 signature checks for Razorpay.

Two independent secrets are involved:
- RAZORPAY_KEY_SECRET signs the checkout confirmation "<order_id>|<payment_id>".
- RAZORPAY_WEBHOOK_SECRET signs the raw webhook body.

These functions are pure: they never read or write stored state, and they
fail closed (ConfigurationError) when the secret is missing.
"""

import hashlib
import hmac
from collections import namedtuple

from noxpay.errors import ConfigurationError, SignatureMismatchError

VerificationResult = namedtuple("VerificationResult", ["success", "error"])


def _to_bytes(value):
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


def compute_signature(secret, message):
    """Hex HMAC-SHA256 of `message` (str or bytes) under `secret`."""
    if not secret:
        raise ConfigurationError("Signing secret is not configured")
    return hmac.new(
        _to_bytes(secret), _to_bytes(message), hashlib.sha256
    ).hexdigest()


def verify_payment(order_id, payment_id, signature, secret):
    """Check a checkout confirmation triple.

    Returns VerificationResult(success, error). A verified signature only
    proves the triple came from Razorpay; callers must still fetch the
    payment and confirm it is captured.
    """
    if not secret:
        raise ConfigurationError("Razorpay key secret is not configured")

    if not order_id or not payment_id or not signature:
        return VerificationResult(False, "Missing order id, payment id or signature")

    expected = compute_signature(secret, f"{order_id}|{payment_id}")
    if hmac.compare_digest(_to_bytes(expected), _to_bytes(signature)):
        return VerificationResult(True, None)
    return VerificationResult(False, "Invalid signature")


def verify_webhook_signature(raw_body, signature_header, secret):
    """Authenticate a webhook body before it is parsed.

    Raises ConfigurationError if the webhook secret is unset and
    SignatureMismatchError if the header is missing or wrong.
    """
    if not secret:
        raise ConfigurationError("Razorpay webhook secret is not configured")
    if not signature_header:
        raise SignatureMismatchError()

    expected = compute_signature(secret, raw_body)
    if not hmac.compare_digest(_to_bytes(expected), _to_bytes(signature_header)):
        raise SignatureMismatchError()

