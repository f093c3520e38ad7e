"""Razorpay client: the only code that talks to the payment gateway.

One RazorpayClient is built per app in init_app() and stored in
app.extensions["razorpay"]. Request handlers fetch it with get_gateway()
and pass it to the service functions explicitly.

Every call uses a bounded timeout. Nothing is retried here: checkout is
interactive, so retrying is the user's decision.
"""

import logging

import requests
from flask import current_app

from noxpay.errors import ConfigurationError, GatewayError, GatewayTimeout

logger = logging.getLogger(__name__)

EXTENSION_KEY = "razorpay"


class RazorpayClient:
    """Thin wrapper over the Razorpay REST API (orders + payments)."""

    def __init__(self, key_id, key_secret, api_base, timeout=10, session=None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.api_base = api_base.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    # ──────────────────────────────────────────────
    # Orders
    # ──────────────────────────────────────────────

    def create_order(self, amount, currency, receipt, notes=None):
        """Create an order. `amount` is in minor units (paise / cents)."""
        return self._request(
            "POST",
            "/orders",
            json_payload={
                "amount": amount,
                "currency": currency,
                "receipt": receipt,
                "notes": notes or {},
                "payment_capture": 1,
            },
        )

    def fetch_order(self, order_id):
        return self._request("GET", f"/orders/{order_id}")

    def list_orders(self, count=10):
        return self._request("GET", f"/orders?count={count}")

    # ──────────────────────────────────────────────
    # Payments
    # ──────────────────────────────────────────────

    def fetch_payment(self, payment_id):
        return self._request("GET", f"/payments/{payment_id}")

    # ──────────────────────────────────────────────
    # Transport
    # ──────────────────────────────────────────────

    def _request(self, method, path, json_payload=None):
        if not self.key_id or not self.key_secret:
            raise ConfigurationError("Razorpay credentials are not configured")

        url = f"{self.api_base}/{path.lstrip('/')}"
        try:
            response = self.session.request(
                method=method,
                url=url,
                auth=(self.key_id, self.key_secret),
                json=json_payload,
                timeout=self.timeout,
            )
        except requests.Timeout as e:
            logger.error(f"Razorpay {method} {path} timed out after {self.timeout}s")
            raise GatewayTimeout(f"Razorpay request timed out: {e}") from e
        except requests.RequestException as e:
            logger.error(f"Razorpay {method} {path} failed: {e}")
            raise GatewayError(f"Failed to contact Razorpay: {e}") from e

        if response.status_code >= 400:
            description = _error_description(response)
            logger.error(
                f"Razorpay {method} {path} returned {response.status_code}: {description}"
            )
            raise GatewayError(description, upstream_status=response.status_code)

        try:
            payload = response.json()
        except ValueError as e:
            raise GatewayError("Invalid response received from Razorpay") from e

        if not isinstance(payload, dict):
            raise GatewayError("Unexpected response format from Razorpay")
        return payload


def _error_description(response):
    """Pull Razorpay's error.description out of an error body, if any."""
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("description"):
        return error["description"]
    return f"HTTP {response.status_code}"


def init_app(app):
    """Build the app's RazorpayClient from config."""
    app.extensions[EXTENSION_KEY] = RazorpayClient(
        key_id=app.config.get("RAZORPAY_KEY_ID"),
        key_secret=app.config.get("RAZORPAY_KEY_SECRET"),
        api_base=app.config["RAZORPAY_API_BASE"],
        timeout=app.config["RAZORPAY_TIMEOUT"],
    )


def get_gateway():
    """Return the RazorpayClient bound to the current app."""
    return current_app.extensions[EXTENSION_KEY]
