"""Tests for the Razorpay REST client.

Covers:
- Order creation request shape (auth, timeout, payment_capture)
- Timeouts surface as GatewayTimeout and are not retried
- Upstream error descriptions are passed through
- Missing credentials fail closed
"""

from unittest.mock import MagicMock

import pytest
import requests

from noxpay.errors import ConfigurationError, GatewayError, GatewayTimeout
from noxpay.services.razorpay_client import RazorpayClient, get_gateway


def _response(status_code, payload=None, json_error=False):
    resp = MagicMock()
    resp.status_code = status_code
    if json_error:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = payload
    return resp


def _client(session, **kwargs):
    return RazorpayClient(
        key_id=kwargs.get("key_id", "rzp_test_key"),
        key_secret=kwargs.get("key_secret", "rzp_test_secret"),
        api_base="https://api.razorpay.test/v1/",
        timeout=3,
        session=session,
    )


class TestRazorpayClient:

    def test_create_order_sends_expected_request(self):
        session = MagicMock()
        session.request.return_value = _response(200, {"id": "order_abc", "amount": 9999})

        order = _client(session).create_order(
            amount=9999, currency="INR", receipt="receipt_1", notes={"plan_id": "p1"}
        )

        assert order["id"] == "order_abc"
        kwargs = session.request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == "https://api.razorpay.test/v1/orders"
        assert kwargs["auth"] == ("rzp_test_key", "rzp_test_secret")
        assert kwargs["timeout"] == 3
        assert kwargs["json"] == {
            "amount": 9999,
            "currency": "INR",
            "receipt": "receipt_1",
            "notes": {"plan_id": "p1"},
            "payment_capture": 1,
        }

    def test_fetch_payment_url(self):
        session = MagicMock()
        session.request.return_value = _response(200, {"id": "pay_1", "status": "captured"})

        payment = _client(session).fetch_payment("pay_1")

        assert payment["status"] == "captured"
        assert session.request.call_args.kwargs["url"] == "https://api.razorpay.test/v1/payments/pay_1"

    def test_timeout_raises_gateway_timeout_without_retry(self):
        session = MagicMock()
        session.request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(GatewayTimeout):
            _client(session).fetch_payment("pay_1")
        assert session.request.call_count == 1

    def test_connection_error_raises_gateway_error(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(GatewayError) as exc:
            _client(session).fetch_order("order_1")
        assert not isinstance(exc.value, GatewayTimeout)
        assert exc.value.upstream_status is None

    def test_upstream_error_description_passed_through(self):
        session = MagicMock()
        session.request.return_value = _response(
            400,
            {"error": {"code": "BAD_REQUEST_ERROR", "description": "The amount must be atleast INR 1.00"}},
        )

        with pytest.raises(GatewayError) as exc:
            _client(session).create_order(amount=0, currency="INR", receipt="r")
        assert exc.value.message == "The amount must be atleast INR 1.00"
        assert exc.value.upstream_status == 400
        assert exc.value.status_code == 502

    def test_non_json_success_body(self):
        session = MagicMock()
        session.request.return_value = _response(200, json_error=True)

        with pytest.raises(GatewayError):
            _client(session).fetch_order("order_1")

    def test_missing_credentials_fail_closed(self):
        session = MagicMock()

        with pytest.raises(ConfigurationError):
            _client(session, key_secret=None).fetch_payment("pay_1")
        session.request.assert_not_called()


class TestGatewayBinding:

    def test_app_gets_configured_client(self, app):
        gateway = get_gateway()
        assert isinstance(gateway, RazorpayClient)
        assert gateway.key_id == app.config["RAZORPAY_KEY_ID"]
        assert gateway.timeout == app.config["RAZORPAY_TIMEOUT"]
