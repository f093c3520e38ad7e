"""Tests for the Razorpay webhook reconciler.

Covers:
- Signature enforcement (missing secret, missing/bad header)
- payment.captured / payment.failed / refund.created / subscription.charged
- Redelivery of any event leaves the store unchanged
- Out-of-range timestamps are rejected with 400 before any write
- Unknown events are acknowledged without writes
- Storage errors: acknowledged by default, 500 when configured to fail
"""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
from sqlalchemy.exc import SQLAlchemyError

from noxpay.errors import ValidationError
from noxpay.extensions import db
from noxpay.models.audit import AuditEvent
from noxpay.models.payment import Payment
from noxpay.models.subscription import Subscription
from noxpay.services.billing_service import finalize_verified_payment
from noxpay.services.signatures import compute_signature
from noxpay.services.webhook_service import (
    PaymentCaptured,
    RefundCreated,
    SubscriptionCharged,
    Unhandled,
    parse_event,
)

URL = "/payments/webhooks"


def _post(client, app, event, raw=None, signature=None):
    body = raw if raw is not None else json.dumps(event).encode()
    if signature is None:
        signature = compute_signature(app.config["RAZORPAY_WEBHOOK_SECRET"], body)
    return client.post(
        URL,
        data=body,
        content_type="application/json",
        headers={"X-Razorpay-Signature": signature},
    )


def _event(name, **entities):
    return {
        "entity": "event",
        "event": name,
        "payload": {key: {"entity": value} for key, value in entities.items()},
    }


def _counts():
    return (
        Payment.query.count(),
        Subscription.query.count(),
        AuditEvent.query.count(),
    )


@pytest.fixture
def subscribed(seed_data):
    """A finalized weekly subscription paid with pay_wh_1."""
    sub = finalize_verified_payment(
        user_id=seed_data["user_id"],
        plan_id=seed_data["weekly_plan_id"],
        payment_id="pay_wh_1",
        order_id="order_wh_1",
        amount=2999,
    )
    return {**seed_data, "subscription_id": sub.id, "payment_id": "pay_wh_1"}


def _payment(gateway_payment_id):
    return Payment.query.filter_by(gateway_payment_id=gateway_payment_id).one()


class TestWebhookAuthentication:

    def test_bad_signature_rejected(self, client, app, subscribed):
        before = _counts()
        resp = _post(
            client, app,
            _event("payment.failed", payment={"id": "pay_wh_1"}),
            signature="0" * 64,
        )
        assert resp.status_code == 401
        assert _counts() == before
        assert _payment("pay_wh_1").status == "captured"

    def test_missing_signature_header(self, client, app, subscribed):
        resp = client.post(
            URL,
            data=json.dumps(_event("payment.failed", payment={"id": "pay_wh_1"})),
            content_type="application/json",
        )
        assert resp.status_code == 401

    def test_missing_secret_fails_closed(self, client, app, subscribed, monkeypatch):
        event = _event("payment.failed", payment={"id": "pay_wh_1"})
        body = json.dumps(event).encode()
        signature = compute_signature("whsec_test_fake", body)
        monkeypatch.setitem(app.config, "RAZORPAY_WEBHOOK_SECRET", None)

        resp = _post(client, app, event, raw=body, signature=signature)

        assert resp.status_code == 500
        assert _payment("pay_wh_1").status == "captured"

    def test_alternate_signature_header(self, client, app, subscribed):
        body = json.dumps(_event("payment.captured", payment={"id": "pay_wh_1"})).encode()
        resp = client.post(
            URL,
            data=body,
            content_type="application/json",
            headers={"X-Signature": compute_signature(app.config["RAZORPAY_WEBHOOK_SECRET"], body)},
        )
        assert resp.status_code == 200

    def test_malformed_body(self, client, app):
        resp = _post(client, app, None, raw=b"{not json")
        assert resp.status_code == 400

    def test_missing_payment_id(self, client, app):
        resp = _post(client, app, _event("payment.captured", payment={"amount": 100}))
        assert resp.status_code == 400


class TestParseEvent:

    def test_unknown_event(self):
        assert parse_event(b'{"event": "order.paid", "payload": {}}') == Unhandled("order.paid")

    def test_payment_captured(self):
        raw = json.dumps(_event(
            "payment.captured",
            payment={"id": "pay_1", "order_id": "order_1", "amount": 500, "currency": "INR"},
        ))
        assert parse_event(raw) == PaymentCaptured("pay_1", "order_1", 500, "INR")

    def test_refund_payment_id_from_refund_entity(self):
        raw = json.dumps(_event(
            "refund.created",
            refund={"id": "rfnd_1", "payment_id": "pay_9", "amount": 100, "created_at": 1700000000},
        ))
        event = parse_event(raw)
        assert isinstance(event, RefundCreated)
        assert event.payment_id == "pay_9"
        assert event.created_at == 1700000000

    def test_subscription_charged_defaults(self):
        raw = json.dumps(_event(
            "subscription.charged",
            subscription={"id": "sub_1", "notes": []},
            payment={"id": "pay_1", "amount": 100, "notes": {"user_id": "u1"}},
        ))
        event = parse_event(raw)
        assert isinstance(event, SubscriptionCharged)
        assert event.currency == "INR"
        assert event.status == "captured"
        assert event.current_end is None
        assert event.user_ref == "u1"

    def test_far_future_current_end_rejected(self):
        raw = json.dumps(_event(
            "subscription.charged",
            subscription={"id": "sub_1", "current_end": 10**20},
            payment={"id": "pay_1"},
        ))
        with pytest.raises(ValidationError):
            parse_event(raw)

    def test_negative_refund_timestamp_rejected(self):
        raw = json.dumps(_event(
            "refund.created",
            refund={"id": "rfnd_1", "payment_id": "pay_9", "created_at": -1},
        ))
        with pytest.raises(ValidationError):
            parse_event(raw)


class TestPaymentCaptured:

    def test_marks_payment_captured(self, client, app, subscribed):
        payment = _payment("pay_wh_1")
        payment.status = "authorized"
        db.session.commit()

        resp = _post(client, app, _event("payment.captured", payment={"id": "pay_wh_1"}))

        assert resp.status_code == 200
        assert resp.get_json() == {"success": True}
        assert _payment("pay_wh_1").status == "captured"

    def test_redelivery_is_noop(self, client, app, subscribed):
        event = _event("payment.captured", payment={"id": "pay_wh_1"})
        _post(client, app, event)
        before = _counts()

        resp = _post(client, app, event)

        assert resp.status_code == 200
        assert _counts() == before
        assert _payment("pay_wh_1").status == "captured"

    def test_unknown_payment_is_noop(self, client, app, subscribed):
        before = _counts()
        resp = _post(client, app, _event("payment.captured", payment={"id": "pay_elsewhere"}))
        assert resp.status_code == 200
        assert _counts() == before

    def test_late_capture_does_not_undo_refund(self, client, app, subscribed):
        payment = _payment("pay_wh_1")
        payment.status = "refunded"
        db.session.commit()

        _post(client, app, _event("payment.captured", payment={"id": "pay_wh_1"}))

        assert _payment("pay_wh_1").status == "refunded"


class TestPaymentFailed:

    def test_records_error_details(self, client, app, subscribed):
        resp = _post(client, app, _event("payment.failed", payment={
            "id": "pay_wh_1",
            "error_code": "BAD_REQUEST_ERROR",
            "error_description": "Payment was declined by the bank",
        }))

        assert resp.status_code == 200
        payment = _payment("pay_wh_1")
        assert payment.status == "failed"
        assert payment.metadata_["error_code"] == "BAD_REQUEST_ERROR"
        assert payment.metadata_["error_description"] == "Payment was declined by the bank"


class TestRefundCreated:

    def _refund_event(self, payment_id="pay_wh_1", payment_notes=None):
        return _event(
            "refund.created",
            refund={
                "id": "rfnd_FP8QHiV938haTz",
                "payment_id": payment_id,
                "amount": 2999,
                "status": "processed",
                "created_at": 1700000000,
            },
            payment={"id": payment_id, "notes": payment_notes or []},
        )

    def test_refund_cancels_subscription(self, client, app, subscribed):
        resp = _post(client, app, self._refund_event())

        assert resp.status_code == 200
        payment = _payment("pay_wh_1")
        assert payment.status == "refunded"
        assert payment.metadata_["refund_id"] == "rfnd_FP8QHiV938haTz"
        assert payment.metadata_["refund_amount"] == 2999
        assert payment.metadata_["refund_status"] == "processed"
        assert payment.metadata_["refund_created_at"] == "2023-11-14T22:13:20+00:00"

        sub = db.session.get(Subscription, subscribed["subscription_id"])
        assert sub.status == "cancelled"

    def test_redelivery_is_noop(self, client, app, subscribed):
        event = self._refund_event()
        _post(client, app, event)
        before = _counts()

        _post(client, app, event)

        assert _counts() == before
        assert AuditEvent.query.filter_by(action="subscription.cancelled").count() == 1

    def test_unknown_payment_uses_notes_subscription(self, client, app, subscribed):
        resp = _post(client, app, self._refund_event(
            payment_id="pay_not_local",
            payment_notes={"subscription_id": subscribed["subscription_id"]},
        ))

        assert resp.status_code == 200
        sub = db.session.get(Subscription, subscribed["subscription_id"])
        assert sub.status == "cancelled"
        assert _payment("pay_wh_1").status == "captured"

    def test_out_of_range_created_at_is_bad_request(self, client, app, subscribed):
        event = self._refund_event()
        event["payload"]["refund"]["entity"]["created_at"] = 10**20
        before = _counts()

        resp = _post(client, app, event)

        assert resp.status_code == 400
        assert _counts() == before
        assert _payment("pay_wh_1").status == "captured"


class TestSubscriptionCharged:

    @pytest.fixture
    def gateway_sub(self, subscribed):
        sub = db.session.get(Subscription, subscribed["subscription_id"])
        sub.gateway_subscription_id = "sub_00000000000001"
        db.session.commit()
        return subscribed

    def _charged(self, payment_id="pay_renew_1", current_end=1735689600, sub_id="sub_00000000000001",
                 notes=None):
        subscription = {"id": sub_id, "notes": notes or []}
        if current_end is not None:
            subscription["current_end"] = current_end
        return _event(
            "subscription.charged",
            subscription=subscription,
            payment={
                "id": payment_id,
                "order_id": "order_renew_1",
                "amount": 2999,
                "currency": "INR",
                "status": "captured",
            },
        )

    def test_records_payment_and_renews_period(self, client, app, gateway_sub):
        resp = _post(client, app, self._charged())

        assert resp.status_code == 200
        payment = _payment("pay_renew_1")
        assert payment.user_id == gateway_sub["user_id"]
        assert payment.subscription_id == gateway_sub["subscription_id"]
        assert payment.amount == 2999
        assert payment.status == "captured"
        assert payment.metadata_ == {"gateway_subscription_id": "sub_00000000000001"}

        sub = db.session.get(Subscription, gateway_sub["subscription_id"])
        assert sub.current_period_end.replace(tzinfo=None) == datetime(2025, 1, 1)

    def test_redelivery_does_not_duplicate(self, client, app, gateway_sub):
        event = self._charged()
        _post(client, app, event)
        period_end = db.session.get(
            Subscription, gateway_sub["subscription_id"]
        ).current_period_end
        before = _counts()

        _post(client, app, event)

        assert _counts() == before
        assert Payment.query.filter_by(gateway_payment_id="pay_renew_1").count() == 1
        sub = db.session.get(Subscription, gateway_sub["subscription_id"])
        assert sub.current_period_end == period_end

    def test_missing_current_end_uses_plan_interval(self, client, app, gateway_sub):
        _post(client, app, self._charged(current_end=None))

        sub = db.session.get(Subscription, gateway_sub["subscription_id"])
        assert sub.current_period_end - sub.current_period_start == timedelta(days=7)
        assert sub.current_period_end.replace(tzinfo=timezone.utc) > datetime.now(timezone.utc)

    def test_resolves_by_local_id(self, client, app, subscribed):
        resp = _post(client, app, self._charged(sub_id=subscribed["subscription_id"]))

        assert resp.status_code == 200
        assert _payment("pay_renew_1").subscription_id == subscribed["subscription_id"]

    def test_unknown_subscription_with_user_note(self, client, app, seed_data):
        resp = _post(client, app, self._charged(
            sub_id="sub_unknown", notes={"user_id": seed_data["user_id"]}
        ))

        assert resp.status_code == 200
        payment = _payment("pay_renew_1")
        assert payment.user_id == seed_data["user_id"]
        assert payment.subscription_id is None

    def test_unattributable_charge_is_skipped(self, client, app, seed_data):
        resp = _post(client, app, self._charged(sub_id="sub_unknown"))

        assert resp.status_code == 200
        assert Payment.query.count() == 0

    def test_out_of_range_current_end_is_bad_request(self, client, app, gateway_sub):
        before = _counts()

        resp = _post(client, app, self._charged(current_end=10**20))

        assert resp.status_code == 400
        assert _counts() == before


class TestUnhandledEvents:

    def test_acknowledged_without_writes(self, client, app, subscribed):
        before = _counts()
        resp = _post(client, app, _event("order.paid", order={"id": "order_wh_1"}))
        assert resp.status_code == 200
        assert resp.get_json() == {"success": True}
        assert _counts() == before


class TestStorageErrors:

    @patch("noxpay.services.webhook_service.find_payment_by_gateway_id")
    def test_acknowledged_by_default(self, mock_find, client, app, subscribed):
        mock_find.side_effect = SQLAlchemyError("database is locked")

        resp = _post(client, app, _event("payment.failed", payment={"id": "pay_wh_1"}))

        assert resp.status_code == 200
        assert _payment("pay_wh_1").status == "captured"

    @patch("noxpay.services.webhook_service.find_payment_by_gateway_id")
    def test_fails_when_configured(self, mock_find, client, app, subscribed, monkeypatch):
        mock_find.side_effect = SQLAlchemyError("database is locked")
        monkeypatch.setitem(app.config, "WEBHOOK_FAIL_ON_STORAGE_ERROR", True)

        resp = _post(client, app, _event("payment.failed", payment={"id": "pay_wh_1"}))

        assert resp.status_code == 500
        assert resp.get_json() == {"error": "Failed to save payment records"}
