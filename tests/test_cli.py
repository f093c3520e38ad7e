"""Tests for the Flask CLI commands (seed-plans, verify-razorpay, db-status)."""

from unittest.mock import patch

from noxpay.errors import GatewayError
from noxpay.models.plan import SubscriptionPlan
from noxpay.services.razorpay_client import RazorpayClient


class TestSeedPlans:

    def test_seeds_catalog_once(self, app):
        runner = app.test_cli_runner()

        first = runner.invoke(args=["seed-plans"])
        second = runner.invoke(args=["seed-plans"])

        assert "Seeded 9 plan(s)." in first.output
        assert "Seeded 0 plan(s)." in second.output
        assert SubscriptionPlan.query.count() == 9

        starter = SubscriptionPlan.query.filter_by(name="Starter", interval="monthly").one()
        assert starter.price == 99900


class TestVerifyRazorpay:

    @patch.object(RazorpayClient, "list_orders")
    def test_reports_ok(self, mock_list, app):
        mock_list.return_value = {"items": [], "count": 0}

        result = app.test_cli_runner().invoke(args=["verify-razorpay"])

        assert "Razorpay key mode: Test" in result.output
        assert "API credentials OK." in result.output
        mock_list.assert_called_once_with(count=1)

    @patch.object(RazorpayClient, "list_orders")
    def test_reports_gateway_error(self, mock_list, app):
        mock_list.side_effect = GatewayError("Authentication failed", upstream_status=401)

        result = app.test_cli_runner().invoke(args=["verify-razorpay"])

        assert "ERROR: Authentication failed" in result.output


class TestDbStatus:

    def test_counts_tables(self, app, seed_data):
        result = app.test_cli_runner().invoke(args=["db-status"])

        assert "Database connection OK." in result.output
        assert "subscription_plans" in result.output
