import os
import logging

import click
from flask import Flask, jsonify
from flask_wtf.csrf import CSRFError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from noxpay.config import config_by_name
from noxpay.errors import PaymentError
from noxpay.extensions import db, migrate, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    from noxpay.services import razorpay_client
    razorpay_client.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from noxpay import models  # noqa: F401

    # --- Register blueprints ---
    from noxpay.blueprints.payments import payments_bp
    from noxpay.blueprints.webhooks import webhooks_bp

    app.register_blueprint(payments_bp)
    app.register_blueprint(webhooks_bp)

    # Webhooks are authenticated by the signature over the raw body, not CSRF
    csrf.exempt(webhooks_bp)

    # --- Error handlers ---
    @app.errorhandler(PaymentError)
    def payment_error(e):
        if e.status_code >= 500:
            app.logger.error(f"{type(e).__name__}: {e.message}")
        return jsonify({"error": e.public_message()}), e.status_code

    @app.errorhandler(CSRFError)
    def csrf_error(e):
        return jsonify({"error": e.description}), 400

    @app.errorhandler(400)
    def bad_request(e):
        return jsonify({"error": "Bad request"}), 400

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests"}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # Permissions Policy (restrict browser features)
        response.headers["Permissions-Policy"] = (
            "camera=(), microphone=(), geolocation=(), payment=(self)"
        )
        # Content Security Policy
        response.headers["Content-Security-Policy"] = (
            "default-src 'self'; "
            "script-src 'self' https://checkout.razorpay.com; "
            "connect-src 'self' https://api.razorpay.com https://lumberjack.razorpay.com; "
            "frame-src https://api.razorpay.com https://checkout.razorpay.com; "
            "img-src 'self' data: https://*.razorpay.com; "
            "base-uri 'self'; "
            "frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


# Default catalog, prices in paise. USD prices are left unset so checkout
# falls back to the fixed conversion rate until they are configured.
DEFAULT_PLANS = [
    ("Starter", "Perfect for individuals and small projects",
     {"weekly": 299, "monthly": 999, "yearly": 9999},
     ["Basic Dashboard Access", "File Storage"]),
    ("Professional", "Great for professionals and growing teams",
     {"weekly": 799, "monthly": 2499, "yearly": 24999},
     ["Advanced Dashboard Access", "Priority Support", "API Access",
      "Team Members", "Unlimited Projects"]),
    ("Enterprise", "For large organizations with advanced needs",
     {"weekly": 1999, "monthly": 6999, "yearly": 69999},
     ["Everything in Professional", "Custom Branding", "Advanced Analytics",
      "Custom Reports", "Dedicated Account Manager", "Bulk Operations"]),
]


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("seed-plans")
    def seed_plans():
        """Insert the default plan catalog (one row per tier and interval).

        Existing plans with the same name and interval are left untouched.

        Usage:
            flask seed-plans
        """
        from noxpay.models.plan import SubscriptionPlan

        created = 0
        for name, description, prices, features in DEFAULT_PLANS:
            for interval, rupees in prices.items():
                existing = SubscriptionPlan.query.filter_by(
                    name=name, interval=interval
                ).first()
                if existing:
                    continue
                db.session.add(SubscriptionPlan(
                    name=name,
                    description=description,
                    interval=interval,
                    price=rupees * 100,
                    features=features,
                    active=True,
                ))
                created += 1
        db.session.commit()
        click.echo(f"Seeded {created} plan(s).")

    @app.cli.command("verify-razorpay")
    def verify_razorpay():
        """Check the configured Razorpay keys can reach the API.

        Uses RAZORPAY_KEY_ID / RAZORPAY_KEY_SECRET from env. Also warns if
        the webhook secret is missing or equal to the key secret.
        """
        from noxpay.services.razorpay_client import get_gateway

        key_id = app.config.get("RAZORPAY_KEY_ID")
        if not key_id:
            click.echo("ERROR: RAZORPAY_KEY_ID is not set.")
            return
        key_mode = "Live" if key_id.startswith("rzp_live_") else "Test"
        click.echo(f"Razorpay key mode: {key_mode}")

        webhook_secret = app.config.get("RAZORPAY_WEBHOOK_SECRET")
        if not webhook_secret:
            click.echo("WARNING: RAZORPAY_WEBHOOK_SECRET is not set; webhooks will be rejected.")
        elif webhook_secret == app.config.get("RAZORPAY_KEY_SECRET"):
            click.echo("WARNING: RAZORPAY_WEBHOOK_SECRET equals RAZORPAY_KEY_SECRET.")

        try:
            get_gateway().list_orders(count=1)
            click.echo("API credentials OK.")
        except PaymentError as e:
            click.echo(f"ERROR: {e.message}")

    @app.cli.command("db-status")
    def db_status():
        """Print connectivity and row counts for the billing tables."""
        tables = [
            "users",
            "subscription_plans",
            "subscriptions",
            "payments",
            "invoices",
            "audit_events",
        ]
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            click.echo(f"Database unreachable: {e}")
            return

        click.echo("Database connection OK.")
        for table in tables:
            try:
                count = db.session.execute(
                    text(f"SELECT COUNT(*) FROM {table}")
                ).scalar()
                click.echo(f"  {table:<20} {count}")
            except SQLAlchemyError as e:
                db.session.rollback()
                click.echo(f"  {table:<20} ERROR: {e.__class__.__name__}")
