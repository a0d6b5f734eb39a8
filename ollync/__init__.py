import os
import logging
from datetime import timedelta

import click
from flask import Flask, jsonify

from ollync.config import config_by_name
from ollync.extensions import db, migrate, login_manager, limiter


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

    # No database configured: boot anyway so the endpoints can answer
    # 500 "Missing server configuration" (DATABASE_URL stays unset).
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite://"

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from ollync import models  # noqa: F401

    # --- Register blueprints ---
    from ollync.blueprints.checkout import checkout_bp
    from ollync.blueprints.webhooks import webhooks_bp

    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)

    # --- Health ---
    @app.route("/")
    def index():
        return jsonify({"status": "ok"})

    # --- Error handlers ---
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
        return jsonify({"error": "Unexpected error"}), 500

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
        # JSON / text API: nothing to render, nothing to frame
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
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


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("replay-payment-events")
    @click.option("--limit", default=100, show_default=True, help="Max events to replay.")
    @click.option("--dry-run", is_flag=True, help="List events without replaying them.")
    def replay_payment_events(limit, dry_run):
        """Re-process Stripe events recorded with processed=false.

        These are deliveries that were acknowledged to Stripe but whose
        order / listing updates failed. Replaying is safe: orders that
        already left "pending" are not touched again.

        Usage:
            flask replay-payment-events
            flask replay-payment-events --dry-run --limit 20
        """
        from ollync.services.webhook_service import replay_unprocessed_events

        counts = replay_unprocessed_events(limit=limit, dry_run=dry_run)

        click.echo(f"Unprocessed events found: {counts['found']}")
        if dry_run:
            click.echo("Dry run, nothing replayed.")
            return
        click.echo(f"  processed: {counts['processed']}")
        click.echo(f"  failed:    {counts['failed']}")

    @app.cli.command("expire-stale-orders")
    @click.option("--hours", default=48, show_default=True,
                  help="Expire pending orders older than this.")
    def expire_stale_orders_cmd(hours):
        """Mark pending orders older than --hours as expired.

        Stripe Checkout Sessions expire after 24h and normally send
        checkout.session.expired. This sweeps up orders whose event never
        arrived (or whose session was never created).
        """
        from ollync.services.webhook_service import expire_stale_orders

        count = expire_stale_orders(timedelta(hours=hours))
        click.echo(f"Expired {count} stale pending order(s).")

    @app.cli.command("verify-stripe-prices")
    def verify_stripe_prices():
        """Verify active products' Stripe price IDs exist in the key's mode.

        Products without stripe_price_id use inline price_data at checkout
        and are reported as such.
        """
        import stripe as _stripe

        from ollync.models.payment import PaymentProduct
        from ollync.services.stripe_service import get_stripe_client, retrieve_price

        api_key = app.config.get("STRIPE_SECRET_KEY")
        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
            return
        key_mode = "Live" if api_key.startswith(("sk_live_", "rk_live_")) else "Test"
        click.echo(f"Stripe key mode: {key_mode}")
        click.echo("")

        client = get_stripe_client()
        products = (
            PaymentProduct.query
            .filter_by(active=True)
            .order_by(PaymentProduct.code)
            .all()
        )

        for product in products:
            if not product.stripe_price_id:
                click.echo(f"  {product.code}: inline price_data "
                           f"({product.amount_cents} {product.currency})")
                continue
            try:
                price = retrieve_price(client, product.stripe_price_id)
            except _stripe.InvalidRequestError as e:
                click.echo(f"  {product.code}: {product.stripe_price_id}")
                click.echo(f"    ERROR: {e}")
                continue

            livemode = getattr(price, "livemode", "?")
            unit_amount = getattr(price, "unit_amount", None)
            click.echo(f"  {product.code}: {product.stripe_price_id}")
            click.echo(f"    exists=True, livemode={livemode}, unit_amount={unit_amount}")
            if livemode is True and key_mode != "Live":
                click.echo("    WARNING: This price is Live but your key is Test.")
            elif livemode is False and key_mode == "Live":
                click.echo("    WARNING: This price is Test but your key is Live.")
            if unit_amount is not None and unit_amount != product.amount_cents:
                click.echo(
                    f"    WARNING: Stripe amount {unit_amount} differs from "
                    f"catalog amount {product.amount_cents}."
                )
