"""Webhooks blueprint — /functions/v1/stripe-webhook

Receives Stripe webhook events. No session, no CSRF: the raw body is
required for signature verification. Responses are plain text.

Routes:
- POST    /functions/v1/stripe-webhook
- POST    /stripe/webhooks  — alias
- OPTIONS on both         — CORS preflight
"""

import logging

from flask import Blueprint, current_app, make_response, request

from ollync.decorators import DEFAULT_ALLOW_HEADERS, with_cors
from ollync.errors import ConfigurationError, InvalidRequest, require_config
from ollync.extensions import db
from ollync.services.signature import SignatureHeaderError, SignatureMismatchError
from ollync.services.stripe_service import verify_webhook_signature
from ollync.services.webhook_service import FAILED, handle_webhook_event, parse_event

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__)

# Non-POST methods get a plain-text 405 from the view itself
WEBHOOK_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def _text(body, status=200):
    response = make_response(body, status)
    response.headers["Content-Type"] = "text/plain"
    return response


@webhooks_bp.route("/functions/v1/stripe-webhook", methods=WEBHOOK_METHODS)
@webhooks_bp.route("/stripe/webhooks", methods=WEBHOOK_METHODS)
@with_cors(allow_headers=f"{DEFAULT_ALLOW_HEADERS}, stripe-signature")
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Pass to handle_webhook_event (idempotent via payment_events table)
    4. Return 200 to acknowledge receipt

    Once the signature is valid the answer is 200 even if a handler
    failed: the failure is kept on the payment_events row for
    `flask replay-payment-events`. Only a failure to record the event at
    all returns 500, so Stripe retries the delivery.
    """
    if request.method == "OPTIONS":
        return _text("ok")
    if request.method != "POST":
        return _text("Method not allowed", 405)

    try:
        require_config(current_app.config, current_app.config["WEBHOOK_REQUIRED"])
    except ConfigurationError as e:
        return _text(e.message, 500)

    sig_header = request.headers.get("Stripe-Signature")
    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return _text("Missing stripe-signature header", 400)

    payload = request.get_data()

    # --- Verify signature ---
    try:
        verify_webhook_signature(payload, sig_header)
    except SignatureHeaderError as e:
        logger.warning(f"Webhook signature header malformed: {e}")
        return _text("Invalid signature", 400)
    except SignatureMismatchError as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return _text("Invalid signature", 400)

    try:
        event = parse_event(payload)
    except InvalidRequest as e:
        return _text(e.message, 400)

    # --- Process event (idempotent) ---
    try:
        outcome = handle_webhook_event(event)
    except Exception as e:
        db.session.rollback()
        logger.error(f"Could not record webhook event {event.id}: {e}", exc_info=True)
        return _text("Unexpected error", 500)

    if outcome == FAILED:
        logger.error(
            f"Webhook event {event.id} acknowledged but not applied; "
            f"run `flask replay-payment-events`"
        )
    return _text("ok", 200)
