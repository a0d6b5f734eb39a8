"""Checkout blueprint — /functions/v1/create-checkout-session

Creates a pending order + Stripe Checkout Session for the logged-in user.

Routes:
- POST    /functions/v1/create-checkout-session — same path the clients
          used with the Supabase edge function
- POST    /api/checkout/session                 — alias
- OPTIONS on both                               — CORS preflight

Request:  Authorization: Bearer <supabase jwt>
          {"product_code": "BOOST_7D", "quantity": 1, "metadata": {"post_id": "..."}}
Response: {"checkout_url", "session_id", "order_id"} or {"error": "..."}
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from ollync.decorators import with_cors
from ollync.errors import InvalidRequest, PaymentError, Unauthenticated, require_config
from ollync.extensions import db, limiter
from ollync.services.checkout_service import create_checkout

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__)


def _checkout_rate_limit():
    return current_app.config["CHECKOUT_RATE_LIMIT"]


@checkout_bp.route("/functions/v1/create-checkout-session", methods=["POST", "OPTIONS"])
@checkout_bp.route("/api/checkout/session", methods=["POST", "OPTIONS"])
@with_cors()
@limiter.limit(_checkout_rate_limit, exempt_when=lambda: request.method == "OPTIONS")
def create_checkout_session():
    """Create a Stripe Checkout Session.

    1. Check server configuration (500 if incomplete)
    2. Resolve the bearer token to a user (401)
    3. Validate body, product and metadata (400)
    4. Create pending order + session (500 on Stripe / DB failure)
    """
    if request.method == "OPTIONS":
        return jsonify({"ok": True}), 200

    try:
        require_config(current_app.config, current_app.config["CHECKOUT_REQUIRED"])

        if not current_user.is_authenticated:
            raise Unauthenticated()

        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            raise InvalidRequest("Request body must be a JSON object")

        result = create_checkout(
            current_user._get_current_object(),
            body.get("product_code"),
            quantity=body.get("quantity", 1),
            metadata=body.get("metadata") or {},
        )
    except PaymentError as e:
        if e.status_code >= 500:
            logger.error(f"Checkout failed: {e.message}")
        return jsonify(e.to_dict()), e.status_code
    except Exception as e:
        db.session.rollback()
        logger.error(f"Checkout error: {e}", exc_info=True)
        return jsonify({"error": "Unexpected error"}), 500

    return jsonify({
        "checkout_url": result.checkout_url,
        "session_id": result.session_id,
        "order_id": result.order_id,
    }), 200
