"""Stripe service — all Stripe API calls.

Responsible for:
- Building a per-request StripeClient with a bounded HTTP timeout
- Getting or creating the Stripe Customer for a user
- Creating Stripe Checkout Sessions (one-time payments)
- Verifying webhook signatures

No module-level api_key or client cache: every request builds its own
client from app config.
"""

import logging

import stripe
from flask import current_app
from sqlalchemy.exc import IntegrityError

from ollync.errors import UpstreamFailure
from ollync.extensions import db
from ollync.models.payment import StripeCustomer
from ollync.services.signature import verify_signature

logger = logging.getLogger(__name__)


def get_stripe_client():
    """Return a StripeClient bound to STRIPE_SECRET_KEY for this request."""
    return stripe.StripeClient(
        current_app.config["STRIPE_SECRET_KEY"],
        http_client=stripe.RequestsClient(
            timeout=current_app.config["STRIPE_TIMEOUT_SECONDS"]
        ),
    )


def provider_message(error):
    """Best human-readable message from a StripeError."""
    return getattr(error, "user_message", None) or str(error) or "Stripe API error"


# ──────────────────────────────────────────────
# Customers
# ──────────────────────────────────────────────

def _create_stripe_customer(client, user, idempotent=True):
    customer_params = {"metadata": {"user_id": str(user.id)}}
    if user.email:
        customer_params["email"] = user.email

    # Same key for concurrent first checkouts -> Stripe returns one customer
    options = {"idempotency_key": f"customer-create-{user.id}"} if idempotent else {}
    try:
        customer = client.v1.customers.create(params=customer_params, options=options)
    except stripe.StripeError as e:
        logger.error(f"Stripe customer create failed for user {user.id}: {e}")
        raise UpstreamFailure(provider_message(e)) from e
    logger.info(f"Created Stripe customer {customer.id} for user {user.id}")
    return customer.id


def get_or_create_stripe_customer(client, user):
    """Return the Stripe customer ID for `user`, creating it on first use.

    The unique constraint on stripe_customers.user_id arbitrates races:
    if another request inserted the mapping first, we roll back and use
    theirs.

    Returns the StripeCustomer row (committed).
    """
    mapping = StripeCustomer.query.filter_by(user_id=user.id).first()
    if mapping:
        return mapping

    stripe_customer_id = _create_stripe_customer(client, user)

    mapping = StripeCustomer(
        user_id=user.id,
        stripe_customer_id=stripe_customer_id,
        email=user.email,
    )
    db.session.add(mapping)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        mapping = StripeCustomer.query.filter_by(user_id=user.id).first()
        if mapping is None:
            raise
        if mapping.stripe_customer_id != stripe_customer_id:
            logger.warning(
                f"Concurrent checkout for user {user.id}: Stripe customer "
                f"{stripe_customer_id} unused, keeping {mapping.stripe_customer_id}"
            )
    return mapping


def replace_stripe_customer(client, mapping, user):
    """Swap a stored customer Stripe no longer knows for a fresh one.

    Happens when the stored ID is from Test mode or another account
    (e.g. after switching to Live keys).
    """
    old_id = mapping.stripe_customer_id
    mapping.stripe_customer_id = _create_stripe_customer(client, user, idempotent=False)
    db.session.commit()
    logger.warning(
        f"Replaced unknown Stripe customer {old_id} with "
        f"{mapping.stripe_customer_id} for user {user.id}"
    )
    return mapping


# ──────────────────────────────────────────────
# Checkout Sessions
# ──────────────────────────────────────────────

def build_line_item(product, quantity):
    """Line item for `product`: its Stripe price if set, else inline price_data."""
    if product.stripe_price_id:
        return {"price": product.stripe_price_id, "quantity": quantity}

    product_data = {"name": product.name}
    if product.description:
        product_data["description"] = product.description
    return {
        "price_data": {
            "currency": product.currency or "eur",
            "product_data": product_data,
            "unit_amount": product.amount_cents,
        },
        "quantity": quantity,
    }


def create_checkout_session(client, order, product, extra_metadata=None):
    """Create a Stripe Checkout Session for a pending order.

    Success/cancel URLs land on the wallet page with the order id.
    Session metadata carries order_id / user_id / product_code; the
    webhook relies on it to find the order.

    Returns the Stripe session (has .id and .url).
    Raises stripe.StripeError on API failures.
    """
    app_base_url = current_app.config["APP_BASE_URL"].rstrip("/")

    metadata = dict(extra_metadata or {})
    metadata.update({
        "order_id": str(order.id),
        "user_id": str(order.user_id),
        "product_code": product.code,
    })

    return client.v1.checkout.sessions.create(params={
        "mode": "payment",
        "customer": order.stripe_customer_id,
        "line_items": [build_line_item(product, order.quantity)],
        "success_url": (
            f"{app_base_url}/profile/wallet?payment=success&order_id={order.id}"
        ),
        "cancel_url": (
            f"{app_base_url}/profile/wallet?payment=cancel&order_id={order.id}"
        ),
        "metadata": metadata,
    })


def is_missing_customer_error(error):
    return isinstance(error, stripe.InvalidRequestError) and "No such customer" in str(error)


# ──────────────────────────────────────────────
# Webhook Signature
# ──────────────────────────────────────────────

def verify_webhook_signature(payload, sig_header):
    """Verify a Stripe-Signature header against the raw body.

    Raises SignatureHeaderError / SignatureMismatchError on failure.
    """
    return verify_signature(
        payload,
        sig_header,
        current_app.config["STRIPE_WEBHOOK_SECRET"],
        tolerance=current_app.config.get("STRIPE_WEBHOOK_TOLERANCE", 0),
    )


# ──────────────────────────────────────────────
# Prices
# ──────────────────────────────────────────────

def retrieve_price(client, price_id):
    """Fetch a Stripe price with its product expanded."""
    return client.v1.prices.retrieve(price_id, params={"expand": ["product"]})
