"""Checkout service — turns a checkout request into a Stripe session.

Order of operations matters:
1. validate everything (product, quantity, metadata) before any write
2. resolve the Stripe customer
3. persist the pending order (committed before talking to Stripe)
4. create the Checkout Session
5. attach the session id to the order

A failure at step 4 leaves a pending order behind as the record to
investigate. A failure at step 5 is a PersistenceFailure: the session
exists at Stripe but our order does not know it.
"""

import logging
import math
from collections import namedtuple

import stripe
from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ollync.errors import (
    InvalidRequest,
    PaymentError,
    PersistenceFailure,
    UpstreamFailure,
)
from ollync.extensions import db
from ollync.models.payment import PaymentOrder, PaymentProduct
from ollync.models.post import Post
from ollync.services.checkout_metadata import (
    PromotionMetadata,
    parse_checkout_metadata,
)
from ollync.services import stripe_service

logger = logging.getLogger(__name__)

CheckoutResult = namedtuple("CheckoutResult", ["checkout_url", "session_id", "order_id"])


def clamp_quantity(quantity, max_quantity=99):
    """Clamp to [1, max_quantity]. Junk, missing and NaN values become 1."""
    if isinstance(quantity, bool):
        return 1
    try:
        quantity = float(quantity)
    except (TypeError, ValueError):
        return 1
    except OverflowError:
        # int too large for a float
        return max_quantity if quantity > 0 else 1
    if math.isnan(quantity):
        return 1
    if math.isinf(quantity):
        return max_quantity if quantity > 0 else 1
    return max(1, min(max_quantity, int(quantity)))


def get_active_product(product_code):
    """Active product by code, else InvalidRequest (never a 404)."""
    product = PaymentProduct.query.filter_by(code=product_code, active=True).first()
    if product is None:
        logger.info(f"Checkout for unknown or inactive product {product_code!r}")
        raise InvalidRequest("Invalid product")
    return product


def _check_listing(user, metadata):
    """Promotion purchases must target an existing listing of the buyer."""
    if not isinstance(metadata, PromotionMetadata):
        return
    post = db.session.get(Post, metadata.post_id)
    if post is None or post.user_id != str(user.id):
        raise InvalidRequest("Invalid listing")


def create_checkout(user, product_code, quantity=1, metadata=None):
    """Create a pending order and a Stripe Checkout Session for it.

    Returns CheckoutResult(checkout_url, session_id, order_id).
    Raises InvalidRequest, UpstreamFailure or PersistenceFailure.
    """
    config = current_app.config

    # --- 1. Validate ---
    if not product_code or not isinstance(product_code, str):
        raise InvalidRequest("product_code is required")

    safe_qty = clamp_quantity(quantity, config["CHECKOUT_MAX_QUANTITY"])
    product = get_active_product(product_code)
    typed_metadata = parse_checkout_metadata(
        product.code, metadata, config["PROMOTION_RULES"]
    )
    _check_listing(user, typed_metadata)

    # --- 2. Customer ---
    client = stripe_service.get_stripe_client()
    customer = stripe_service.get_or_create_stripe_customer(client, user)

    # --- 3. Pending order ---
    order = PaymentOrder(
        user_id=str(user.id),
        product_id=product.id,
        product_code=product.code,
        amount_cents=product.amount_cents * safe_qty,
        currency=product.currency or "eur",
        quantity=safe_qty,
        status=PaymentOrder.PENDING,
        stripe_customer_id=customer.stripe_customer_id,
        description=product.name,
        metadata_=metadata if isinstance(metadata, dict) else {},
    )
    db.session.add(order)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Failed to create order for user {user.id}: {e}", exc_info=True)
        raise PaymentError("Failed to create order") from e
    order_id = order.id

    # --- 4. Stripe session ---
    try:
        session = _create_session_with_fallback(client, order, product, customer, user, typed_metadata)
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout failed for order {order_id}: {e}")
        raise UpstreamFailure(stripe_service.provider_message(e)) from e

    # --- 5. Attach session ---
    try:
        _attach_session(order, session.id)
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(
            f"Session {session.id} created but order {order_id} update failed: {e}",
            exc_info=True,
        )
        raise PersistenceFailure(order_id=order_id, session_id=session.id) from e

    logger.info(
        f"Checkout session {session.id} for order {order_id} "
        f"({product.code} x{safe_qty}, {order.amount_cents} {order.currency})"
    )
    return CheckoutResult(session.url, session.id, order_id)


def _attach_session(order, session_id):
    order.stripe_checkout_session_id = session_id
    db.session.commit()


def _create_session_with_fallback(client, order, product, customer, user, typed_metadata):
    """Create the session; retry once with a fresh customer if Stripe lost ours."""
    extra = typed_metadata.to_stripe()
    try:
        return stripe_service.create_checkout_session(client, order, product, extra)
    except stripe.InvalidRequestError as e:
        if not stripe_service.is_missing_customer_error(e):
            raise

    customer = stripe_service.replace_stripe_customer(client, customer, user)
    order.stripe_customer_id = customer.stripe_customer_id
    db.session.commit()
    return stripe_service.create_checkout_session(client, order, product, extra)
