"""Webhook service — Stripe event ingestion and order state transitions.

Responsible for:
- Parsing the verified body into a WebhookEvent
- Idempotency via the payment_events table (unique stripe_event_id)
- Dispatching to event-specific handlers over a closed EventType enum
- Marking orders paid / cancelled and applying listing promotions
- Replaying events whose processing failed

The payment_events row is committed before any side effect, so a crash
mid-processing leaves processed=False behind for replay.
"""

import enum
import json
import logging
from collections import namedtuple
from datetime import datetime, timezone

from flask import current_app
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ollync.errors import InvalidRequest
from ollync.extensions import db
from ollync.models.payment import PaymentOrder
from ollync.models.payment_event import PaymentEvent
from ollync.models.post import Post
from ollync.services.checkout_metadata import CheckoutSessionMetadata
from ollync.services.promotion_service import apply_promotion, resolve_promotion

logger = logging.getLogger(__name__)


class EventType(enum.Enum):
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"
    UNKNOWN = None

    @classmethod
    def from_stripe(cls, value):
        for member in cls:
            if member.value == value:
                return member
        return cls.UNKNOWN


WebhookEvent = namedtuple(
    "WebhookEvent", ["id", "type", "raw_type", "object", "payload"]
)

# Outcomes reported back to the blueprint (logged, never sent to Stripe)
PROCESSED = "processed"
ALREADY_PROCESSED = "already_processed"
FAILED = "failed"


def _utcnow():
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────
# Parsing
# ──────────────────────────────────────────────

def event_from_payload(payload):
    """Build a WebhookEvent from an already-decoded event envelope."""
    if not isinstance(payload, dict):
        raise InvalidRequest("Invalid payload")

    event_id = payload.get("id")
    raw_type = payload.get("type")
    if not isinstance(event_id, str) or not event_id or not isinstance(raw_type, str):
        raise InvalidRequest("Invalid payload")

    data = payload.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        obj = {}

    return WebhookEvent(
        id=event_id,
        type=EventType.from_stripe(raw_type),
        raw_type=raw_type,
        object=obj,
        payload=payload,
    )


def parse_event(raw_body):
    """Parse a verified raw body: {id, type, data: {object}}.

    Raises InvalidRequest on malformed JSON or a missing id / type.
    """
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError) as e:
        logger.warning(f"Webhook body is not valid JSON: {e}")
        raise InvalidRequest("Invalid payload") from e
    return event_from_payload(payload)


# ──────────────────────────────────────────────
# Idempotency
# ──────────────────────────────────────────────

def record_event(event):
    """Insert the payment_events row for `event`, committed.

    Returns the new PaymentEvent, or None if this event id was already
    recorded (by an earlier delivery or a concurrent one).
    """
    existing = PaymentEvent.query.filter_by(stripe_event_id=event.id).first()
    if existing:
        return None

    metadata = CheckoutSessionMetadata.from_stripe(event.object.get("metadata"))
    payment_event = PaymentEvent(
        stripe_event_id=event.id,
        event_type=event.raw_type,
        order_id=metadata.order_id,
        payload=event.payload,
        processed=False,
    )
    db.session.add(payment_event)
    try:
        db.session.commit()
    except IntegrityError:
        # Lost the race against a concurrent delivery of the same event
        db.session.rollback()
        return None
    return payment_event


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: the event is recorded first; a duplicate id returns
    immediately without side effects.

    Returns one of PROCESSED, ALREADY_PROCESSED, FAILED.
    """
    payment_event = record_event(event)
    if payment_event is None:
        logger.info(f"Duplicate webhook event {event.id}, skipping")
        return ALREADY_PROCESSED

    return _process(payment_event, event)


def _process(payment_event, event):
    """Dispatch `event` and mark its row processed.

    On failure the transaction is rolled back and the error is stored on
    the row, which stays processed=False.
    """
    event_id = payment_event.stripe_event_id
    try:
        dispatch(event)
        payment_event.processed = True
        payment_event.processed_at = _utcnow()
        payment_event.error = None
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error handling {event.raw_type} ({event_id}): {e}", exc_info=True)
        _record_failure(event_id, e)
        return FAILED
    return PROCESSED


def _record_failure(event_id, error):
    try:
        payment_event = PaymentEvent.query.filter_by(stripe_event_id=event_id).first()
        if payment_event:
            payment_event.error = f"{type(error).__name__}: {error}"[:2000]
            db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(f"Could not store failure for event {event_id}: {e}")


# ──────────────────────────────────────────────
# Dispatch
# ──────────────────────────────────────────────

def dispatch(event, now=None):
    """Apply the side effects of `event`. Caller commits."""
    now = now or _utcnow()

    if event.type is EventType.CHECKOUT_SESSION_COMPLETED:
        _handle_checkout_completed(event, now)
    elif event.type is EventType.CHECKOUT_SESSION_EXPIRED:
        _handle_checkout_expired(event, now)
    else:
        logger.info(f"Unhandled event type {event.raw_type} ({event.id}), recorded only")


def _load_order(event, metadata):
    if not metadata.order_id:
        logger.warning(f"{event.raw_type} {event.id} has no order_id in metadata")
        return None
    order = db.session.get(PaymentOrder, metadata.order_id)
    if order is None:
        logger.warning(f"{event.raw_type} {event.id}: unknown order {metadata.order_id}")
    return order


def _handle_checkout_completed(event, now):
    """Handle checkout.session.completed.

    Marks the order paid, then extends the listing promotion if the
    session was for a promotion product.
    """
    session = event.object
    metadata = CheckoutSessionMetadata.from_stripe(session.get("metadata"))

    order = _load_order(event, metadata)
    if order is None:
        return

    changed = order.mark_paid(
        now,
        session_id=session.get("id") or None,
        payment_intent_id=session.get("payment_intent") or None,
    )
    if not changed:
        logger.info(f"Order {order.id} already {order.status}, ignoring {event.id}")
        return
    db.session.flush()
    logger.info(f"Order {order.id} paid ({order.product_code}, {order.amount_cents} {order.currency})")

    if metadata.post_id and metadata.product_code:
        _apply_listing_promotion(order, metadata, now)


def _apply_listing_promotion(order, metadata, now):
    if metadata.product_code != order.product_code:
        logger.warning(
            f"Order {order.id}: metadata product {metadata.product_code} does not "
            f"match order product {order.product_code}, no promotion applied"
        )
        return

    rule = resolve_promotion(metadata.product_code, current_app.config["PROMOTION_RULES"])
    if rule is None:
        return

    post = db.session.get(Post, metadata.post_id)
    if post is None:
        logger.warning(f"Order {order.id}: post {metadata.post_id} not found, no promotion applied")
        return

    apply_promotion(post, rule, now)
    db.session.flush()


def _handle_checkout_expired(event, now):
    """Handle checkout.session.expired: pending order -> cancelled."""
    metadata = CheckoutSessionMetadata.from_stripe(event.object.get("metadata"))

    order = _load_order(event, metadata)
    if order is None:
        return

    if order.mark_cancelled(now):
        db.session.flush()
        logger.info(f"Order {order.id} cancelled (session expired)")
    else:
        logger.info(f"Order {order.id} already {order.status}, ignoring {event.id}")


# ──────────────────────────────────────────────
# Reconciliation
# ──────────────────────────────────────────────

def replay_unprocessed_events(limit=100, dry_run=False):
    """Re-run dispatch for recorded events that never finished.

    Safe to repeat: order transitions are no-ops on terminal orders.
    Returns a dict of counts.
    """
    pending = (
        PaymentEvent.query
        .filter_by(processed=False)
        .order_by(PaymentEvent.created_at.asc())
        .limit(limit)
        .all()
    )

    counts = {"found": len(pending), PROCESSED: 0, FAILED: 0}
    for payment_event in pending:
        if dry_run:
            logger.info(f"[dry-run] would replay {payment_event.stripe_event_id}")
            continue
        try:
            event = event_from_payload(payment_event.payload)
        except InvalidRequest:
            logger.error(f"Stored payload for {payment_event.stripe_event_id} is unusable")
            counts[FAILED] += 1
            continue
        counts[_process(payment_event, event)] += 1
    return counts


def expire_stale_orders(max_age, now=None):
    """Mark pending orders older than `max_age` (timedelta) as expired.

    Covers sessions whose checkout.session.expired event never arrived.
    Returns the number of orders expired.
    """
    now = now or _utcnow()
    cutoff = now - max_age
    stale = (
        PaymentOrder.query
        .filter(PaymentOrder.status == PaymentOrder.PENDING)
        .filter(PaymentOrder.created_at < cutoff)
        .all()
    )
    for order in stale:
        order.mark_expired(now)
        logger.info(f"Order {order.id} expired (pending since {order.created_at})")
    db.session.commit()
    return len(stale)
