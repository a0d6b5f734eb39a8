"""Payment event model (idempotency table + webhook audit log).

Every Stripe webhook delivery that passes signature verification is
recorded by its Stripe event ID before any side effect runs. The unique
constraint on stripe_event_id is the idempotency gate: a second delivery
of the same event fails the insert and is acknowledged without
reprocessing.

Rows with processed=False are events whose dispatch crashed or failed;
`flask replay-payment-events` picks them up.
"""

import uuid

from ollync.extensions import db


class PaymentEvent(db.Model):
    __tablename__ = "payment_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    order_id = db.Column(db.String(36), nullable=True, index=True)
    payload = db.Column(db.JSON, nullable=False, default=dict)  # full event
    processed = db.Column(db.Boolean, nullable=False, default=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    error = db.Column(db.Text, nullable=True)  # last dispatch failure
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        state = "processed" if self.processed else "pending"
        return f"<PaymentEvent {self.stripe_event_id} ({self.event_type}, {state})>"
