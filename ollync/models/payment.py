"""Payment models.

- PaymentProduct: catalog entry, looked up by its unique code at checkout.
- StripeCustomer: links a Supabase user to a Stripe customer ID (1:1).
- PaymentOrder: one purchase attempt and its lifecycle status.

Order status only ever moves out of "pending"; paid / expired / cancelled
are terminal.
"""

import uuid

from ollync.extensions import db


class PaymentProduct(db.Model):
    __tablename__ = "payment_products"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    code = db.Column(db.String(100), unique=True, nullable=False)  # e.g. "BOOST_7D"
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    amount_cents = db.Column(db.Integer, nullable=False)  # unit price
    currency = db.Column(db.String(3), nullable=False, default="eur")
    stripe_price_id = db.Column(db.String(255), nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    orders = db.relationship("PaymentOrder", back_populates="product", lazy="dynamic")

    def __repr__(self):
        return f"<PaymentProduct {self.code} ({self.amount_cents} {self.currency})>"


class StripeCustomer(db.Model):
    __tablename__ = "stripe_customers"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(36), unique=True, nullable=False)  # Supabase auth user
    stripe_customer_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    email = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<StripeCustomer stripe={self.stripe_customer_id}>"


class PaymentOrder(db.Model):
    __tablename__ = "payment_orders"

    # -- Valid statuses --
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    STATUSES = [PENDING, PAID, EXPIRED, CANCELLED]
    TERMINAL_STATUSES = (PAID, EXPIRED, CANCELLED)

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(db.String(36), nullable=False, index=True)
    product_id = db.Column(
        db.String(36), db.ForeignKey("payment_products.id"), nullable=False
    )
    product_code = db.Column(db.String(100), nullable=False)  # snapshot
    amount_cents = db.Column(db.Integer, nullable=False)  # unit price x quantity
    currency = db.Column(db.String(3), nullable=False, default="eur")
    quantity = db.Column(db.Integer, nullable=False, default=1)
    status = db.Column(
        db.String(20), nullable=False, default=PENDING
    )  # pending | paid | expired | cancelled
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    stripe_checkout_session_id = db.Column(
        db.String(255), nullable=True, index=True
    )
    stripe_payment_intent_id = db.Column(db.String(255), nullable=True)
    description = db.Column(db.String(255), nullable=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # named metadata_ to avoid clashing with SQLAlchemy's Model.metadata
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # --- Relationships ---
    product = db.relationship("PaymentProduct", back_populates="orders")

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def mark_paid(self, at, session_id=None, payment_intent_id=None):
        """pending -> paid. Returns False (no-op) if already terminal."""
        if self.is_terminal:
            return False
        self.status = self.PAID
        self.paid_at = at
        if session_id:
            self.stripe_checkout_session_id = session_id
        if payment_intent_id:
            self.stripe_payment_intent_id = payment_intent_id
        return True

    def mark_cancelled(self, at):
        """pending -> cancelled. Returns False (no-op) if already terminal."""
        if self.is_terminal:
            return False
        self.status = self.CANCELLED
        self.cancelled_at = at
        return True

    def mark_expired(self, at):
        """pending -> expired (stale order sweep)."""
        if self.is_terminal:
            return False
        self.status = self.EXPIRED
        self.cancelled_at = at
        return True

    def __repr__(self):
        return f"<PaymentOrder {self.id} {self.product_code} ({self.status})>"
