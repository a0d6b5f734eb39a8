# Models package — import all models here so Alembic can discover them.

from ollync.models.payment import (  # noqa: F401
    PaymentOrder,
    PaymentProduct,
    StripeCustomer,
)
from ollync.models.payment_event import PaymentEvent  # noqa: F401
from ollync.models.post import Post  # noqa: F401
