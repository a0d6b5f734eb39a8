"""Typed checkout metadata.

Clients send an opaque `metadata` object with a checkout request. Only
known shapes are accepted, chosen by product category:

    PromotionMetadata(post_id)  — boost / sponsorship products
    PlainMetadata()             — everything else (extra keys dropped)

The selected fields are embedded in the Stripe session metadata next to
order_id / user_id / product_code, and read back on the webhook side by
CheckoutSessionMetadata.from_stripe().
"""

from collections import namedtuple

from ollync.errors import InvalidRequest
from ollync.services.promotion_service import is_promotion_product

MAX_POST_ID_LENGTH = 64


class PlainMetadata(namedtuple("PlainMetadata", [])):
    __slots__ = ()

    def to_stripe(self):
        return {}


class PromotionMetadata(namedtuple("PromotionMetadata", ["post_id"])):
    __slots__ = ()

    def to_stripe(self):
        return {"post_id": self.post_id}


def parse_checkout_metadata(product_code, raw, promotion_rules):
    """Validate the request metadata for `product_code`.

    Raises InvalidRequest if the shape does not fit the product.
    """
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise InvalidRequest("metadata must be an object")

    if not is_promotion_product(product_code, promotion_rules):
        return PlainMetadata()

    post_id = raw.get("post_id")
    if not isinstance(post_id, str) or not post_id.strip():
        raise InvalidRequest("metadata.post_id is required for this product")
    post_id = post_id.strip()
    if len(post_id) > MAX_POST_ID_LENGTH:
        raise InvalidRequest("metadata.post_id is too long")
    return PromotionMetadata(post_id=post_id)


class CheckoutSessionMetadata(
    namedtuple(
        "CheckoutSessionMetadata",
        ["order_id", "user_id", "product_code", "post_id"],
    )
):
    """Metadata we put on every Checkout Session, as read from a webhook."""

    __slots__ = ()

    @classmethod
    def from_stripe(cls, metadata):
        metadata = metadata or {}

        def _get(key):
            value = metadata.get(key)
            if value is None:
                return None
            value = str(value).strip()
            return value or None

        return cls(
            order_id=_get("order_id"),
            user_id=_get("user_id"),
            product_code=_get("product_code"),
            post_id=_get("post_id"),
        )
