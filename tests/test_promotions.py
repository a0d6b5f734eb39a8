"""Tests for the promotion policy and typed checkout metadata.

Covers:
- Product code -> listing field / duration resolution
- Windows reset from now, other field untouched
- Checkout metadata variants per product category
- Session metadata read back from a webhook
"""

from datetime import datetime, timedelta, timezone

import pytest

from ollync.config import DEFAULT_PROMOTION_RULES
from ollync.errors import InvalidRequest
from ollync.models.post import Post
from ollync.services.checkout_metadata import (
    CheckoutSessionMetadata,
    PlainMetadata,
    PromotionMetadata,
    parse_checkout_metadata,
)
from ollync.services.promotion_service import (
    apply_promotion,
    load_rules,
    resolve_promotion,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class TestResolvePromotion:
    """Tests for the code -> rule lookup."""

    @pytest.mark.parametrize("code, field, duration", [
        ("BOOST_24H", "boosted_until", timedelta(hours=24)),
        ("BOOST_7D", "boosted_until", timedelta(days=7)),
        ("BOOST_30D", "boosted_until", timedelta(days=30)),
        ("SPONSOR_MONTH", "sponsored_until", timedelta(days=30)),
        ("SPONSOR_X", "sponsored_until", timedelta(days=30)),
    ])
    def test_known_codes(self, code, field, duration):
        rule = resolve_promotion(code, DEFAULT_PROMOTION_RULES)
        assert rule.field == field
        assert rule.duration == duration

    @pytest.mark.parametrize("code", ["CREDITS_10", "BOOST_1Y", "", None, "SPONSOR"])
    def test_unknown_codes(self, code):
        assert resolve_promotion(code, DEFAULT_PROMOTION_RULES) is None

    def test_exact_code_beats_prefix(self):
        rules = dict(DEFAULT_PROMOTION_RULES)
        rules["SPONSOR_TRIAL"] = ("sponsored_until", timedelta(days=3))
        assert resolve_promotion("SPONSOR_TRIAL", rules).duration == timedelta(days=3)
        assert resolve_promotion("SPONSOR_MONTH", rules).duration == timedelta(days=30)

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            load_rules({"FEATURED": ("featured_until", timedelta(days=1))})


class TestApplyPromotion:
    """Tests for writing the promotion window onto a listing."""

    def test_boost_resets_window_from_now(self):
        post = Post(id="p1", user_id="u1", boosted_until=NOW + timedelta(days=20))
        rule = resolve_promotion("BOOST_24H", DEFAULT_PROMOTION_RULES)

        apply_promotion(post, rule, NOW)

        # Not stacked on the 20 days still left
        assert post.boosted_until == NOW + timedelta(hours=24)
        assert post.promotion_updated_at == NOW

    def test_sponsor_leaves_boost_untouched(self):
        existing_boost = NOW + timedelta(days=2)
        post = Post(id="p1", user_id="u1", boosted_until=existing_boost)
        rule = resolve_promotion("SPONSOR_X", DEFAULT_PROMOTION_RULES)

        apply_promotion(post, rule, NOW)

        assert post.sponsored_until == NOW + timedelta(days=30)
        assert post.boosted_until == existing_boost

    def test_boost_leaves_sponsorship_untouched(self):
        existing = NOW + timedelta(days=9)
        post = Post(id="p1", user_id="u1", sponsored_until=existing)
        apply_promotion(post, resolve_promotion("BOOST_7D", DEFAULT_PROMOTION_RULES), NOW)
        assert post.sponsored_until == existing
        assert post.boosted_until == NOW + timedelta(days=7)


class TestCheckoutMetadata:
    """Tests for typed checkout metadata."""

    def test_promotion_product_requires_post_id(self):
        with pytest.raises(InvalidRequest):
            parse_checkout_metadata("BOOST_7D", {}, DEFAULT_PROMOTION_RULES)

    def test_promotion_product_rejects_non_string_post_id(self):
        with pytest.raises(InvalidRequest):
            parse_checkout_metadata("BOOST_7D", {"post_id": 42}, DEFAULT_PROMOTION_RULES)

    def test_promotion_product_rejects_long_post_id(self):
        with pytest.raises(InvalidRequest):
            parse_checkout_metadata("BOOST_7D", {"post_id": "x" * 65}, DEFAULT_PROMOTION_RULES)

    def test_promotion_metadata(self):
        meta = parse_checkout_metadata(
            "SPONSOR_MONTH", {"post_id": " abc ", "junk": "x"}, DEFAULT_PROMOTION_RULES
        )
        assert meta == PromotionMetadata(post_id="abc")
        assert meta.to_stripe() == {"post_id": "abc"}

    def test_plain_product_drops_unknown_keys(self):
        meta = parse_checkout_metadata(
            "CREDITS_10", {"post_id": "abc", "anything": 1}, DEFAULT_PROMOTION_RULES
        )
        assert isinstance(meta, PlainMetadata)
        assert meta.to_stripe() == {}

    def test_metadata_must_be_object(self):
        with pytest.raises(InvalidRequest):
            parse_checkout_metadata("CREDITS_10", ["post_id"], DEFAULT_PROMOTION_RULES)

    def test_session_metadata_from_stripe(self):
        meta = CheckoutSessionMetadata.from_stripe({
            "order_id": "o1",
            "user_id": "u1",
            "product_code": "BOOST_7D",
            "post_id": "",
        })
        assert meta.order_id == "o1"
        assert meta.product_code == "BOOST_7D"
        assert meta.post_id is None

    def test_session_metadata_missing(self):
        meta = CheckoutSessionMetadata.from_stripe(None)
        assert meta.order_id is None
        assert meta.user_id is None
