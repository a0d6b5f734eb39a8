"""Promotion policy — which paid products extend which listing window.

Rules come from config (PROMOTION_RULES): product code -> (field, duration).
A code ending in "*" matches by prefix; exact codes take precedence.
Each product maps to exactly one field.

A purchase resets the window to now + duration. It does not stack on
top of an expiry that is still in the future.
"""

import logging
from collections import namedtuple

logger = logging.getLogger(__name__)

PROMOTION_FIELDS = ("boosted_until", "sponsored_until")

PromotionRule = namedtuple("PromotionRule", ["pattern", "field", "duration"])


def load_rules(raw_rules):
    """Build PromotionRules from the config mapping, validating fields."""
    rules = []
    for pattern, (field, duration) in raw_rules.items():
        if field not in PROMOTION_FIELDS:
            raise ValueError(f"Unknown promotion field {field!r} for {pattern}")
        rules.append(PromotionRule(pattern, field, duration))
    return rules


def resolve_promotion(product_code, raw_rules):
    """Return the PromotionRule for `product_code`, or None."""
    if not product_code:
        return None

    rules = load_rules(raw_rules)
    for rule in rules:
        if rule.pattern == product_code:
            return rule

    # Longest prefix wins so "SPONSOR_HOME_*" can override "SPONSOR_*"
    prefix_rules = sorted(
        (r for r in rules if r.pattern.endswith("*")),
        key=lambda r: len(r.pattern),
        reverse=True,
    )
    for rule in prefix_rules:
        if product_code.startswith(rule.pattern[:-1]):
            return rule
    return None


def is_promotion_product(product_code, raw_rules):
    return resolve_promotion(product_code, raw_rules) is not None


def apply_promotion(post, rule, now):
    """Set the rule's window on `post` to now + duration.

    The other promotion field is left as is. Caller commits.
    """
    until = now + rule.duration
    setattr(post, rule.field, until)
    post.promotion_updated_at = now
    logger.info(f"Post {post.id}: {rule.field} set to {until.isoformat()} ({rule.pattern})")
    return until
