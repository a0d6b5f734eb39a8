"""Payment error taxonomy.

Every error carries the HTTP status it maps to. Blueprints decide how the
error is rendered (JSON for checkout, plain text for the Stripe webhook).
"""

import logging

logger = logging.getLogger(__name__)


class PaymentError(Exception):
    """Base class for errors surfaced to an HTTP caller."""

    status_code = 500
    default_message = "Unexpected error"

    def __init__(self, message=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def to_dict(self):
        return {"error": self.message}


class Unauthenticated(PaymentError):
    status_code = 401
    default_message = "Unauthorized"


class InvalidRequest(PaymentError):
    status_code = 400
    default_message = "Invalid request"


class SignatureError(InvalidRequest):
    """Webhook signature header malformed or HMAC mismatch.

    Callers only ever see "Invalid signature"; the reason is logged.
    """

    default_message = "Invalid signature"


class ConfigurationError(PaymentError):
    default_message = "Missing server configuration"


class UpstreamFailure(PaymentError):
    """Stripe (or Supabase) call failed, timed out, or was rejected."""

    default_message = "Payment provider error"


class PersistenceFailure(PaymentError):
    """A local write failed after an irreversible external action.

    The response includes the ids an operator needs to reconcile by hand.
    """

    default_message = "Checkout session created but order update failed"

    def __init__(self, message=None, order_id=None, session_id=None):
        super().__init__(message)
        self.order_id = order_id
        self.session_id = session_id

    def to_dict(self):
        body = super().to_dict()
        body["order_id"] = self.order_id
        body["session_id"] = self.session_id
        body["reconcile"] = True
        return body


def require_config(config, keys):
    """Raise ConfigurationError if any of `keys` is unset in `config`."""
    missing = [k for k in keys if not config.get(k)]
    if missing:
        logger.error(f"Missing configuration: {', '.join(missing)}")
        raise ConfigurationError()
    return {k: config[k] for k in keys}
