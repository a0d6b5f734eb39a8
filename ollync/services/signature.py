"""Stripe webhook signature verification.

Header format: "t=<unix_ts>,v1=<hex_hmac>[,v1=...][,v0=...]".
The signed payload is "{t}.{raw_body}", HMAC-SHA256 with the endpoint's
signing secret. Only t and v1 are consumed; Stripe may send several v1
values while a secret is being rolled.

The header is parsed here so a malformed header can be told apart from
a bad signature. The HMAC check itself is stripe.WebhookSignature's.

Verification must run on the raw request body. Parsing and re-dumping
the JSON changes the bytes and breaks the signature.
"""

from collections import namedtuple

import stripe

from ollync.errors import SignatureError

SignatureHeader = namedtuple("SignatureHeader", ["timestamp", "signatures"])


class SignatureHeaderError(SignatureError):
    """Header is empty or lacks a t= / v1= field."""


class SignatureMismatchError(SignatureError):
    """No v1 signature matches, or the timestamp is outside tolerance."""


def parse_signature_header(header):
    """Parse a Stripe-Signature header into (timestamp, [v1 signatures]).

    Raises SignatureHeaderError if the header is malformed.
    """
    if not header:
        raise SignatureHeaderError("empty signature header")

    timestamp = None
    signatures = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp = value
        elif key == "v1" and value:
            signatures.append(value)

    if not timestamp or not signatures:
        raise SignatureHeaderError("signature header missing t or v1")
    if not timestamp.isdigit():
        raise SignatureHeaderError(f"non-numeric timestamp {timestamp!r}")

    return SignatureHeader(int(timestamp), signatures)


def verify_signature(payload, header, secret, tolerance=0):
    """Verify `header` against the raw `payload`.

    `tolerance` > 0 also rejects timestamps older than that many seconds.
    Returns the parsed SignatureHeader on success.
    Raises SignatureHeaderError or SignatureMismatchError.
    """
    parsed = parse_signature_header(header)

    if isinstance(payload, bytes):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise SignatureMismatchError("payload is not UTF-8") from e

    # stripe's own header split does not tolerate whitespace
    normalized = ",".join(
        [f"t={parsed.timestamp}"] + [f"v1={sig}" for sig in parsed.signatures]
    )
    try:
        stripe.WebhookSignature.verify_header(
            payload, normalized, secret,
            tolerance=tolerance if tolerance and tolerance > 0 else None,
        )
    except stripe.SignatureVerificationError as e:
        raise SignatureMismatchError(str(e)) from e

    return parsed
