"""
Custom route decorators.

- with_cors: adds the CORS headers the web/mobile clients need to call the
  payment endpoints cross-origin.
"""

from functools import wraps

from flask import make_response

DEFAULT_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type"


def with_cors(allow_headers=DEFAULT_ALLOW_HEADERS, allow_methods="POST, OPTIONS"):
    """Add CORS headers to every response of the wrapped view."""

    def decorator(f):
        @wraps(f)
        def decorated(*args, **kwargs):
            response = make_response(f(*args, **kwargs))
            response.headers["Access-Control-Allow-Origin"] = "*"
            response.headers["Access-Control-Allow-Headers"] = allow_headers
            response.headers["Access-Control-Allow-Methods"] = allow_methods
            return response

        return decorated

    return decorator
