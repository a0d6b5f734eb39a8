"""Auth service — resolves Supabase access tokens to users.

The mobile/web clients authenticate against Supabase Auth and send the
access token as "Authorization: Bearer <jwt>". We ask Supabase who the
token belongs to (GET /auth/v1/user) with the service_role key as apikey.
"""

import logging

import requests
from flask import current_app
from flask_login import UserMixin

logger = logging.getLogger(__name__)


class AuthUser(UserMixin):
    """Request-scoped user resolved from a bearer token. Not persisted."""

    def __init__(self, id, email=None):
        self.id = id
        self.email = email

    def __repr__(self):
        return f"<AuthUser {self.id}>"


def extract_bearer_token(auth_header):
    """Return the token from an Authorization header, or None."""
    if not auth_header:
        return None
    scheme, _, token = auth_header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def fetch_supabase_user(token):
    """Look up the user owning `token` in Supabase Auth.

    Returns an AuthUser, or None if the token is invalid, expired, or
    Supabase could not be reached.
    """
    supabase_url = current_app.config.get("SUPABASE_URL")
    service_key = current_app.config.get("SUPABASE_SERVICE_KEY")
    if not supabase_url or not service_key:
        return None

    url = f"{supabase_url.rstrip('/')}/auth/v1/user"
    headers = {
        "apikey": service_key,
        "Authorization": f"Bearer {token}",
    }

    try:
        resp = requests.get(
            url,
            headers=headers,
            timeout=current_app.config.get("SUPABASE_AUTH_TIMEOUT_SECONDS", 5),
        )
    except requests.RequestException as e:
        logger.warning(f"Supabase auth lookup failed: {e}")
        return None

    if resp.status_code != 200:
        logger.info(f"Supabase rejected bearer token (HTTP {resp.status_code})")
        return None

    try:
        data = resp.json() or {}
    except ValueError:
        logger.warning("Supabase auth returned a non-JSON body")
        return None
    user_id = data.get("id")
    if not user_id:
        return None
    return AuthUser(id=user_id, email=data.get("email"))


def get_user_from_request(request):
    """Flask-Login request_loader body."""
    token = extract_bearer_token(request.headers.get("Authorization"))
    if not token:
        return None
    return fetch_supabase_user(token)
