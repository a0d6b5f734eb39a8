"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # No global limit — we apply per-route
    storage_uri="memory://",
)

# Bearer tokens only: never persist the user in a cookie session.
login_manager.session_protection = None


@login_manager.request_loader
def load_user_from_request(request):
    """Resolve the Authorization bearer token to a Supabase user.

    Imports lazily to avoid circular deps.
    """
    from ollync.services.auth_service import get_user_from_request

    return get_user_from_request(request)
