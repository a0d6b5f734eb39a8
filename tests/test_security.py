"""Security tests.

Tests:
- Security headers are present on responses
- CORS headers on the payment endpoints
- JSON error bodies (no HTML error pages)
- Rate limiting configuration
"""

from ollync.config import TestConfig


class TestSecurityHeaders:
    """Verify security headers are present on responses."""

    def test_x_content_type_options(self, app, client):
        """X-Content-Type-Options: nosniff should be set."""
        response = client.get("/")
        assert response.headers.get("X-Content-Type-Options") == "nosniff"

    def test_x_frame_options(self, app, client):
        """X-Frame-Options: DENY should be set."""
        response = client.get("/")
        assert response.headers.get("X-Frame-Options") == "DENY"

    def test_referrer_policy(self, app, client):
        response = client.get("/")
        assert response.headers.get("Referrer-Policy") == "strict-origin-when-cross-origin"

    def test_csp_header(self, app, client):
        """API-only CSP: nothing may load or frame."""
        csp = client.get("/").headers.get("Content-Security-Policy")
        assert "default-src 'none'" in csp
        assert "frame-ancestors 'none'" in csp

    def test_no_hsts_in_debug(self, app, client):
        """HSTS should NOT be set in debug/test mode."""
        response = client.get("/")
        assert response.headers.get("Strict-Transport-Security") is None

    def test_headers_on_error_pages(self, app, client):
        """Security headers should be present even on 404 pages."""
        response = client.get("/nonexistent-page")
        assert response.headers.get("X-Content-Type-Options") == "nosniff"
        assert response.headers.get("X-Frame-Options") == "DENY"

    def test_headers_on_webhook_responses(self, client):
        response = client.post("/functions/v1/stripe-webhook", data="{}")
        assert response.status_code == 400
        assert response.headers.get("X-Content-Type-Options") == "nosniff"


class TestCors:
    """CORS headers the browser and mobile clients rely on."""

    def test_checkout_preflight(self, client):
        response = client.options("/functions/v1/create-checkout-session")
        assert response.status_code == 200
        assert response.get_json() == {"ok": True}
        assert response.headers["Access-Control-Allow-Origin"] == "*"
        assert response.headers["Access-Control-Allow-Methods"] == "POST, OPTIONS"
        allowed = response.headers["Access-Control-Allow-Headers"]
        for header in ("authorization", "x-client-info", "apikey", "content-type"):
            assert header in allowed

    def test_cors_on_error_responses(self, client):
        """Browsers need CORS headers to read the error body."""
        response = client.post("/api/checkout/session", json={"product_code": "BOOST_7D"})
        assert response.status_code == 401
        assert response.headers["Access-Control-Allow-Origin"] == "*"


class TestErrorBodies:
    """Errors are JSON, never HTML."""

    def test_health(self, client):
        assert client.get("/").get_json() == {"status": "ok"}

    def test_404_is_json(self, client):
        response = client.get("/nonexistent-page")
        assert response.status_code == 404
        assert response.get_json() == {"error": "Not found"}

    def test_405_is_json(self, client):
        response = client.get("/functions/v1/create-checkout-session")
        assert response.status_code == 405
        assert response.get_json() == {"error": "Method not allowed"}


class TestRateLimiting:
    """Rate limiting configuration."""

    def test_disabled_in_tests(self, app):
        assert app.config["RATELIMIT_ENABLED"] is False

    def test_checkout_limit_configured(self):
        assert TestConfig.CHECKOUT_RATE_LIMIT == "30 per minute"
