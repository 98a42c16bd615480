"""
Integration tests for the HTTP API with mocked outbound traffic.

Each test installs its own component set on app.state, built over
in-memory storage with a counting mock transport and a fake resolver.
"""

import json

import pytest
from fastapi.testclient import TestClient

from conftest import PUBLIC_IP, CountingTransport, html_response, make_resolver, make_settings
from main import app
from services import build_components


# Test client
client = TestClient(app)


def install_components(handler=None, resolver=None, **overrides):
    overrides.setdefault("app_env", "prod")
    transport = CountingTransport(handler or (lambda request: html_response()))
    components = build_components(
        make_settings(**overrides),
        transport=transport,
        resolver=resolver or make_resolver({
            "example.com": [PUBLIC_IP],
            "169.254.169.254": ["169.254.169.254"],
        }),
    )
    app.state.components = components
    return components, transport


@pytest.fixture(autouse=True)
def reset_components():
    yield
    app.state.components = None


class TestHealthEndpoint:
    """Tests for health endpoint."""

    def test_health_returns_ok(self):
        """Health endpoint should return healthy status."""
        install_components(enable_analysis_history=True)
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["environment"] == "prod"
        assert data["storage_backend"] == "memory"
        assert data["features"]["analysis_history"] is True
        assert data["features"]["cache"] is True

    def test_root(self):
        install_components()
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["health"] == "/health"


class TestAnalyzeValidation:
    """Tests for analyze endpoint input validation."""

    def test_missing_url_returns_400(self):
        """Missing required parameters are reported as validation errors."""
        install_components()
        response = client.get("/api/analyze")
        assert response.status_code == 400
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_missing_body_field_returns_400(self):
        install_components()
        response = client.post("/api/analyze", json={})
        assert response.status_code == 400

    def test_invalid_scheme_returns_400(self):
        install_components()
        response = client.get("/api/analyze", params={"url": "ftp://example.com"})
        assert response.status_code == 400

        data = response.json()
        assert data["success"] is False
        assert data["error_code"] == "scheme_not_allowed"
        assert data["stage"] == "validating"

    def test_localhost_url_rejected(self):
        """Localhost URLs should be rejected for SSRF prevention."""
        _, transport = install_components()
        response = client.get("/api/analyze", params={"url": "http://localhost/admin"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "localhost_blocked"
        assert transport.requests == []

    def test_disallowed_port_rejected(self):
        install_components()
        response = client.get("/api/analyze", params={"url": "http://example.com:9999"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "port_not_allowed"


class TestAnalyzeEndpoint:
    """Tests for successful analyses."""

    def test_analyze_then_cache_hit(self):
        _, transport = install_components()

        first = client.get("/api/analyze", params={"url": "https://example.com"})
        assert first.status_code == 200
        data = first.json()
        assert data["success"] is True
        assert data["data"]["meta"]["title"] == "Example Domain"
        assert data["meta"]["cache_hit"] is False
        assert data["meta"]["url"] == "https://example.com/"
        assert data["meta"]["http"]["status_code"] == 200
        assert len(data["meta"]["cache_key"]) == 64

        second = client.get("/api/analyze", params={"url": "https://example.com/"})
        assert second.status_code == 200
        assert second.json()["meta"]["cache_hit"] is True
        assert second.json()["data"] == data["data"]
        assert len(transport.requests) == 1

    def test_rate_limit_headers(self):
        install_components(rate_limit_per_hour=10)
        response = client.get("/api/analyze", params={"url": "https://example.com"})
        assert response.headers["X-RateLimit-Limit"] == "10"
        assert response.headers["X-RateLimit-Remaining"] == "9"
        assert int(response.headers["X-RateLimit-Reset"]) > 0

        rate_limit = response.json()["meta"]["rate_limit"]
        assert rate_limit["limit"] == 10
        assert rate_limit["remaining"] == 9

    def test_post_with_options(self):
        _, transport = install_components()
        client.post("/api/analyze", json={"url": "https://example.com"})
        response = client.post("/api/analyze", json={
            "url": "  https://example.com  ",
            "bypass_cache": True,
            "include_raw_html": True,
        })
        assert response.status_code == 200
        data = response.json()
        assert data["meta"]["cache_hit"] is False
        assert "Example Domain" in data["raw_html"]
        assert len(transport.requests) == 2

    def test_rate_limit_exceeded_returns_429(self):
        install_components(rate_limit_per_hour=2)
        for _ in range(2):
            assert client.get("/api/analyze", params={"url": "https://example.com"}).status_code == 200

        response = client.get("/api/analyze", params={"url": "https://example.com"})
        assert response.status_code == 429
        data = response.json()
        assert data["error_code"] == "rate_limit_exceeded"
        assert data["stage"] == "rate_limiting"
        assert data["rate_limit"]["remaining"] == 0
        assert int(response.headers["Retry-After"]) >= 1

    def test_ssrf_rejected_with_403(self):
        _, transport = install_components(app_env="dev")
        response = client.get("/api/analyze", params={"url": "http://169.254.169.254/latest/meta-data/"})
        assert response.status_code == 403
        assert response.json()["error_code"] == "private_address_blocked"
        assert transport.requests == []

    def test_fetch_failure_returns_502(self):
        install_components(handler=lambda request: html_response("down", status_code=503))
        response = client.get("/api/analyze", params={"url": "https://example.com"})
        assert response.status_code == 502
        data = response.json()
        assert data["error_code"] == "http_status_error"
        assert data["stage"] == "fetching"

    def test_internal_error_hidden_in_production(self, monkeypatch):
        components, _ = install_components()

        def explode(html, base_url=None):
            raise RuntimeError("secret internals")

        monkeypatch.setattr(components.extractor, "extract", explode)
        response = client.get("/api/analyze", params={"url": "https://example.com"})
        assert response.status_code == 500
        assert "secret internals" not in response.json()["message"]

    def test_internal_error_detailed_in_dev(self, monkeypatch):
        components, _ = install_components(app_env="dev")

        def explode(html, base_url=None):
            raise RuntimeError("secret internals")

        monkeypatch.setattr(components.extractor, "extract", explode)
        response = client.get("/api/analyze", params={"url": "https://example.com"})
        assert response.status_code == 500
        assert "secret internals" in response.json()["message"]


class TestExportEndpoint:
    """Tests for exporting cached analyses."""

    def test_export_json(self):
        install_components()
        client.get("/api/analyze", params={"url": "https://example.com"})

        response = client.get("/api/export", params={"url": "https://example.com"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        disposition = response.headers["Content-Disposition"]
        assert disposition.startswith('attachment; filename="meta-analysis-example-com-')
        assert disposition.endswith('.json"')
        assert response.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"

        document = json.loads(response.content)
        assert document["metadata"]["url"] == "https://example.com/"
        assert document["analysis"]["meta"]["title"] == "Example Domain"

    def test_export_csv_with_filename(self):
        install_components()
        client.get("/api/analyze", params={"url": "https://example.com"})

        response = client.get("/api/export", params={
            "url": "https://example.com",
            "format": "CSV",
            "filename": "report.txt",
        })
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert response.headers["Content-Disposition"] == 'attachment; filename="report.csv"'
        assert response.content.startswith(b"\xef\xbb\xbf")
        assert b"analysis.meta.title" in response.content

    def test_export_requires_prior_analysis(self):
        install_components()
        response = client.get("/api/export", params={"url": "https://example.com"})
        assert response.status_code == 404
        assert response.json()["error_code"] == "analysis_not_found"

    def test_export_invalid_format(self):
        install_components()
        response = client.get("/api/export", params={"url": "https://example.com", "format": "xml"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "invalid_export_request"

    def test_export_invalid_filename(self):
        install_components()
        client.get("/api/analyze", params={"url": "https://example.com"})
        response = client.get("/api/export", params={"url": "https://example.com", "filename": "../etc"})
        assert response.status_code == 400
        assert response.json()["error_code"] == "invalid_export_request"

    def test_export_counts_against_rate_limit(self):
        components, _ = install_components(rate_limit_per_hour=2)
        client.get("/api/analyze", params={"url": "https://example.com"})
        assert client.get("/api/export", params={"url": "https://example.com"}).status_code == 200

        response = client.get("/api/export", params={"url": "https://example.com"})
        assert response.status_code == 429
        assert "Retry-After" in response.headers


class TestHistoryEndpoint:
    """Tests for the optional history endpoint."""

    def test_history_disabled_returns_404(self):
        install_components(enable_analysis_history=False)
        response = client.get("/api/history")
        assert response.status_code == 404
        assert response.json()["error_code"] == "HTTP_404"

    def test_history_lists_recent_analyses(self):
        install_components(enable_analysis_history=True)
        client.get("/api/analyze", params={"url": "https://example.com"})
        client.get("/api/analyze", params={"url": "https://example.com"})

        response = client.get("/api/history", params={"limit": 5})
        assert response.status_code == 200
        items = response.json()["items"]
        assert len(items) == 2
        assert items[0]["url"] == "https://example.com/"
        assert items[0]["cache_hit"] is True
        assert items[1]["title"] == "Example Domain"

    def test_history_limit_validated(self):
        install_components(enable_analysis_history=True)
        response = client.get("/api/history", params={"limit": 0})
        assert response.status_code == 400


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
