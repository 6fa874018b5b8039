"""Tests for health check endpoints."""

from __future__ import annotations

from unittest.mock import MagicMock

from image_registry_operator.health import create_combined_wsgi_app


def _environ(path: str) -> dict:
    return {
        "REQUEST_METHOD": "GET",
        "PATH_INFO": path,
        "SCRIPT_NAME": "",
        "SERVER_NAME": "localhost",
        "SERVER_PORT": "8080",
        "wsgi.url_scheme": "http",
    }


class TestCombinedWsgiApp:
    """Test cases for the combined metrics and health app."""

    def test_healthz(self):
        """Test /healthz always answers ok."""
        app = create_combined_wsgi_app(ready=lambda: False)
        start_response = MagicMock()

        body = b"".join(app(_environ("/healthz"), start_response))

        assert b'"status":"ok"' in body
        assert "200" in start_response.call_args[0][0]

    def test_readyz_ready(self):
        """Test /readyz once the controllers run."""
        app = create_combined_wsgi_app(ready=lambda: True)
        start_response = MagicMock()

        body = b"".join(app(_environ("/readyz"), start_response))

        assert b'"status":"ready"' in body
        assert "200" in start_response.call_args[0][0]

    def test_readyz_not_ready(self):
        """Test /readyz answers 503 before the controllers start."""
        app = create_combined_wsgi_app(ready=lambda: False)
        start_response = MagicMock()

        body = b"".join(app(_environ("/readyz"), start_response))

        assert b'"status":"not ready"' in body
        assert "503" in start_response.call_args[0][0]

    def test_readyz_without_callback(self):
        """Test /readyz defaults to ready."""
        app = create_combined_wsgi_app()
        start_response = MagicMock()

        app(_environ("/readyz"), start_response)

        assert "200" in start_response.call_args[0][0]

    def test_metrics_delegated(self):
        """Test that other paths serve Prometheus metrics."""
        app = create_combined_wsgi_app()
        start_response = MagicMock()

        body = b"".join(app(_environ("/metrics"), start_response))

        assert b"image_registry_operator_reconcile" in body
