"""Tests for /healthz and /readyz infrastructure endpoints."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock, patch

from flask import Flask

from acmesync.app.factory import _register_health


def _make_app(container):
    """Create a minimal Flask app with health routes registered."""
    app = Flask("test_health")
    app.extensions["container"] = container
    with patch("acmesync.__version__", "0.0.0-test"):
        _register_health(app)
    return app


def _make_container(*, running=True, last_tick_at=None, interval=60):
    container = MagicMock()
    container.scheduler.running = running
    container.scheduler.last_tick_at = last_tick_at
    container.scheduler.interval = interval
    container.hook_registry.is_shutdown = False
    container.shutdown_coordinator = None
    return container


# ---------------------------------------------------------------------------
# /healthz
# ---------------------------------------------------------------------------


class TestHealthz:
    def test_ok(self):
        resp = _make_app(_make_container()).test_client().get("/healthz")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["status"] == "ok"
        assert data["version"] == "0.0.0-test"
        assert data["workers"] == {"scheduler": "alive"}
        assert "shutting_down" not in data

    def test_dead_scheduler_degrades(self):
        resp = _make_app(_make_container(running=False)).test_client().get("/healthz")

        assert resp.status_code == 503
        data = resp.get_json()
        assert data["status"] == "degraded"
        assert data["workers"]["scheduler"] == "dead"

    def test_hook_pool_shutdown_reported(self):
        container = _make_container()
        container.hook_registry.is_shutdown = True

        data = _make_app(container).test_client().get("/healthz").get_json()

        assert data["workers"]["hooks"] == "shutdown"

    def test_shutting_down_flag(self):
        container = _make_container()
        container.shutdown_coordinator = MagicMock(is_shutting_down=True)

        data = _make_app(container).test_client().get("/healthz").get_json()

        assert data["shutting_down"] is True


# ---------------------------------------------------------------------------
# /readyz
# ---------------------------------------------------------------------------


class TestReadyz:
    def test_ready_after_recent_tick(self):
        last = datetime.now(UTC)
        resp = _make_app(_make_container(last_tick_at=last)).test_client().get("/readyz")

        assert resp.status_code == 200
        assert resp.get_json() == {"ready": True, "last_tick_at": last.isoformat()}

    def test_scheduler_not_running(self):
        resp = _make_app(_make_container(running=False)).test_client().get("/readyz")

        assert resp.status_code == 503
        assert resp.get_json()["reason"] == "Scheduler not running"

    def test_no_tick_yet(self):
        resp = _make_app(_make_container()).test_client().get("/readyz")

        assert resp.status_code == 503
        assert resp.get_json()["reason"] == "No reconciliation tick yet"

    def test_stalled_loop(self):
        stale = datetime.now(UTC) - timedelta(seconds=200)
        resp = _make_app(_make_container(last_tick_at=stale, interval=60)).test_client().get("/readyz")

        assert resp.status_code == 503
        data = resp.get_json()
        assert data["reason"] == "Reconciliation loop is stalled"
        assert data["last_tick_at"] == stale.isoformat()

    def test_slow_tick_within_three_intervals(self):
        recent = datetime.now(UTC) - timedelta(seconds=150)
        resp = _make_app(_make_container(last_tick_at=recent, interval=60)).test_client().get("/readyz")

        assert resp.status_code == 200
