"""Flask application factory for acmesync.

Usage::

    from acmesync.app import Container, create_app

    container = Container(get_config().settings)
    app = create_app(container)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from flask import Flask, jsonify

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue

    from acmesync.app.context import Container

log = logging.getLogger(__name__)


def create_app(container: Container) -> Flask:
    """Create the Flask application serving probes, metrics and the admin API.

    Parameters
    ----------
    container:
        Fully wired dependency container.  Stored on
        ``app.extensions["container"]``.

    """
    settings = container.settings

    app = Flask("acmesync")
    app.config["ACMESYNC_SETTINGS"] = settings
    app.config["MAX_CONTENT_LENGTH"] = 64 * 1024
    app.extensions["container"] = container

    # -- Error handlers (RFC 7807) ------------------------------------------
    from acmesync.app.errors import register_error_handlers  # noqa: PLC0415

    register_error_handlers(app)

    # -- Infrastructure endpoints -------------------------------------------
    _register_health(app)

    # -- Admin API and metrics ----------------------------------------------
    from acmesync.api import register_blueprints  # noqa: PLC0415

    register_blueprints(app, settings)

    log.info("Flask application created")
    return app


# ---------------------------------------------------------------------------
# Infrastructure endpoints
# ---------------------------------------------------------------------------


def _register_health(app: Flask) -> None:
    """Register ``/healthz`` and ``/readyz`` probes."""
    from acmesync import __version__  # noqa: PLC0415

    @app.route("/healthz")
    def healthz() -> ResponseReturnValue:
        """Return liveness plus scheduler and hook pool status."""
        container = app.extensions["container"]
        scheduler = container.scheduler
        result: dict = {"status": "ok", "version": __version__}

        workers = {"scheduler": "alive" if scheduler.running else "dead"}
        if container.hook_registry.is_shutdown:
            workers["hooks"] = "shutdown"
        result["workers"] = workers
        if not scheduler.running:
            result["status"] = "degraded"

        coordinator = container.shutdown_coordinator
        if coordinator is not None:
            result["shutting_down"] = coordinator.is_shutting_down

        code = 200 if result["status"] == "ok" else 503
        return jsonify(result), code

    @app.route("/readyz")
    def readyz() -> ResponseReturnValue:
        """Ready once the scheduler runs and has ticked recently."""
        container = app.extensions["container"]
        scheduler = container.scheduler
        if not scheduler.running:
            return jsonify({"ready": False, "reason": "Scheduler not running"}), 503

        last = scheduler.last_tick_at
        if last is None:
            return jsonify({"ready": False, "reason": "No reconciliation tick yet"}), 503

        # A tick can legitimately take a while; allow three intervals.
        age = (datetime.now(UTC) - last).total_seconds()
        if age > 3 * scheduler.interval:
            return (
                jsonify(
                    {
                        "ready": False,
                        "reason": "Reconciliation loop is stalled",
                        "last_tick_at": last.isoformat(),
                    },
                ),
                503,
            )

        return jsonify({"ready": True, "last_tick_at": last.isoformat()}), 200
