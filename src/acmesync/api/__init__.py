"""Admin HTTP API: Flask blueprint registration.

Call :func:`register_blueprints` during application startup to wire
the request and metrics blueprints into the Flask app.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from flask import Flask

    from acmesync.config.settings import AcmesyncSettings

log = logging.getLogger(__name__)

API_PREFIX = "/api"


def register_blueprints(app: Flask, settings: AcmesyncSettings) -> None:
    """Register the admin API and (optionally) the metrics endpoint."""
    from acmesync.api.requests import requests_bp  # noqa: PLC0415

    app.register_blueprint(requests_bp, url_prefix=API_PREFIX)

    if settings.metrics.enabled:
        from acmesync.api.metrics import metrics_bp  # noqa: PLC0415

        app.register_blueprint(metrics_bp, url_prefix=settings.metrics.path)
        log.info("Metrics endpoint registered at %s", settings.metrics.path)
