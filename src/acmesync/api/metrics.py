"""Prometheus-compatible metrics endpoint.

``GET /metrics`` returns metrics in text format, guarded by the same
bearer token as the admin API when one is configured.
"""

from __future__ import annotations

from flask import Blueprint, make_response

from acmesync.api.auth import check_token
from acmesync.app.context import get_container

metrics_bp = Blueprint("metrics", __name__)


@metrics_bp.route("", methods=["GET"])
def get_metrics():
    """Return metrics in Prometheus text exposition format."""
    check_token()

    collector = get_container().metrics
    if collector is None:
        return "# No metrics available\n", 200, {"Content-Type": "text/plain"}

    response = make_response(collector.export())
    response.headers["Content-Type"] = "text/plain; version=0.0.4; charset=utf-8"
    return response
