"""Certificate request admin API blueprint.

Mounted at ``/api``::

    GET    /api/requests[?state=issued,failed]
    POST   /api/requests
    GET    /api/requests/<id>
    POST   /api/requests/<id>/retry
    POST   /api/requests/<id>/revoke
    DELETE /api/requests/<id>
    GET    /api/status
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from uuid import UUID

from flask import Blueprint, jsonify, request

from acmesync.api.auth import require_token
from acmesync.api.serializers import serialize_request
from acmesync.app.context import get_container
from acmesync.app.errors import MALFORMED, Problem
from acmesync.core.types import RequestState, RevocationReason
from acmesync.reconciler.controller import InvalidOperationError

if TYPE_CHECKING:
    from flask.typing import ResponseReturnValue

log = logging.getLogger(__name__)

requests_bp = Blueprint("requests_api", __name__)


def _parse_id(raw: str) -> UUID:
    try:
        return UUID(raw)
    except ValueError:
        raise Problem(MALFORMED, f"'{raw}' is not a valid request id", 400) from None


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise Problem(MALFORMED, "Request body must be a JSON object", 400)
    return data


def _string_list(data: dict, key: str) -> list[str]:
    value = data.get(key)
    if not isinstance(value, list) or not value or not all(isinstance(v, str) for v in value):
        raise Problem(MALFORMED, f"'{key}' must be a non-empty list of strings", 400)
    return value


@requests_bp.route("/requests", methods=["GET"])
@require_token
def list_requests() -> ResponseReturnValue:
    states = None
    raw = request.args.get("state")
    if raw:
        try:
            states = [RequestState(s.strip()) for s in raw.split(",") if s.strip()]
        except ValueError:
            raise Problem(
                MALFORMED,
                f"Unknown state in '{raw}'; expected one of {[s.value for s in RequestState]}",
                400,
            ) from None
    requests = get_container().controller.list(states)
    return jsonify([serialize_request(r) for r in requests])


@requests_bp.route("/requests", methods=["POST"])
@require_token
def create_request() -> ResponseReturnValue:
    data = _json_body()
    issuer = data.get("issuer")
    secret_name = data.get("secret_name")
    if not isinstance(issuer, str) or not issuer:
        raise Problem(MALFORMED, "'issuer' is required", 400)
    if not isinstance(secret_name, str) or not secret_name:
        raise Problem(MALFORMED, "'secret_name' is required", 400)
    domains = _string_list(data, "domains")
    namespaces = _string_list(data, "namespaces")

    try:
        req, created = get_container().controller.create(issuer, domains, secret_name, namespaces)
    except InvalidOperationError:
        raise
    except ValueError as exc:
        raise Problem(MALFORMED, str(exc), 400) from exc
    return jsonify(serialize_request(req)), 201 if created else 200


@requests_bp.route("/requests/<request_id>", methods=["GET"])
@require_token
def get_request(request_id: str) -> ResponseReturnValue:
    req = get_container().controller.get(_parse_id(request_id))
    return jsonify(serialize_request(req, detailed=True))


@requests_bp.route("/requests/<request_id>/retry", methods=["POST"])
@require_token
def retry_request(request_id: str) -> ResponseReturnValue:
    req = get_container().controller.retry(_parse_id(request_id))
    return jsonify(serialize_request(req)), 202


@requests_bp.route("/requests/<request_id>/revoke", methods=["POST"])
@require_token
def revoke_request(request_id: str) -> ResponseReturnValue:
    data = request.get_json(silent=True) or {}
    raw_reason = data.get("reason", RevocationReason.UNSPECIFIED.value)
    try:
        reason = RevocationReason(raw_reason)
    except ValueError:
        raise Problem(
            MALFORMED,
            f"Unknown revocation reason '{raw_reason}'; expected one of "
            f"{[r.value for r in RevocationReason]}",
            400,
        ) from None
    req = get_container().controller.revoke(_parse_id(request_id), reason)
    return jsonify(serialize_request(req)), 202


@requests_bp.route("/requests/<request_id>", methods=["DELETE"])
@require_token
def delete_request(request_id: str) -> ResponseReturnValue:
    req = get_container().controller.delete(_parse_id(request_id))
    return jsonify(serialize_request(req)), 202


@requests_bp.route("/status", methods=["GET"])
@require_token
def status() -> ResponseReturnValue:
    return jsonify(get_container().controller.status())
