"""Problem Details (RFC 7807) responses for the admin API.

Every error leaving a Flask view, whether raised deliberately as
:class:`Problem` or escaping from the controller, is rendered as
``application/problem+json``.  Reconcile failures keep their error
code as a ``code`` extension member so clients can branch on it.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from acmesync.core.errors import ReconcileError
from acmesync.core.types import ErrorKind
from acmesync.reconciler.controller import InvalidOperationError, RequestNotFoundError

log = logging.getLogger(__name__)

_URN = "urn:acmesync:error:"

CONFLICT = _URN + "conflict"
DISTRIBUTION_FAILED = _URN + "distributionFailed"
ISSUER_UNAVAILABLE = _URN + "issuerUnavailable"
MALFORMED = _URN + "malformed"
NOT_FOUND = _URN + "notFound"
RATE_LIMITED = _URN + "rateLimited"
SERVER_INTERNAL = _URN + "serverInternal"
UNAUTHORIZED = _URN + "unauthorized"

PROBLEM_CONTENT_TYPE = "application/problem+json"

_RECONCILE_PROBLEMS: dict[ErrorKind, tuple[str, int]] = {
    ErrorKind.RATE_LIMITED: (RATE_LIMITED, 429),
    ErrorKind.TRANSIENT: (ISSUER_UNAVAILABLE, 503),
    ErrorKind.PERMANENT: (ISSUER_UNAVAILABLE, 503),
    ErrorKind.PARTIAL: (DISTRIBUTION_FAILED, 502),
}


class Problem(Exception):
    """Raise from a view to answer with a problem document.

    *extensions* are extra top-level members of the document; they
    may not shadow ``type``, ``detail``, ``status`` or ``title``.
    """

    def __init__(
        self,
        error_type: str,
        detail: str,
        status: int = 400,
        *,
        title: str | None = None,
        headers: dict[str, str] | None = None,
        extensions: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(detail)
        self.error_type = error_type
        self.detail = detail
        self.status = status
        self.title = title
        self.extra_headers = dict(headers or {})
        self.extensions = dict(extensions or {})

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = dict(self.extensions)
        body.update(type=self.error_type, detail=self.detail, status=self.status)
        if self.title is not None:
            body["title"] = self.title
        return body

    def to_response(self):
        resp = jsonify(self.to_dict())
        resp.status_code = self.status
        resp.headers.update(self.extra_headers)
        resp.headers["Content-Type"] = PROBLEM_CONTENT_TYPE
        resp.headers["Cache-Control"] = "no-store"
        return resp


def problem_from_reconcile_error(exc: ReconcileError) -> Problem:
    """Map a reconcile failure onto a problem; rate limits become 429."""
    error_type, status = _RECONCILE_PROBLEMS[exc.kind]
    headers = {}
    if exc.retry_after is not None:
        headers["Retry-After"] = str(max(1, math.ceil(exc.retry_after)))
    return Problem(
        error_type,
        exc.detail,
        status,
        headers=headers,
        extensions={"code": exc.code.value},
    )


def register_error_handlers(app: Flask) -> None:
    """Render every error raised under *app* as a problem document."""

    @app.errorhandler(Problem)
    def _problem(exc: Problem):
        return exc.to_response()

    @app.errorhandler(RequestNotFoundError)
    def _not_found(exc: RequestNotFoundError):
        return Problem(NOT_FOUND, str(exc), 404).to_response()

    @app.errorhandler(InvalidOperationError)
    def _invalid_operation(exc: InvalidOperationError):
        return Problem(CONFLICT, str(exc), 409).to_response()

    @app.errorhandler(ReconcileError)
    def _reconcile_error(exc: ReconcileError):
        return problem_from_reconcile_error(exc).to_response()

    @app.errorhandler(HTTPException)
    def _http_exception(exc: HTTPException):
        return Problem(
            "about:blank",
            exc.description or exc.name,
            exc.code or 500,
            title=exc.name,
        ).to_response()

    @app.errorhandler(Exception)
    def _unhandled(exc: Exception):  # noqa: ARG001
        log.exception("Unhandled exception in admin API request")
        return Problem(SERVER_INTERNAL, "An unexpected internal error occurred", 500).to_response()
