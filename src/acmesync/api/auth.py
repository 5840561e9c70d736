"""Static bearer-token guard for the admin API."""

from __future__ import annotations

import functools
import hmac
from typing import TYPE_CHECKING, Any

from flask import request

from acmesync.app.errors import UNAUTHORIZED, Problem

if TYPE_CHECKING:
    from collections.abc import Callable


def check_token() -> None:
    """Raise a 401 problem unless the request carries ``api.token``.

    A no-op when no token is configured.
    """
    from acmesync.app.context import get_container  # noqa: PLC0415

    expected = get_container().settings.api.token
    if not expected:
        return

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise Problem(
            UNAUTHORIZED,
            "Missing or invalid Authorization header",
            status=401,
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not hmac.compare_digest(auth_header[7:].encode(), expected.encode()):
        raise Problem(
            UNAUTHORIZED,
            "Invalid token",
            status=401,
            headers={"WWW-Authenticate": "Bearer"},
        )


def require_token(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator form of :func:`check_token`."""

    @functools.wraps(fn)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        check_token()
        return fn(*args, **kwargs)

    return wrapper
