"""Certificate request state machine.

Defines the valid state transitions for a certificate request.  Every
state change made by the reconciler or by an operator goes through
:func:`assert_transition`.

Usage::

    from acmesync.core.state import assert_transition
    from acmesync.core.types import RequestState

    assert_transition(RequestState.PENDING, RequestState.VALIDATING)
"""

from __future__ import annotations

import logging

from acmesync.core.types import RequestState

log = logging.getLogger(__name__)

_S = RequestState

# ---------------------------------------------------------------------------
# pending → validating, validating → issuing, issuing → issued,
# issued → renewing → validating.  Retryable failures loop back to
# pending (or renewing when a certificate is already being served).
# failed only leaves through an operator re-trigger.  revoked/deleted
# are reachable from every live state.
# ---------------------------------------------------------------------------

REQUEST_TRANSITIONS: dict[RequestState, frozenset[RequestState]] = {
    _S.PENDING: frozenset({_S.VALIDATING, _S.FAILED}),
    _S.VALIDATING: frozenset(
        {
            _S.ISSUING,
            _S.PENDING,  # retry
            _S.RENEWING,  # retry of a renewal
            _S.FAILED,
        }
    ),
    _S.ISSUING: frozenset(
        {
            _S.ISSUED,
            _S.PENDING,  # retry
            _S.RENEWING,  # retry of a renewal
            _S.FAILED,
        }
    ),
    _S.ISSUED: frozenset({_S.RENEWING}),
    _S.RENEWING: frozenset({_S.VALIDATING, _S.FAILED}),
    _S.FAILED: frozenset({_S.PENDING, _S.RENEWING}),
    _S.REVOKED: frozenset({_S.DELETED}),
    _S.DELETED: frozenset(),
}

for _state in (_S.PENDING, _S.VALIDATING, _S.ISSUING, _S.ISSUED, _S.RENEWING, _S.FAILED):
    REQUEST_TRANSITIONS[_state] = REQUEST_TRANSITIONS[_state] | {_S.REVOKED, _S.DELETED}
del _state

TERMINAL_STATES: frozenset[RequestState] = frozenset({_S.FAILED, _S.REVOKED, _S.DELETED})

ACTIVE_STATES: frozenset[RequestState] = frozenset(RequestState) - TERMINAL_STATES

# States that hold an in-flight ACME order.
IN_FLIGHT_STATES: frozenset[RequestState] = frozenset({_S.VALIDATING, _S.ISSUING})

# States the scheduler may pick up and hand to an issuer worker.
READY_STATES: frozenset[RequestState] = frozenset({_S.PENDING, _S.RENEWING})


def assert_transition(current: RequestState, target: RequestState) -> None:
    """Raise :class:`ValueError` if *current* → *target* is not allowed."""
    allowed = REQUEST_TRANSITIONS.get(current)
    if allowed is None:
        msg = f"Unknown state {current!r}"
        raise ValueError(msg)
    if target not in allowed:
        msg = (
            f"Invalid transition {current.value!r} -> {target.value!r}; "
            f"allowed targets: {sorted(s.value for s in allowed) or '(terminal)'}"
        )
        raise ValueError(msg)


def is_terminal(state: RequestState) -> bool:
    return state in TERMINAL_STATES
