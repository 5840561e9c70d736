"""Hook event names and the :class:`~acmesync.hooks.base.Hook` methods they call.

No internal imports; safe to import from anywhere.
"""

from __future__ import annotations

EVENT_METHOD_MAP: dict[str, str] = {
    "request.transition": "on_request_transition",
    "challenge.published": "on_challenge_published",
    "challenge.cleaned_up": "on_challenge_cleaned_up",
    "certificate.issued": "on_certificate_issued",
    "certificate.revoked": "on_certificate_revoked",
    "distribution.partial": "on_distribution_partial",
}

KNOWN_EVENTS: frozenset[str] = frozenset(EVENT_METHOD_MAP)
