"""Base class for lifecycle hooks.

Subclass :class:`Hook` and override the events you care about;
everything else is a no-op.

Usage::

    from acmesync.hooks import Hook

    class SlackHook(Hook):
        def on_certificate_issued(self, ctx: dict) -> None:
            post(f"issued {ctx['domains']} until {ctx['not_after']}")
"""

from __future__ import annotations

import abc


class Hook(abc.ABC):
    """Base class for all hooks.

    Parameters
    ----------
    config:
        The hook entry's ``config`` mapping from the configuration file.

    """

    def __init__(self, config: dict | None = None) -> None:
        self.config = config or {}

    @classmethod
    def validate_config(cls, config: dict) -> None:
        """Reject bad *config* with :class:`ValueError` before instantiation."""

    def on_request_transition(self, ctx: dict) -> None:
        """A request changed state.

        Context keys: ``request_id``, ``issuer``, ``domains``,
        ``from_state``, ``to_state``, ``error``.
        """

    def on_challenge_published(self, ctx: dict) -> None:
        """A DNS-01 TXT record was created.

        Context keys: ``domain``, ``record_name``, ``zone``, ``record_id``.
        """

    def on_challenge_cleaned_up(self, ctx: dict) -> None:
        """A DNS-01 TXT record was removed.  Same keys as above."""

    def on_certificate_issued(self, ctx: dict) -> None:
        """A certificate was issued or renewed.

        Context keys: ``request_id``, ``issuer``, ``domains``,
        ``serial_number``, ``not_after``, ``renewal``.
        """

    def on_certificate_revoked(self, ctx: dict) -> None:
        """Context keys: ``request_id``, ``issuer``, ``serial_number``."""

    def on_distribution_partial(self, ctx: dict) -> None:
        """Some namespaces could not be written.

        Context keys: ``request_id``, ``secret_name``, ``failed``
        (namespace → error).
        """
