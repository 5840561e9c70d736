"""DNS-01 challenge solver.

Publishes the ``_acme-challenge`` TXT record through the issuer's DNS
provider, then polls public resolvers until the value is visible or
the propagation budget runs out.  Record removal is a separate step
(:meth:`ChallengeSolver.cleanup`) that
:class:`~acmesync.challenge.ledger.ChallengeLedger` runs for every
published record when a request leaves ``validating``.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from acmesync.core.domains import challenge_record_name
from acmesync.core.errors import (
    DNSPropagationTimeout,
    IssuerUnavailable,
    ReconcileError,
    RequestCancelled,
    TransientError,
)
from acmesync.core.types import RecordType
from acmesync.dns.base import DnsProviderError
from acmesync.models.challenge import Challenge

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmesync.dns.base import DnsProvider
    from acmesync.dns.propagation import PropagationChecker
    from acmesync.hooks.registry import HookRegistry

log = logging.getLogger(__name__)


def provider_error(exc: DnsProviderError) -> ReconcileError:
    """Map a DNS provider failure onto the reconciliation taxonomy.

    Rejected credentials and unknown zones make the issuer unusable;
    anything the provider flagged as retryable stays transient.
    """
    if exc.retryable:
        return TransientError(exc.detail, retry_after=exc.retry_after)
    return IssuerUnavailable(exc.detail)


class ChallengeSolver:
    """Publish, confirm and remove DNS-01 TXT records for one zone.

    Parameters
    ----------
    provider:
        DNS provider client used for record changes.
    checker:
        Propagation checker querying public resolvers.
    zone:
        Zone the challenge records are created in.
    ttl:
        TTL of published TXT records.
    propagation_timeout:
        Seconds to wait for the record to become visible.
    poll_interval:
        Seconds between propagation checks.

    """

    def __init__(
        self,
        provider: DnsProvider,
        checker: PropagationChecker,
        *,
        zone: str,
        ttl: int = 120,
        propagation_timeout: float = 120.0,
        poll_interval: float = 5.0,
        hooks: HookRegistry | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.checker = checker
        self.zone = zone
        self.ttl = ttl
        self.propagation_timeout = propagation_timeout
        self.poll_interval = poll_interval
        self._hooks = hooks
        self._clock = clock
        self._sleep = sleep

    def _dispatch(self, event: str, challenge: Challenge) -> None:
        if self._hooks is None:
            return
        self._hooks.dispatch(
            event,
            {
                "domain": challenge.domain,
                "record_name": challenge.record_name,
                "zone": challenge.zone,
                "record_id": challenge.record_id,
            },
        )

    def _wait(self, seconds: float, cancel: threading.Event | None) -> None:
        if cancel is None:
            self._sleep(seconds)
            return
        if cancel.wait(seconds):
            msg = "Cancelled while waiting for DNS propagation"
            raise RequestCancelled(msg)

    def publish(self, domain: str, value: str) -> Challenge:
        """Create the TXT record for *domain* and return the published challenge."""
        record_name = challenge_record_name(domain)
        try:
            record_id = self.provider.create_record(
                self.zone,
                record_name,
                RecordType.TXT,
                value,
                self.ttl,
            )
        except DnsProviderError as exc:
            raise provider_error(exc) from exc

        challenge = Challenge(
            domain=domain,
            record_name=record_name,
            expected_value=value,
            zone=self.zone,
            record_id=record_id,
            published_at=datetime.now(UTC),
        )
        log.info("Published DNS-01 record %s for %s", record_name, domain)
        self._dispatch("challenge.published", challenge)
        return challenge

    def await_propagation(
        self,
        challenge: Challenge,
        *,
        cancel: threading.Event | None = None,
    ) -> Challenge:
        """Poll resolvers until *challenge* is visible.

        Raises
        ------
        DNSPropagationTimeout
            The value was not observed within ``propagation_timeout``.
        RequestCancelled
            *cancel* was set while waiting.

        """
        deadline = self._clock() + self.propagation_timeout
        checks = 0
        while True:
            if cancel is not None and cancel.is_set():
                msg = "Cancelled before DNS propagation completed"
                raise RequestCancelled(msg)
            checks += 1
            if self.checker.is_visible(challenge.record_name, challenge.expected_value):
                log.info(
                    "DNS-01 record %s propagated after %d check(s)",
                    challenge.record_name,
                    checks,
                )
                return replace(challenge, propagated=True)
            if self._clock() >= deadline:
                msg = (
                    f"TXT record {challenge.record_name} not visible on "
                    f"{', '.join(self.checker.resolvers)} after "
                    f"{self.propagation_timeout:g}s"
                )
                raise DNSPropagationTimeout(msg)
            self._wait(self.poll_interval, cancel)

    def solve(
        self,
        domain: str,
        value: str,
        *,
        cancel: threading.Event | None = None,
        on_published: Callable[[Challenge], None] | None = None,
    ) -> Challenge:
        """Publish the record for *domain* and wait until it has propagated.

        *on_published* is called as soon as the record exists so the
        caller can track it for cleanup even if propagation then fails.
        """
        challenge = self.publish(domain, value)
        if on_published is not None:
            on_published(challenge)
        return self.await_propagation(challenge, cancel=cancel)

    def cleanup(self, challenge: Challenge) -> Challenge:
        """Delete the record behind *challenge*.

        Idempotent: an already cleaned or never published challenge is
        returned marked as cleaned without touching the provider.
        """
        if challenge.cleaned_up:
            return challenge
        if challenge.record_id is None:
            return replace(challenge, cleaned_up=True)
        try:
            self.provider.delete_record(challenge.zone, challenge.record_id)
        except DnsProviderError as exc:
            raise provider_error(exc) from exc
        cleaned = replace(challenge, cleaned_up=True, cleaned_at=datetime.now(UTC))
        log.info("Removed DNS-01 record %s (id=%s)", challenge.record_name, challenge.record_id)
        self._dispatch("challenge.cleaned_up", cleaned)
        return cleaned
