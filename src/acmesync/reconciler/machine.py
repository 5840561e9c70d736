"""Certificate request state machine driver.

:class:`RequestMachine` performs the work behind every state of a
:class:`~acmesync.models.certificate_request.CertificateRequest`:

``pending`` / ``renewing``
    Take an issuer token, open an ACME order.
``validating``
    Solve one DNS-01 challenge per domain inside a
    :class:`~acmesync.challenge.ledger.ChallengeLedger`; every published
    record is removed when the step ends, whatever the outcome.
``issuing``
    Finalize and download inside a wall-clock window.
``issued``
    Fan the bundle out to every target namespace and schedule renewal.

Every state change goes through :meth:`RequestMachine.transition`, which
checks the transition table, appends to the attempt history, persists
with a compare-and-swap on the previous state, and emits the transition
event (log record, hook, metric).
"""

from __future__ import annotations

import logging
import random
import threading
import time
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from acmesync.acme.keys import build_csr, generate_private_key, parse_bundle, private_key_pem
from acmesync.challenge.ledger import ChallengeLedger
from acmesync.core.backoff import full_jitter
from acmesync.core.errors import (
    ACMEIssuanceTimeout,
    ACMERateLimited,
    DistributionFailed,
    IssuerUnavailable,
    ReconcileError,
    RequestCancelled,
    TransientError,
)
from acmesync.core.state import assert_transition
from acmesync.core.types import ErrorKind, RequestState, RevocationReason
from acmesync.distribution.distributor import DistributionTarget
from acmesync.logging.setup import log_transition
from acmesync.models.certificate_request import MAX_ATTEMPTS_KEPT, Attempt
from acmesync.repositories.base import DuplicateActiveRequestError

if TYPE_CHECKING:
    from collections.abc import Callable
    from uuid import UUID

    from acmesync.acme.base import AcmeOrder
    from acmesync.config.settings import ControllerSettings
    from acmesync.distribution.distributor import Distributor
    from acmesync.hooks.registry import HookRegistry
    from acmesync.issuers.registry import IssuerHandle, IssuerRegistry
    from acmesync.metrics.collector import MetricsCollector
    from acmesync.models.certificate_request import CertificateRequest
    from acmesync.repositories.base import RequestStore

log = logging.getLogger(__name__)

_S = RequestState


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StaleRequestError(Exception):
    """The stored request left the state this worker read it in."""

    def __init__(self, request_id: UUID, expected: RequestState) -> None:
        self.request_id = request_id
        self.expected = expected
        super().__init__(f"Request {request_id} is no longer in state {expected.value!r}")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry, backoff and renewal timing."""

    max_retries: int = 5
    backoff_base: float = 30.0
    backoff_max: float = 3600.0
    rate_limit_cooldown: float = 3600.0
    issuance_timeout: float = 600.0
    issuance_poll: float = 10.0
    renew_before: timedelta = timedelta(days=15)

    @classmethod
    def from_settings(cls, settings: ControllerSettings) -> RetryPolicy:
        return cls(
            max_retries=settings.max_retries,
            backoff_base=settings.backoff_base_seconds,
            backoff_max=settings.backoff_max_seconds,
            rate_limit_cooldown=settings.rate_limit_cooldown_seconds,
            issuance_timeout=settings.issuance_timeout_seconds,
            issuance_poll=settings.issuance_poll_seconds,
            renew_before=timedelta(days=settings.renew_before_days),
        )


def renewal_time(not_before: datetime, not_after: datetime, renew_before: timedelta) -> datetime:
    """``not_after - renew_before``, or two thirds into the lifetime for short certificates."""
    lifetime = not_after - not_before
    if renew_before >= lifetime:
        return not_before + lifetime * 2 / 3
    return not_after - renew_before


class RequestMachine:
    """Advances certificate requests through their lifecycle.

    Parameters
    ----------
    store:
        Request store; all writes go through it.
    registry:
        Configured issuers.
    distributor:
        Secret fan-out.
    policy:
        Retry and renewal timing.
    hooks, metrics:
        Optional observers of transitions.

    """

    def __init__(  # noqa: PLR0913
        self,
        store: RequestStore,
        registry: IssuerRegistry,
        distributor: Distributor,
        *,
        policy: RetryPolicy | None = None,
        hooks: HookRegistry | None = None,
        metrics: MetricsCollector | None = None,
        now: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.distributor = distributor
        self.policy = policy or RetryPolicy()
        self._hooks = hooks
        self._metrics = metrics
        self._now = now
        self._monotonic = monotonic
        self._rng = rng

    # -- observers -------------------------------------------------------------

    def _dispatch(self, event: str, context: dict) -> None:
        if self._hooks is not None:
            self._hooks.dispatch(event, context)

    def _count(self, name: str, labels: dict | None = None) -> None:
        if self._metrics is not None:
            self._metrics.increment(name, labels=labels)

    # -- transitions -----------------------------------------------------------

    def transition(
        self,
        request: CertificateRequest,
        target: RequestState,
        *,
        error: ReconcileError | None = None,
        **changes: object,
    ) -> CertificateRequest:
        """Move *request* to *target* and persist it.

        Raises
        ------
        ValueError
            The transition is not allowed.
        StaleRequestError
            The stored request is no longer in ``request.state``.

        """
        assert_transition(request.state, target)
        now = self._now()
        error_data = None
        if error is not None:
            error_data = {**error.to_dict(), "at": now.isoformat()}
            changes["last_error"] = error_data
        attempt = Attempt(
            from_state=request.state,
            to_state=target,
            at=now,
            code=error.code.value if error else None,
            kind=error.kind.value if error else None,
            detail=error.detail if error else None,
        )
        updated = replace(
            request,
            state=target,
            attempts=(*request.attempts, attempt)[-MAX_ATTEMPTS_KEPT:],
            **changes,
        )
        stored = self.store.persist(updated, expected_state=request.state)
        if stored is None:
            raise StaleRequestError(request.id, request.state)

        log_transition(
            str(request.id),
            request.issuer_name,
            request.state.value,
            target.value,
            error_data,
        )
        self._dispatch(
            "request.transition",
            {
                "request_id": str(request.id),
                "issuer": request.issuer_name,
                "domains": list(request.domains),
                "from_state": request.state.value,
                "to_state": target.value,
                "error": error_data,
            },
        )
        self._count(
            "acmesync_transitions_total",
            {"from": request.state.value, "to": target.value},
        )
        return stored

    def defer(self, request: CertificateRequest, seconds: float) -> CertificateRequest:
        """Push ``next_attempt_at`` out by *seconds* without changing state."""
        next_at = self._now() + timedelta(seconds=seconds)
        log.info("Request %s deferred until %s", request.id, next_at.isoformat())
        stored = self.store.persist(
            replace(request, next_attempt_at=next_at),
            expected_state=request.state,
        )
        return stored or request

    def fail(self, request: CertificateRequest, exc: ReconcileError) -> CertificateRequest:
        """Apply the retry policy for *exc* to *request*.

        Permanent errors fail the request.  Rate limits go back to the
        ready state after a cooldown that does not count against
        ``max_retries``.  Transient errors retry with full-jitter backoff
        until ``max_retries`` is exhausted.
        """
        self._count("acmesync_errors_total", {"code": exc.code.value})
        retry_state = _S.RENEWING if request.bundle is not None else _S.PENDING
        if request.state in (_S.PENDING, _S.RENEWING) and exc.kind is not ErrorKind.PERMANENT:
            return self.defer(request, exc.retry_after or self.policy.backoff_base)

        if exc.kind is ErrorKind.PERMANENT:
            log.error("Request %s failed: %s (%s)", request.id, exc.detail, exc.code)  # noqa: TRY400
            return self.transition(request, _S.FAILED, error=exc)

        now = self._now()
        if exc.kind is ErrorKind.RATE_LIMITED:
            cooldown = max(exc.retry_after or 0.0, self.policy.rate_limit_cooldown)
            if request.issuer_name in self.registry:
                self.registry.get(request.issuer_name).bucket.penalize(cooldown)
            return self.transition(
                request,
                retry_state,
                error=exc,
                next_attempt_at=now + timedelta(seconds=cooldown),
            )

        retry_count = request.retry_count + 1
        if retry_count > self.policy.max_retries:
            log.error(
                "Request %s failed after %d retries: %s",
                request.id,
                request.retry_count,
                exc.detail,
            )
            return self.transition(request, _S.FAILED, error=exc, retry_count=retry_count)

        delay = full_jitter(
            retry_count,
            self.policy.backoff_base,
            self.policy.backoff_max,
            rng=self._rng,
        )
        log.warning(
            "Request %s: %s; retry %d/%d in %.0fs",
            request.id,
            exc.detail,
            retry_count,
            self.policy.max_retries,
            delay,
        )
        return self.transition(
            request,
            retry_state,
            error=exc,
            retry_count=retry_count,
            next_attempt_at=now + timedelta(seconds=delay),
        )

    # -- the pipeline ----------------------------------------------------------

    def run(
        self,
        request: CertificateRequest,
        cancel: threading.Event | None = None,
    ) -> CertificateRequest:
        """Take a ready request through validation and issuance.

        Returns the request as stored at the end.  A cancelled run
        leaves the request where it was; the scheduler then applies the
        operator flag that caused the cancellation.
        """
        cancel = cancel or threading.Event()
        if request.state not in (_S.PENDING, _S.RENEWING):
            msg = f"Request {request.id} is {request.state.value}, not ready"
            raise ValueError(msg)

        try:
            handle = self.registry.get(request.issuer_name)
        except IssuerUnavailable as exc:
            return self.fail(request, exc)

        try:
            handle.bucket.acquire()
        except ACMERateLimited as exc:
            return self.defer(request, exc.retry_after or self.policy.backoff_base)

        current = self.transition(request, _S.VALIDATING, next_attempt_at=None)
        try:
            key = generate_private_key(handle.issuer.key_type)
            current, order = self._validate(current, handle, cancel)
            current = self.transition(current, _S.ISSUING, last_validated_at=self._now())
            cert_pem = self._finalize(current, order, key, cancel)
        except RequestCancelled:
            log.info("Request %s cancelled in state %s", current.id, current.state.value)
            return self.store.find_request(current.id) or current
        except ReconcileError as exc:
            return self.fail(self._reload(current), exc)
        except StaleRequestError:
            raise
        except Exception as exc:  # noqa: BLE001
            log.exception("Unexpected error while reconciling request %s", current.id)
            return self.fail(self._reload(current), TransientError(f"Unexpected error: {exc}"))

        return self._complete(current, handle, cert_pem, private_key_pem(key))

    def _validate(
        self,
        request: CertificateRequest,
        handle: IssuerHandle,
        cancel: threading.Event,
    ) -> tuple[CertificateRequest, AcmeOrder]:
        ledger = ChallengeLedger(handle.solver, cancel=cancel)
        try:
            with ledger:
                order = handle.backend.new_order(request.domains)
                order.authorize(ledger.solve)
        finally:
            if ledger.orphaned:
                orphaned = replace(
                    request,
                    orphaned_records=(*request.orphaned_records, *ledger.orphaned),
                )
                request = self.store.persist(orphaned, expected_state=request.state) or orphaned
        log.info(
            "Request %s: %d challenge(s) validated for %s",
            request.id,
            len(ledger.challenges),
            ", ".join(request.domains),
        )
        return request, order

    def _reload(self, request: CertificateRequest) -> CertificateRequest:
        # Picks up orphaned records saved while the step was failing.
        stored = self.store.find_request(request.id)
        if stored is not None and stored.state is request.state:
            return stored
        return request

    def _finalize(
        self,
        request: CertificateRequest,
        order: AcmeOrder,
        key: object,
        cancel: threading.Event,
    ) -> str:
        csr = build_csr(key, request.domains)
        timeout = self.policy.issuance_timeout
        deadline = self._monotonic() + timeout
        finalized = False
        attempt = 0
        while True:
            if cancel.is_set():
                msg = "Cancelled during issuance"
                raise RequestCancelled(msg)
            try:
                if not finalized:
                    order.finalize(csr)
                    finalized = True
                return order.certificate()
            except ReconcileError as exc:
                if not exc.retryable:
                    raise
                attempt += 1
                remaining = deadline - self._monotonic()
                if remaining <= 0:
                    msg = f"Certificate not issued within {timeout:g}s; last error: {exc.detail}"
                    raise ACMEIssuanceTimeout(msg) from exc
                if exc.kind is ErrorKind.RATE_LIMITED and exc.retry_after is not None:
                    if exc.retry_after > remaining:
                        msg = (
                            f"Certificate not issued within {timeout:g}s; issuer asked to "
                            f"retry in {exc.retry_after:g}s: {exc.detail}"
                        )
                        raise ACMEIssuanceTimeout(msg) from exc
                    wait = exc.retry_after
                else:
                    # The last attempt lands on the deadline itself.
                    wait = min(
                        full_jitter(
                            attempt,
                            self.policy.issuance_poll,
                            self.policy.backoff_max,
                            rng=self._rng,
                        ),
                        remaining,
                    )
                log.warning(
                    "Request %s: issuance attempt %d: %s; retrying in %.1fs",
                    request.id,
                    attempt,
                    exc.detail,
                    wait,
                )
                if cancel.wait(wait):
                    msg = "Cancelled during issuance backoff"
                    raise RequestCancelled(msg) from exc

    def _complete(
        self,
        request: CertificateRequest,
        handle: IssuerHandle,
        cert_pem: str,
        key_pem: str,
    ) -> CertificateRequest:
        renewal = request.bundle is not None
        bundle = parse_bundle(cert_pem, key_pem)
        issued = self.transition(
            request,
            _S.ISSUED,
            bundle=bundle,
            expires_at=bundle.not_after,
            renew_at=renewal_time(bundle.not_before, bundle.not_after, self.policy.renew_before),
            retry_count=0,
            last_error=None,
            next_attempt_at=None,
        )
        self._count("acmesync_certificates_issued_total", {"issuer": handle.name})
        self._dispatch(
            "certificate.issued",
            {
                "request_id": str(issued.id),
                "issuer": handle.name,
                "domains": list(issued.domains),
                "serial_number": bundle.serial_number,
                "not_after": bundle.not_after.isoformat(),
                "renewal": renewal,
            },
        )
        return self.distribute(issued)

    # -- distribution ----------------------------------------------------------

    def distribute(self, request: CertificateRequest) -> CertificateRequest:
        """Bring every namespace copy in line with the current bundle.

        Failed namespaces are recorded and retried on the next pass; the
        request stays ``issued``.
        """
        if request.bundle is None:
            return request
        result = self.distributor.distribute(DistributionTarget.from_request(request))
        failed = tuple(sorted(result.failed))
        if result.failed:
            self._count(
                "acmesync_distribution_failures_total",
                {"secret": request.secret_name},
            )
            self._dispatch(
                "distribution.partial",
                {
                    "request_id": str(request.id),
                    "secret_name": request.secret_name,
                    "failed": dict(result.failed),
                },
            )

        def _copies(items: tuple) -> set:
            return {(c.namespace, c.secret_name, c.content_hash) for c in items}

        if (
            not result.written
            and not result.removed
            and failed == request.failed_namespaces
            and _copies(result.synced) == _copies(request.distributed)
        ):
            return request
        updated = replace(request, distributed=result.synced, failed_namespaces=failed)
        if failed and failed != request.failed_namespaces:
            error = DistributionFailed(
                "Secret copy failed in " + ", ".join(
                    f"{ns} ({result.failed[ns]})" for ns in failed
                ),
            )
            now = self._now()
            updated = replace(
                updated,
                last_error={**error.to_dict(), "at": now.isoformat()},
                attempts=(
                    *request.attempts,
                    Attempt(
                        from_state=request.state,
                        to_state=request.state,
                        at=now,
                        code=error.code.value,
                        kind=error.kind.value,
                        detail=error.detail,
                    ),
                )[-MAX_ATTEMPTS_KEPT:],
            )
        elif (
            not failed
            and request.last_error
            and request.last_error.get("code") == DistributionFailed.code.value
        ):
            updated = replace(updated, last_error=None)
        stored = self.store.persist(updated, expected_state=request.state)
        return stored or request

    # -- scheduler-driven steps ------------------------------------------------

    def begin_renewal(self, request: CertificateRequest) -> CertificateRequest:
        log.info(
            "Request %s: renewal due (expires %s)",
            request.id,
            request.expires_at.isoformat() if request.expires_at else "?",
        )
        return self.transition(request, _S.RENEWING, next_attempt_at=None, retry_count=0)

    def resume(self, request: CertificateRequest) -> CertificateRequest:
        """Return a request whose worker went away mid-step to its ready state."""
        target = _S.RENEWING if request.bundle is not None else _S.PENDING
        log.warning(
            "Request %s was left in %s by an interrupted worker; resuming as %s",
            request.id,
            request.state.value,
            target.value,
        )
        return self.transition(request, target, next_attempt_at=None)

    def cleanup_orphans(self, request: CertificateRequest) -> CertificateRequest:
        """Retry deletion of challenge records an earlier cleanup could not remove."""
        if not request.orphaned_records:
            return request
        if request.issuer_name not in self.registry:
            log.warning(
                "Request %s has %d orphaned record(s) but issuer %s is gone",
                request.id,
                len(request.orphaned_records),
                request.issuer_name,
            )
            return request
        solver = self.registry.get(request.issuer_name).solver
        remaining = []
        for challenge in request.orphaned_records:
            try:
                solver.cleanup(challenge)
            except ReconcileError as exc:
                log.warning("Orphaned record %s still not removed: %s", challenge.record_name, exc.detail)
                remaining.append(challenge)
        if len(remaining) == len(request.orphaned_records):
            return request
        stored = self.store.persist(
            replace(request, orphaned_records=tuple(remaining)),
            expected_state=request.state,
        )
        return stored or request

    def retrigger(self, request: CertificateRequest) -> CertificateRequest:
        """Operator re-trigger: restart a failed request or force a renewal."""
        self.store.set_flags(request.id, retrigger_requested=False)
        if request.state is _S.ISSUED:
            return self.begin_renewal(request)
        if request.state is not _S.FAILED:
            log.info("Ignoring re-trigger of request %s in state %s", request.id, request.state.value)
            return request
        other = self.store.find_active(request.issuer_name, request.dedup_key)
        if other is not None:
            log.warning(
                "Not re-triggering request %s: request %s is already active for %s",
                request.id,
                other.id,
                ", ".join(request.domains),
            )
            return request
        target = _S.RENEWING if request.bundle is not None else _S.PENDING
        try:
            return self.transition(request, target, retry_count=0, next_attempt_at=None)
        except DuplicateActiveRequestError:
            # A create for the same domains landed after the check above.
            log.warning(
                "Not re-triggering request %s: another request became active for %s",
                request.id,
                ", ".join(request.domains),
            )
            return request

    def revoke(self, request: CertificateRequest) -> CertificateRequest:
        """Revoke the served certificate and move the request to ``revoked``.

        Transient ACME failures leave the flag set for the next pass.
        """
        if request.state in (_S.REVOKED, _S.DELETED):
            self.store.set_flags(request.id, revocation_requested=False)
            return request
        bundle = request.bundle
        if bundle is not None:
            reason = RevocationReason(request.revocation_reason or RevocationReason.UNSPECIFIED)
            try:
                self.registry.get(request.issuer_name).backend.revoke(bundle.cert_pem, reason)
            except ReconcileError as exc:
                if exc.retryable:
                    log.warning("Revocation of request %s deferred: %s", request.id, exc.detail)
                    return request
                log.error("Revocation of request %s rejected: %s", request.id, exc.detail)  # noqa: TRY400
                self.store.set_flags(request.id, revocation_requested=False)
                stored = self.store.persist(
                    replace(request, last_error={**exc.to_dict(), "at": self._now().isoformat()}),
                    expected_state=request.state,
                )
                return stored or request
        revoked = self.transition(request, _S.REVOKED, next_attempt_at=None)
        self.store.set_flags(request.id, revocation_requested=False)
        self._dispatch(
            "certificate.revoked",
            {
                "request_id": str(request.id),
                "issuer": request.issuer_name,
                "serial_number": bundle.serial_number if bundle else None,
            },
        )
        return revoked

    def delete(self, request: CertificateRequest) -> CertificateRequest:
        """Remove every secret copy and orphaned record, then mark ``deleted``.

        Anything that cannot be removed yet keeps the request (and its
        deletion flag) around for the next pass.
        """
        if request.state is _S.DELETED:
            self.store.set_flags(request.id, deletion_requested=False)
            return request
        request = self.cleanup_orphans(request)
        result = self.distributor.remove_all(
            request.secret_name,
            request.namespaces,
            request.distributed,
        )
        if result.failed or request.orphaned_records:
            log.warning(
                "Deletion of request %s incomplete (secrets failed: %s, orphaned records: %d)",
                request.id,
                sorted(result.failed),
                len(request.orphaned_records),
            )
            stored = self.store.persist(
                replace(request, distributed=result.synced),
                expected_state=request.state,
            )
            return stored or request
        deleted = self.transition(
            request,
            _S.DELETED,
            distributed=(),
            failed_namespaces=(),
            next_attempt_at=None,
        )
        self.store.set_flags(request.id, deletion_requested=False)
        return deleted
