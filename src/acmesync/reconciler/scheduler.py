"""Reconciliation loop.

A single daemon thread wakes every ``reconcile_interval_seconds`` and
runs one :meth:`Scheduler.tick`.  Each tick runs these phases in order,
and a failure in one request or phase never stops the others:

1. ``resume``: return requests stranded in ``validating`` / ``issuing``
   (no worker owns them, e.g. after a restart) to their ready state.
2. ``ensure``: create-or-coalesce the certificates declared in config.
3. ``flags``: apply operator delete / revoke / re-trigger flags.
4. ``orphans``: retry deletion of leaked challenge records.
5. ``resync``: re-run distribution for issued requests.
6. ``renewals``: move issued requests past ``renew_at`` to ``renewing``.
7. ``submit``: hand ready requests to their issuer's worker pool.

Requests are worked on in one thread pool per issuer, sized by the
issuer's ``max_concurrent`` (serial within an issuer by default,
parallel across issuers).  The scheduler is the only component that
moves a request out of ``pending`` / ``renewing``.

Usage::

    scheduler = Scheduler(machine, certificates=settings.certificates)
    scheduler.start()
    ...
    scheduler.stop()
"""

from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from acmesync.core.domains import normalize_domains
from acmesync.core.errors import IssuerUnavailable
from acmesync.core.state import ACTIVE_STATES, IN_FLIGHT_STATES, READY_STATES
from acmesync.core.types import RequestState
from acmesync.models.certificate_request import CertificateRequest
from acmesync.reconciler.machine import StaleRequestError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from uuid import UUID

    from acmesync.config.settings import CertificateSettings
    from acmesync.metrics.collector import MetricsCollector
    from acmesync.reconciler.machine import RequestMachine

log = logging.getLogger(__name__)

_S = RequestState


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class _InFlight:
    future: Future
    cancel: threading.Event


class Scheduler:
    """Periodic reconciliation of every stored certificate request.

    Parameters
    ----------
    machine:
        State machine driver (owns the store and issuer registry).
    certificates:
        Declared certificates kept in existence on every tick.
    interval:
        Seconds between ticks.

    """

    def __init__(
        self,
        machine: RequestMachine,
        *,
        certificates: Iterable[CertificateSettings] = (),
        interval: float = 60.0,
        metrics: MetricsCollector | None = None,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.machine = machine
        self.store = machine.store
        self.registry = machine.registry
        self.certificates = tuple(certificates)
        self.interval = interval
        self._metrics = metrics
        self._now = now
        self._executors: dict[str, ThreadPoolExecutor] = {}
        self._in_flight: dict[UUID, _InFlight] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._wake_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_tick_at: datetime | None = None

    # -- lifecycle -------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the reconciliation thread."""
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="acmesync-scheduler", daemon=True)
        self._thread.start()
        log.info(
            "Scheduler started (interval %gs, issuers %s)",
            self.interval,
            self.registry.names,
        )

    def stop(self, timeout: float = 30.0) -> None:
        """Stop ticking, cancel in-flight work and wait up to *timeout* seconds."""
        self._stop_event.set()
        self._wake_event.set()
        with self._lock:
            for entry in self._in_flight.values():
                entry.cancel.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
        for executor in self._executors.values():
            executor.shutdown(wait=True, cancel_futures=True)
        self._executors.clear()
        log.info("Scheduler stopped")

    def wake(self) -> None:
        """Run the next tick now instead of at the end of the interval."""
        self._wake_event.set()

    def cancel(self, request_id: UUID) -> bool:
        """Interrupt the in-flight work of *request_id*, if any."""
        with self._lock:
            entry = self._in_flight.get(request_id)
        if entry is None:
            return False
        entry.cancel.set()
        log.info("Cancelling in-flight work for request %s", request_id)
        return True

    def is_in_flight(self, request_id: UUID) -> bool:
        with self._lock:
            entry = self._in_flight.get(request_id)
        return entry is not None and not entry.future.done()

    def wait_idle(self, timeout: float | None = None) -> None:
        """Block until every submitted request has finished."""
        with self._lock:
            futures = [e.future for e in self._in_flight.values()]
        for future in futures:
            future.exception(timeout=timeout)

    def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                log.exception("Reconciliation tick failed")
            self._wake_event.wait(timeout=self.interval)
            self._wake_event.clear()

    # -- the tick --------------------------------------------------------------

    def tick(self) -> None:
        """Run one full reconciliation pass."""
        self._reap()
        for name, phase in (
            ("resume", self._resume_interrupted),
            ("ensure", self._ensure_declared),
            ("flags", self._apply_flags),
            ("orphans", self._retry_orphans),
            ("resync", self._resync),
            ("renewals", self._flag_renewals),
            ("submit", self._submit_ready),
        ):
            if self._stop_event.is_set():
                return
            try:
                phase()
            except Exception:
                log.exception("Reconciliation phase '%s' failed", name)
                self._count("acmesync_reconcile_errors_total", {"phase": name})
        self.last_tick_at = self._now()
        self._export_gauges()

    def _guarded(self, phase: str, request: CertificateRequest, step: Callable) -> None:
        try:
            step(request)
        except StaleRequestError as exc:
            log.debug("%s: %s", phase, exc)
        except Exception:
            log.exception("%s failed for request %s", phase, request.id)
            self._count("acmesync_reconcile_errors_total", {"phase": phase})

    def _resume_interrupted(self) -> None:
        for request in self.store.list_requests(IN_FLIGHT_STATES):
            if not self.is_in_flight(request.id):
                self._guarded("resume", request, self.machine.resume)

    def _ensure_declared(self) -> None:
        # The newest request per certificate; a failed or revoked one waits
        # for an operator re-trigger instead of being recreated every tick.
        latest: dict[tuple[str, str], CertificateRequest] = {}
        for request in self.store.list_requests():
            if request.state is not _S.DELETED:
                latest[(request.issuer_name, request.dedup_key)] = request

        for cert in self.certificates:
            try:
                desired = CertificateRequest(
                    id=uuid.uuid4(),
                    issuer_name=cert.issuer,
                    domains=normalize_domains(cert.domains),
                    secret_name=cert.secret_name,
                    namespaces=tuple(cert.namespaces),
                )
            except ValueError:
                log.exception("Declared certificate %s is invalid", cert.secret_name)
                continue
            previous = latest.get((desired.issuer_name, desired.dedup_key))
            if previous is not None and previous.state in (_S.FAILED, _S.REVOKED):
                continue
            stored, created = self.store.create_if_absent(desired)
            if created:
                log.info(
                    "Created request %s for declared certificate %s (%s)",
                    stored.id,
                    cert.secret_name,
                    ", ".join(stored.domains),
                )
            elif (
                stored.secret_name == cert.secret_name
                and stored.namespaces != desired.namespaces
            ):
                log.info(
                    "Declared namespaces of %s changed: %s -> %s",
                    cert.secret_name,
                    list(stored.namespaces),
                    list(desired.namespaces),
                )
                self.store.set_flags(stored.id, namespaces=desired.namespaces)

    def _apply_flags(self) -> None:
        for request in self.store.list_requests():
            if not (
                request.deletion_requested
                or request.revocation_requested
                or request.retrigger_requested
            ):
                continue
            if request.deletion_requested or request.revocation_requested:
                # In-flight work must observe the cancellation and finish first.
                self.cancel(request.id)
            if self.is_in_flight(request.id):
                continue
            if request.revocation_requested:
                self._guarded("revoke", request, self.machine.revoke)
                request = self.store.find_request(request.id) or request
            if request.deletion_requested:
                self._guarded("delete", request, self.machine.delete)
            elif request.retrigger_requested:
                self._guarded("retrigger", request, self.machine.retrigger)

    def _retry_orphans(self) -> None:
        for request in self.store.list_requests():
            if request.orphaned_records and not self.is_in_flight(request.id):
                self._guarded("orphans", request, self.machine.cleanup_orphans)

    def _resync(self) -> None:
        for request in self.store.list_requests([_S.ISSUED]):
            self._guarded("distribute", request, self.machine.distribute)

    def _flag_renewals(self) -> None:
        now = self._now()
        for request in self.store.list_requests([_S.ISSUED]):
            if request.renew_at is not None and request.renew_at <= now:
                self._guarded("renewal", request, self.machine.begin_renewal)

    def _submit_ready(self) -> None:
        now = self._now()
        for request in self.store.list_requests(READY_STATES):
            if request.deletion_requested or request.revocation_requested:
                continue
            if request.next_attempt_at is not None and request.next_attempt_at > now:
                continue
            if self.is_in_flight(request.id):
                continue
            if request.issuer_name not in self.registry:
                self._guarded(
                    "submit",
                    request,
                    lambda r: self.machine.fail(
                        r,
                        IssuerUnavailable(f"Issuer '{r.issuer_name}' is not configured"),
                    ),
                )
                continue
            handle = self.registry.get(request.issuer_name)
            if handle.bucket.seconds_until_available() > 0:
                log.debug("Issuer %s has no token for request %s yet", handle.name, request.id)
                continue
            self._submit(request, handle.issuer.max_concurrent)

    def _submit(self, request: CertificateRequest, max_workers: int) -> None:
        executor = self._executors.get(request.issuer_name)
        if executor is None:
            executor = ThreadPoolExecutor(
                max_workers=max_workers,
                thread_name_prefix=f"acmesync-{request.issuer_name}",
            )
            self._executors[request.issuer_name] = executor
        cancel = threading.Event()
        future = executor.submit(self._work, request, cancel)
        with self._lock:
            self._in_flight[request.id] = _InFlight(future=future, cancel=cancel)
        log.debug("Submitted request %s to issuer %s", request.id, request.issuer_name)

    def _work(self, request: CertificateRequest, cancel: threading.Event) -> None:
        if cancel.is_set():
            return
        current = self.store.find_request(request.id)
        if current is None or current.state not in READY_STATES:
            return
        try:
            self.machine.run(current, cancel)
        except StaleRequestError as exc:
            log.info("Request %s changed underneath the worker: %s", request.id, exc)
        except Exception:
            log.exception("Worker failed on request %s", request.id)
            self._count("acmesync_reconcile_errors_total", {"phase": "worker"})
        finally:
            self.wake()

    def _reap(self) -> None:
        with self._lock:
            done = [rid for rid, e in self._in_flight.items() if e.future.done()]
            for rid in done:
                del self._in_flight[rid]

    # -- metrics ---------------------------------------------------------------

    def _count(self, name: str, labels: dict | None = None) -> None:
        if self._metrics is not None:
            self._metrics.increment(name, labels=labels)

    def _export_gauges(self) -> None:
        if self._metrics is None:
            return
        counts = dict.fromkeys(RequestState, 0)
        for request in self.store.list_requests():
            counts[request.state] += 1
        for state, count in counts.items():
            self._metrics.set_gauge("acmesync_requests", count, {"state": state.value})
        with self._lock:
            in_flight = sum(1 for e in self._in_flight.values() if not e.future.done())
        self._metrics.set_gauge("acmesync_requests_in_flight", in_flight)

    def active_requests(self) -> list[CertificateRequest]:
        return self.store.list_requests(ACTIVE_STATES)
