"""Operator-facing entry points.

Operators never advance a request themselves: they create requests and
set flags, and the :class:`~acmesync.reconciler.scheduler.Scheduler`
does the work on its next tick.  :meth:`Controller.delete` additionally
interrupts in-flight challenge polling immediately.

Usage::

    controller = Controller(store, registry, scheduler)
    request, created = controller.create(
        "letsencrypt-staging", ["*.example.com"], "wildcard-tls", ["production", "staging"]
    )
    controller.delete(request.id)
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from typing import TYPE_CHECKING

from acmesync.core.domains import in_zone, normalize_domains
from acmesync.core.state import TERMINAL_STATES
from acmesync.core.types import RequestState, RevocationReason
from acmesync.models.certificate_request import CertificateRequest

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from acmesync.issuers.registry import IssuerRegistry
    from acmesync.reconciler.scheduler import Scheduler
    from acmesync.repositories.base import RequestStore

log = logging.getLogger(__name__)

audit_log = logging.getLogger("acmesync.audit")

_S = RequestState


class RequestNotFoundError(LookupError):
    def __init__(self, request_id: UUID) -> None:
        self.request_id = request_id
        super().__init__(f"Certificate request {request_id} not found")


class InvalidOperationError(ValueError):
    """The operation does not apply to the request in its current state."""


class Controller:
    """Create, inspect and flag certificate requests.

    Parameters
    ----------
    store:
        Request store shared with the scheduler.
    registry:
        Configured issuers, used to validate new requests.
    scheduler:
        Optional running scheduler; woken after every change.  The CLI
        works against the database without one.

    """

    def __init__(
        self,
        store: RequestStore,
        registry: IssuerRegistry | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.store = store
        self.registry = registry
        self.scheduler = scheduler

    def _wake(self) -> None:
        if self.scheduler is not None:
            self.scheduler.wake()

    def _require(self, request_id: UUID) -> CertificateRequest:
        request = self.store.find_request(request_id)
        if request is None:
            raise RequestNotFoundError(request_id)
        return request

    def create(
        self,
        issuer_name: str,
        domains: Iterable[str],
        secret_name: str,
        namespaces: Iterable[str],
    ) -> tuple[CertificateRequest, bool]:
        """Create a request, or return the active one for the same certificate.

        Raises
        ------
        InvalidOperationError
            Unknown issuer, domain outside its zone, or no namespaces.
        ValueError
            A domain name is malformed.

        """
        normalized = normalize_domains(domains)
        targets = tuple(dict.fromkeys(ns.strip() for ns in namespaces if ns.strip()))
        if not targets:
            msg = "At least one target namespace is required"
            raise InvalidOperationError(msg)
        if not secret_name:
            msg = "secret_name is required"
            raise InvalidOperationError(msg)
        if self.registry is not None:
            if issuer_name not in self.registry:
                msg = f"Unknown issuer '{issuer_name}'"
                raise InvalidOperationError(msg)
            zone = self.registry.get(issuer_name).issuer.zone
            outside = [d for d in normalized if not in_zone(d, zone)]
            if outside:
                msg = f"Domains {outside} are outside zone '{zone}' of issuer '{issuer_name}'"
                raise InvalidOperationError(msg)

        request, created = self.store.create_if_absent(
            CertificateRequest(
                id=uuid.uuid4(),
                issuer_name=issuer_name,
                domains=normalized,
                secret_name=secret_name,
                namespaces=targets,
            ),
        )
        if created:
            audit_log.info(
                "request created",
                extra={"request_id": str(request.id), "issuer": issuer_name, "action": "create"},
            )
            self._wake()
        else:
            log.info("Coalesced create for %s into request %s", ", ".join(normalized), request.id)
        return request, created

    def get(self, request_id: UUID) -> CertificateRequest:
        return self._require(request_id)

    def list(self, states: Iterable[RequestState] | None = None) -> list[CertificateRequest]:
        return self.store.list_requests(states)

    def delete(self, request_id: UUID) -> CertificateRequest:
        """Flag *request_id* for deletion and cancel its in-flight work."""
        request = self._require(request_id)
        if request.state is _S.DELETED:
            return request
        flagged = self.store.set_flags(request_id, deletion_requested=True) or request
        if self.scheduler is not None:
            self.scheduler.cancel(request_id)
        audit_log.info(
            "deletion requested",
            extra={"request_id": str(request_id), "issuer": request.issuer_name, "action": "delete"},
        )
        self._wake()
        return flagged

    def revoke(
        self,
        request_id: UUID,
        reason: RevocationReason | str = RevocationReason.UNSPECIFIED,
    ) -> CertificateRequest:
        """Flag the served certificate of *request_id* for revocation."""
        request = self._require(request_id)
        reason = RevocationReason(reason)
        if request.state in (_S.REVOKED, _S.DELETED):
            msg = f"Request {request_id} is already {request.state.value}"
            raise InvalidOperationError(msg)
        if request.bundle is None:
            msg = f"Request {request_id} has no issued certificate to revoke"
            raise InvalidOperationError(msg)
        flagged = self.store.set_flags(
            request_id,
            revocation_requested=True,
            revocation_reason=reason.value,
        )
        if self.scheduler is not None:
            self.scheduler.cancel(request_id)
        audit_log.info(
            "revocation requested",
            extra={
                "request_id": str(request_id),
                "issuer": request.issuer_name,
                "action": "revoke",
                "reason": reason.value,
            },
        )
        self._wake()
        return flagged or request

    def retry(self, request_id: UUID) -> CertificateRequest:
        """Re-trigger a failed request, or force renewal of an issued one."""
        request = self._require(request_id)
        if request.state not in (_S.FAILED, _S.ISSUED):
            msg = (
                f"Request {request_id} is {request.state.value}; only failed or "
                "issued requests can be re-triggered"
            )
            raise InvalidOperationError(msg)
        if request.state is _S.FAILED:
            other = self.store.find_active(request.issuer_name, request.dedup_key)
            if other is not None:
                msg = f"Request {other.id} is already active for the same certificate"
                raise InvalidOperationError(msg)
        flagged = self.store.set_flags(request_id, retrigger_requested=True)
        audit_log.info(
            "re-trigger requested",
            extra={"request_id": str(request_id), "issuer": request.issuer_name, "action": "retry"},
        )
        self._wake()
        return flagged or request

    def status(self) -> dict:
        """Request counts per state plus issuer token availability."""
        requests = self.store.list_requests()
        by_state = Counter(r.state.value for r in requests)
        summary: dict = {
            "requests": {state.value: by_state.get(state.value, 0) for state in RequestState},
            "active": sum(1 for r in requests if r.state not in TERMINAL_STATES),
        }
        if self.registry is not None:
            summary["issuers"] = {
                handle.name: {
                    "environment": handle.issuer.environment.value,
                    "zone": handle.issuer.zone,
                    "tokens_available": round(handle.bucket.available, 2),
                }
                for handle in self.registry
            }
        if self.scheduler is not None:
            last = self.scheduler.last_tick_at
            summary["last_tick_at"] = last.isoformat() if last else None
        return summary
