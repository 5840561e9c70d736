"""Fan-out of issued certificates into namespaces.

The distributor works on a :class:`DistributionTarget` snapshot taken
from a request; it never sees or mutates the request itself.  For each
target namespace it compares the stored content hash with the bundle's
and writes only on mismatch, so re-running with an unchanged bundle
performs zero writes.

A failing namespace never blocks the others: the result lists it under
:attr:`DistributionResult.failed` and the scheduler retries it on the
next tick.  Namespaces that dropped out of the target set have their
copy removed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from acmesync.distribution.base import SecretStoreError
from acmesync.models.distributed_secret import DistributedSecret

if TYPE_CHECKING:
    from uuid import UUID

    from acmesync.distribution.base import SecretStore
    from acmesync.models.certificate_request import CertificateRequest

log = logging.getLogger(__name__)


def _failure_detail(exc: Exception, what: str, *args: object) -> str:
    """Log one namespace's failure and return the detail recorded for it.

    Store errors are expected and logged as warnings; anything else is
    a bug or an unwrapped client error and keeps its traceback.
    """
    if isinstance(exc, SecretStoreError):
        log.warning(what + " failed: %s", *args, exc.detail)
        return exc.detail
    log.exception(what + " failed unexpectedly", *args)
    return f"{type(exc).__name__}: {exc}"


@dataclass(frozen=True)
class DistributionTarget:
    """Immutable copy of what a request wants distributed."""

    request_id: UUID
    secret_name: str
    namespaces: tuple[str, ...]
    cert_pem: str
    key_pem: str
    content_hash: str
    previous: tuple[DistributedSecret, ...] = ()

    @classmethod
    def from_request(cls, request: CertificateRequest) -> DistributionTarget:
        if request.bundle is None:
            msg = f"Request {request.id} has no issued bundle to distribute"
            raise ValueError(msg)
        return cls(
            request_id=request.id,
            secret_name=request.secret_name,
            namespaces=tuple(request.namespaces),
            cert_pem=request.bundle.cert_pem,
            key_pem=request.bundle.key_pem,
            content_hash=request.bundle.content_hash,
            previous=tuple(request.distributed),
        )


@dataclass(frozen=True)
class DistributionResult:
    """Outcome of one distribution pass.

    ``synced`` is the new ``distributed`` list for the request: every
    copy known to exist after the pass, including stale copies whose
    removal failed (they are retried next time).
    """

    synced: tuple[DistributedSecret, ...] = ()
    written: tuple[str, ...] = ()
    unchanged: tuple[str, ...] = ()
    removed: tuple[str, ...] = ()
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return not self.failed


class Distributor:
    """Writes certificate copies through a :class:`SecretStore`."""

    def __init__(self, store: SecretStore) -> None:
        self.store = store

    def distribute(self, target: DistributionTarget) -> DistributionResult:
        now = datetime.now(UTC)
        synced: list[DistributedSecret] = []
        written: list[str] = []
        unchanged: list[str] = []
        removed: list[str] = []
        failed: dict[str, str] = {}

        for namespace in target.namespaces:
            try:
                current = self.store.read_hash(namespace, target.secret_name)
                if current == target.content_hash:
                    unchanged.append(namespace)
                else:
                    self.store.write(
                        namespace,
                        target.secret_name,
                        cert_pem=target.cert_pem,
                        key_pem=target.key_pem,
                        content_hash=target.content_hash,
                        request_id=str(target.request_id),
                    )
                    written.append(namespace)
            except Exception as exc:  # noqa: BLE001
                failed[namespace] = _failure_detail(
                    exc, "Distribution of %s to namespace %s", target.secret_name, namespace,
                )
                continue
            synced.append(
                DistributedSecret(
                    request_id=target.request_id,
                    namespace=namespace,
                    secret_name=target.secret_name,
                    content_hash=target.content_hash,
                    last_synced_at=now,
                ),
            )

        wanted = {(ns, target.secret_name) for ns in target.namespaces}
        for copy in target.previous:
            if (copy.namespace, copy.secret_name) in wanted:
                continue
            try:
                self.store.delete(copy.namespace, copy.secret_name)
            except Exception as exc:  # noqa: BLE001
                failed[copy.namespace] = _failure_detail(
                    exc, "Removal of stale secret %s/%s", copy.namespace, copy.secret_name,
                )
                synced.append(copy)
                continue
            removed.append(copy.namespace)

        result = DistributionResult(
            synced=tuple(synced),
            written=tuple(written),
            unchanged=tuple(unchanged),
            removed=tuple(removed),
            failed=failed,
        )
        log.info(
            "Distributed %s: written=%s unchanged=%s removed=%s failed=%s",
            target.secret_name,
            list(written),
            list(unchanged),
            list(removed),
            sorted(failed),
        )
        return result

    def remove_all(
        self,
        secret_name: str,
        namespaces: tuple[str, ...],
        previous: tuple[DistributedSecret, ...] = (),
    ) -> DistributionResult:
        """Delete every copy of a request's secret.

        Copies whose deletion failed stay in ``synced`` for a retry.
        """
        targets = {(ns, secret_name) for ns in namespaces}
        targets.update((c.namespace, c.secret_name) for c in previous)
        by_key = {(c.namespace, c.secret_name): c for c in previous}

        removed: list[str] = []
        failed: dict[str, str] = {}
        remaining: list[DistributedSecret] = []
        for namespace, name in sorted(targets):
            try:
                self.store.delete(namespace, name)
            except Exception as exc:  # noqa: BLE001
                failed[namespace] = _failure_detail(
                    exc, "Removal of secret %s/%s", namespace, name,
                )
                if (namespace, name) in by_key:
                    remaining.append(by_key[(namespace, name)])
                continue
            removed.append(namespace)
        return DistributionResult(synced=tuple(remaining), removed=tuple(removed), failed=failed)
