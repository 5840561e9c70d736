"""Certificate request store interface.

Two implementations share this contract:
:class:`~acmesync.repositories.memory.InMemoryRequestStore` and the
PostgreSQL-backed
:class:`~acmesync.repositories.certificate_request.CertificateRequestRepository`.

Guarantees
----------
- :meth:`RequestStore.create_if_absent` is create-or-coalesce: at most
  one non-terminal request exists per ``(issuer_name, dedup_key)``,
  even under concurrent callers.
- :meth:`RequestStore.persist` never writes :data:`OPERATOR_FIELDS`;
  those change only through :meth:`RequestStore.set_flags`, so an
  operator flag set while a worker holds a request is never lost.
- :meth:`RequestStore.persist` with ``expected_state`` is a
  compare-and-swap; it returns ``None`` when the stored state moved on.
- The one-active-request rule also binds :meth:`RequestStore.persist`:
  moving a terminal request back to an active state raises
  :class:`DuplicateActiveRequestError` while another request is active
  for the same key.
"""

from __future__ import annotations

import abc
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from acmesync.core.types import RequestState
    from acmesync.models.certificate_request import CertificateRequest


OPERATOR_FIELDS: frozenset[str] = frozenset(
    {
        "namespaces",
        "deletion_requested",
        "revocation_requested",
        "revocation_reason",
        "retrigger_requested",
    }
)


class DuplicateActiveRequestError(Exception):
    """Another request is already active for the same issuer and domain set."""

    def __init__(self, issuer_name: str, dedup_key: str) -> None:
        self.issuer_name = issuer_name
        self.dedup_key = dedup_key
        super().__init__(
            f"Another request is already active for issuer {issuer_name!r} (key {dedup_key})",
        )


class RequestStore(abc.ABC):
    @abc.abstractmethod
    def create_if_absent(self, request: CertificateRequest) -> tuple[CertificateRequest, bool]:
        """Insert *request* unless an active duplicate exists.

        Returns ``(stored, created)``; when a duplicate exists *stored*
        is the existing request and *created* is ``False``.
        """

    @abc.abstractmethod
    def find_request(self, request_id: UUID) -> CertificateRequest | None: ...

    @abc.abstractmethod
    def find_active(self, issuer_name: str, dedup_key: str) -> CertificateRequest | None:
        """Return the non-terminal request for this certificate, if any."""

    @abc.abstractmethod
    def list_requests(self, states: Iterable[RequestState] | None = None) -> list[CertificateRequest]:
        """All requests (optionally only those in *states*), oldest first."""

    @abc.abstractmethod
    def persist(
        self,
        request: CertificateRequest,
        *,
        expected_state: RequestState | None = None,
    ) -> CertificateRequest | None:
        """Persist *request*, optionally only if the stored state matches."""

    @abc.abstractmethod
    def set_flags(self, request_id: UUID, **changes: object) -> CertificateRequest | None:
        """Update operator-owned fields only (see :data:`OPERATOR_FIELDS`).

        Returns the stored request, or ``None`` if it does not exist.
        """


def check_operator_fields(changes: dict) -> None:
    unknown = set(changes) - OPERATOR_FIELDS
    if unknown:
        msg = f"Not operator-owned fields: {sorted(unknown)}"
        raise ValueError(msg)
