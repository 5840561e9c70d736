"""In-process request store (``storage.backend: memory``)."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from acmesync.core.state import TERMINAL_STATES
from acmesync.repositories.base import (
    OPERATOR_FIELDS,
    DuplicateActiveRequestError,
    RequestStore,
    check_operator_fields,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

    from acmesync.core.types import RequestState
    from acmesync.models.certificate_request import CertificateRequest


class InMemoryRequestStore(RequestStore):
    """Lock-protected dict of requests keyed by id."""

    def __init__(self) -> None:
        self._requests: dict[UUID, CertificateRequest] = {}
        self._lock = threading.Lock()

    def _find_active_locked(
        self,
        issuer_name: str,
        dedup_key: str,
        exclude: UUID | None = None,
    ) -> CertificateRequest | None:
        for req in self._requests.values():
            if (
                req.id != exclude
                and req.issuer_name == issuer_name
                and req.dedup_key == dedup_key
                and req.state not in TERMINAL_STATES
            ):
                return req
        return None

    def create_if_absent(self, request: CertificateRequest) -> tuple[CertificateRequest, bool]:
        with self._lock:
            existing = self._find_active_locked(request.issuer_name, request.dedup_key)
            if existing is not None:
                return existing, False
            now = datetime.now(UTC)
            stored = replace(request, created_at=now, updated_at=now)
            self._requests[stored.id] = stored
            return stored, True

    def find_request(self, request_id: UUID) -> CertificateRequest | None:
        with self._lock:
            return self._requests.get(request_id)

    def find_active(self, issuer_name: str, dedup_key: str) -> CertificateRequest | None:
        with self._lock:
            return self._find_active_locked(issuer_name, dedup_key)

    def list_requests(self, states: Iterable[RequestState] | None = None) -> list[CertificateRequest]:
        wanted = frozenset(states) if states is not None else None
        with self._lock:
            found = [r for r in self._requests.values() if wanted is None or r.state in wanted]
        return sorted(found, key=lambda r: r.created_at)

    def persist(
        self,
        request: CertificateRequest,
        *,
        expected_state: RequestState | None = None,
    ) -> CertificateRequest | None:
        with self._lock:
            current = self._requests.get(request.id)
            if current is None:
                return None
            if expected_state is not None and current.state != expected_state:
                return None
            # Same rule as the partial unique index of the database backend.
            if (
                request.state not in TERMINAL_STATES
                and current.state in TERMINAL_STATES
                and self._find_active_locked(request.issuer_name, request.dedup_key, exclude=request.id)
            ):
                raise DuplicateActiveRequestError(request.issuer_name, request.dedup_key)
            operator = {name: getattr(current, name) for name in OPERATOR_FIELDS}
            stored = replace(request, updated_at=datetime.now(UTC), **operator)
            self._requests[stored.id] = stored
            return stored

    def set_flags(self, request_id: UUID, **changes: object) -> CertificateRequest | None:
        check_operator_fields(changes)
        with self._lock:
            current = self._requests.get(request_id)
            if current is None:
                return None
            stored = replace(current, updated_at=datetime.now(UTC), **changes)
            self._requests[stored.id] = stored
            return stored
