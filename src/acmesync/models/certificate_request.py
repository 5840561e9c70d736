"""Certificate request entity."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from acmesync.core.domains import domain_key
from acmesync.core.types import RequestState

if TYPE_CHECKING:
    from uuid import UUID

    from acmesync.models.bundle import CertificateBundle
    from acmesync.models.challenge import Challenge
    from acmesync.models.distributed_secret import DistributedSecret

_EPOCH = datetime(1970, 1, 1)

MAX_ATTEMPTS_KEPT = 20


@dataclass(frozen=True)
class Attempt:
    """One entry of a request's attempt history."""

    from_state: RequestState
    to_state: RequestState
    at: datetime
    code: str | None = None
    kind: str | None = None
    detail: str | None = None


@dataclass(frozen=True)
class CertificateRequest:
    id: UUID
    issuer_name: str
    domains: tuple[str, ...]
    secret_name: str
    namespaces: tuple[str, ...]
    state: RequestState = RequestState.PENDING
    retry_count: int = 0
    last_error: dict | None = None
    attempts: tuple[Attempt, ...] = ()
    next_attempt_at: datetime | None = None
    bundle: CertificateBundle | None = None
    expires_at: datetime | None = None
    renew_at: datetime | None = None
    last_validated_at: datetime | None = None
    distributed: tuple[DistributedSecret, ...] = ()
    failed_namespaces: tuple[str, ...] = ()
    orphaned_records: tuple[Challenge, ...] = ()
    deletion_requested: bool = False
    revocation_requested: bool = False
    retrigger_requested: bool = False
    revocation_reason: str | None = None
    created_at: datetime = _EPOCH
    updated_at: datetime = _EPOCH
    dedup_key: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        if not self.dedup_key:
            object.__setattr__(self, "dedup_key", domain_key(self.domains))
