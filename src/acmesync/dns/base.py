"""Abstract base class for DNS provider clients.

A provider publishes and removes the TXT records that prove domain
control for DNS-01.  Built-in: :class:`~acmesync.dns.cloudflare.CloudflareProvider`.
Custom providers are loaded with the ``ext:`` prefix
(see :func:`acmesync.dns.registry.load_dns_provider`).

Contract
--------
- :meth:`create_record` is idempotent: publishing a record identical to
  one that already exists returns the existing record's id.
- :meth:`delete_record` treats an already-missing record as deleted.
- Transient failures (5xx, timeouts, 429) are retried inside the
  client; what escapes is a :class:`DnsProviderError` whose
  :attr:`~DnsProviderError.retryable` says whether a later retry could
  succeed.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any

from acmesync.core.types import RecordType

_HTTP_UNAUTHORIZED = 401
_HTTP_FORBIDDEN = 403
_HTTP_TOO_MANY_REQUESTS = 429


class DnsProviderError(Exception):
    """Raised by DNS providers on API failure.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    status:
        HTTP status returned by the provider API, if any.
    retryable:
        Whether the failure is transient and the operation may be retried.
    retry_after:
        Seconds requested by the provider before the next call.

    """

    def __init__(
        self,
        detail: str,
        *,
        status: int | None = None,
        retryable: bool = False,
        retry_after: float | None = None,
    ) -> None:
        self.detail = detail
        self.status = status
        self.retryable = retryable
        self.retry_after = retry_after
        super().__init__(detail)

    @property
    def auth_failed(self) -> bool:
        return self.status in (_HTTP_UNAUTHORIZED, _HTTP_FORBIDDEN)

    @property
    def rate_limited(self) -> bool:
        return self.status == _HTTP_TOO_MANY_REQUESTS


@dataclass(frozen=True)
class DnsRecord:
    record_id: str
    name: str
    type: str
    content: str
    ttl: int


class DnsProvider(abc.ABC):
    """Base class for DNS provider API clients.

    Parameters
    ----------
    config:
        Provider-specific options from the ``providers.<name>`` section.

    """

    def __init__(self, config: dict[str, Any] | None = None) -> None:
        self.config = config or {}

    @abc.abstractmethod
    def create_record(
        self,
        zone: str,
        name: str,
        type: RecordType | str,  # noqa: A002
        value: str,
        ttl: int,
    ) -> str:
        """Publish a record and return its provider-side id."""

    @abc.abstractmethod
    def delete_record(self, zone: str, record_id: str) -> None:
        """Remove a record.  A record that no longer exists is not an error."""

    @abc.abstractmethod
    def verify_token(self) -> bool:
        """Return ``True`` if the configured credentials are accepted."""

    def find_records(
        self,
        zone: str,
        name: str,
        type: RecordType | str = RecordType.TXT,  # noqa: A002
    ) -> list[DnsRecord]:
        """List records matching *name* and *type*.  Optional."""
        msg = f"{self.__class__.__name__} does not support listing records"
        raise NotImplementedError(msg)

    def verify_zone(self, zone: str) -> bool:  # noqa: ARG002
        """Return ``True`` if *zone* is reachable with these credentials."""
        return True
