"""Secret store abstraction.

A :class:`SecretStore` holds one TLS secret per ``(namespace, name)``
pair and remembers the content hash it was written with, so the
distributor can skip writes whose payload has not changed.
"""

from __future__ import annotations

import abc

CONTENT_HASH_ANNOTATION = "acmesync.io/content-hash"
REQUEST_ID_ANNOTATION = "acmesync.io/request-id"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "acmesync"


class SecretStoreError(Exception):
    """Raised by secret stores when a namespace cannot be read or written.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retryable:
        Whether a later attempt may succeed.

    """

    def __init__(self, detail: str, *, retryable: bool = True) -> None:
        self.detail = detail
        self.retryable = retryable
        super().__init__(detail)


class SecretStore(abc.ABC):
    """Destination for certificate copies."""

    @abc.abstractmethod
    def read_hash(self, namespace: str, name: str) -> str | None:
        """Return the content hash of the stored secret, or ``None`` if absent."""

    @abc.abstractmethod
    def write(
        self,
        namespace: str,
        name: str,
        *,
        cert_pem: str,
        key_pem: str,
        content_hash: str,
        request_id: str,
    ) -> None:
        """Create or replace the secret."""

    @abc.abstractmethod
    def delete(self, namespace: str, name: str) -> None:
        """Remove the secret.  Absent secrets are not an error."""
