"""In-process secret store.

Used when no cluster is configured (``secrets.backend: memory``) and
throughout the test suite.  Counts writes and deletes so callers can
assert that unchanged bundles cause no writes.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass

from acmesync.distribution.base import SecretStore, SecretStoreError


@dataclass(frozen=True)
class StoredSecret:
    namespace: str
    name: str
    cert_pem: str
    key_pem: str
    content_hash: str
    request_id: str


class InMemorySecretStore(SecretStore):
    def __init__(self) -> None:
        self._secrets: dict[tuple[str, str], StoredSecret] = {}
        self._lock = threading.Lock()
        self._failing: set[str] = set()
        self.writes = 0
        self.deletes = 0

    def fail_namespace(self, namespace: str, *, failing: bool = True) -> None:
        """Make every operation on *namespace* raise (or stop raising)."""
        with self._lock:
            if failing:
                self._failing.add(namespace)
            else:
                self._failing.discard(namespace)

    def _check(self, namespace: str) -> None:
        if namespace in self._failing:
            msg = f"Namespace '{namespace}' is unavailable"
            raise SecretStoreError(msg)

    def read_hash(self, namespace: str, name: str) -> str | None:
        with self._lock:
            self._check(namespace)
            stored = self._secrets.get((namespace, name))
            return stored.content_hash if stored else None

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
        with self._lock:
            self._check(namespace)
            self._secrets[(namespace, name)] = StoredSecret(
                namespace=namespace,
                name=name,
                cert_pem=cert_pem,
                key_pem=key_pem,
                content_hash=content_hash,
                request_id=request_id,
            )
            self.writes += 1

    def delete(self, namespace: str, name: str) -> None:
        with self._lock:
            self._check(namespace)
            if self._secrets.pop((namespace, name), None) is not None:
                self.deletes += 1

    def get(self, namespace: str, name: str) -> StoredSecret | None:
        with self._lock:
            return self._secrets.get((namespace, name))

    def list(self) -> list[StoredSecret]:
        with self._lock:
            return list(self._secrets.values())
