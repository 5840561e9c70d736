"""ACME backend backed by ACMEOW.

Each order gets its own ACMEOW client (the client object holds the
current order), all sharing the issuer's on-disk account storage.
DNS-01 records are published through ACMEOW's
``CallbackDnsHandler``; the callbacks hand the work to the responder
supplied by the reconciler, which owns record creation, propagation
checks and removal.

Requires ACMEOW >= 1.1.0 for external CSR support via
``finalize_order(csr=<bytes>)``.
"""

from __future__ import annotations

import logging
import re
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Any

from acmesync.acme.base import AcmeBackend, AcmeOrder
from acmesync.acme.keys import certificate_der
from acmesync.core.errors import (
    ACMERateLimited,
    ACMEValidationRejected,
    IssuerUnavailable,
    ReconcileError,
    TransientError,
)
from acmesync.core.types import RevocationReason

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmesync.models.issuer import Issuer

log = logging.getLogger(__name__)

_REVOCATION_CODES: dict[RevocationReason, int] = {
    RevocationReason.UNSPECIFIED: 0,
    RevocationReason.KEY_COMPROMISE: 1,
    RevocationReason.SUPERSEDED: 4,
    RevocationReason.CESSATION_OF_OPERATION: 5,
}

_RATE_LIMIT_PATTERNS = ("ratelimit", "rate limit", "rate_limit", "too many", "429")
_RETRYABLE_PATTERNS = ("timeout", "connection", "network", "server", "503", "502", "badnonce")
_RETRY_AFTER_RE = re.compile(r"retry[- ]after[:= ]+(\d+(?:\.\d+)?)", re.IGNORECASE)


def _reconcile_cause(exc: BaseException) -> ReconcileError | None:
    """Return a :class:`ReconcileError` wrapped anywhere in *exc*'s chain."""
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        if isinstance(current, ReconcileError):
            return current
        seen.add(id(current))
        current = current.__cause__ or current.__context__
    return None


def _retry_after(exc: Exception) -> float | None:
    value = getattr(exc, "retry_after", None)
    if value is not None:
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
    match = _RETRY_AFTER_RE.search(str(exc))
    return float(match.group(1)) if match else None


def classify_acme_error(exc: Exception, *, phase: str) -> ReconcileError:
    """Map an ACME client exception onto the reconciliation taxonomy.

    Uses name/message heuristics since ACME libraries expose the
    server's problem document only as text.  *phase* decides what a
    non-retryable failure means: a rejected challenge or order during
    ``authorize``/``finalize``, an unusable issuer during ``account``.
    """
    wrapped = _reconcile_cause(exc)
    if wrapped is not None:
        return wrapped

    exc_name = type(exc).__name__.lower()
    text = str(exc)
    lowered = text.lower()
    detail = f"ACME {phase} failed ({type(exc).__name__}): {text}"

    if any(p in exc_name or p in lowered for p in _RATE_LIMIT_PATTERNS):
        return ACMERateLimited(detail, retry_after=_retry_after(exc))
    if any(p in exc_name or p in lowered for p in _RETRYABLE_PATTERNS):
        return TransientError(detail, retry_after=_retry_after(exc))
    if phase == "account":
        return IssuerUnavailable(detail)
    return ACMEValidationRejected(detail)


class AcmeowOrder(AcmeOrder):
    """An order driven through one ACMEOW client."""

    def __init__(self, client: Any, domains: tuple[str, ...]) -> None:  # noqa: ANN401
        self._client = client
        self.domains = domains

    def authorize(self, responder: Callable[[str, str], None]) -> None:
        from acmeow.handlers import CallbackDnsHandler  # noqa: PLC0415

        def create_record(domain: str, record_name: str, record_value: str) -> None:
            log.debug("ACME requested TXT %s for %s", record_name, domain)
            responder(domain, record_value)

        def delete_record(domain: str, record_name: str) -> None:
            # Removal is owned by the challenge ledger.
            log.debug("ACME released TXT %s for %s", record_name, domain)

        handler = CallbackDnsHandler(
            create_record=create_record,
            delete_record=delete_record,
            propagation_delay=0,
        )
        try:
            self._client.complete_challenges(handler, challenge_type="dns-01")
        except ReconcileError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise classify_acme_error(exc, phase="authorize") from exc

    def finalize(self, csr_der: bytes) -> None:
        try:
            self._client.finalize_order(csr=csr_der)
        except ReconcileError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise classify_acme_error(exc, phase="finalize") from exc

    def certificate(self) -> str:
        try:
            cert_pem, _ = self._client.get_certificate()
        except ReconcileError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise classify_acme_error(exc, phase="download") from exc
        if not cert_pem:
            msg = "ACME server returned an empty certificate"
            raise TransientError(msg)
        return cert_pem


class AcmeowBackend(AcmeBackend):
    """:class:`AcmeBackend` using ``acmeow.AcmeClient``.

    Parameters
    ----------
    issuer:
        Issuer providing directory URL, email, account storage and EAB.
    client_factory:
        Callable building the ACMEOW client; defaults to
        ``acmeow.AcmeClient``.

    """

    def __init__(
        self,
        issuer: Issuer,
        *,
        client_factory: Callable[..., Any] | None = None,
    ) -> None:
        super().__init__(issuer)
        self._client_factory = client_factory
        self._account_lock = threading.Lock()

    def _new_client(self) -> Any:  # noqa: ANN401
        factory = self._client_factory
        if factory is None:
            from acmeow import AcmeClient  # noqa: PLC0415

            factory = AcmeClient

        storage = Path(self.issuer.account_storage)
        try:
            storage.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Failed to create account storage '{storage}': {exc}"
            raise IssuerUnavailable(msg) from exc

        try:
            client = factory(
                directory_url=self.issuer.directory_url,
                storage_path=str(storage),
            )
            account_kwargs: dict[str, str] = {"email": self.issuer.email}
            if self.issuer.eab_kid and self.issuer.eab_hmac_key:
                account_kwargs["eab_kid"] = self.issuer.eab_kid
                account_kwargs["eab_hmac_key"] = self.issuer.eab_hmac_key
            # Account registration is idempotent but touches the shared
            # key file, so one client at a time.
            with self._account_lock:
                client.create_account(**account_kwargs)
        except ReconcileError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise classify_acme_error(exc, phase="account") from exc
        return client

    def startup_check(self) -> None:
        self._new_client()
        log.info(
            "Issuer %s: ACME account ready at %s",
            self.issuer.name,
            self.issuer.directory_url,
        )

    def new_order(self, domains: tuple[str, ...]) -> AcmeowOrder:
        client = self._new_client()
        try:
            client.create_order(list(domains))
        except ReconcileError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise classify_acme_error(exc, phase="order") from exc
        log.info("Issuer %s: opened order for %s", self.issuer.name, ", ".join(domains))
        return AcmeowOrder(client, domains)

    def revoke(self, cert_pem: str, reason: RevocationReason | None = None) -> None:
        client = self._new_client()
        code = _REVOCATION_CODES.get(reason or RevocationReason.UNSPECIFIED, 0)
        try:
            client.revoke_certificate(certificate_der(cert_pem), reason=code)
        except ReconcileError:
            raise
        except Exception as exc:  # noqa: BLE001
            raise classify_acme_error(exc, phase="revoke") from exc
        log.info("Issuer %s: revoked certificate", self.issuer.name)
