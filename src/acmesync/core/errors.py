"""Reconciliation error taxonomy.

Every failure that can move a certificate request is one of the
classes below.  Each carries a stable :attr:`~ReconcileError.code`
(recorded in ``last_error`` and the attempt history) and a
:attr:`~ReconcileError.kind` that tells the reconciler how to react:

``transient``
    Retried with exponential backoff and jitter, bounded by
    ``controller.max_retries``.
``rate_limited``
    Retried after a cooldown that honours ``Retry-After``.
``permanent``
    The request moves to ``failed`` immediately.
"""

from __future__ import annotations

from acmesync.core.types import ErrorCode, ErrorKind


class ReconcileError(Exception):
    """Base class for failures raised while reconciling a request.

    Parameters
    ----------
    detail:
        Human-readable description of the failure.
    retry_after:
        Seconds the caller asked us to wait (``Retry-After``), if known.

    """

    code: ErrorCode = ErrorCode.TRANSIENT
    kind: ErrorKind = ErrorKind.TRANSIENT

    def __init__(self, detail: str, *, retry_after: float | None = None) -> None:
        self.detail = detail
        self.retry_after = retry_after
        super().__init__(detail)

    @property
    def retryable(self) -> bool:
        return self.kind is not ErrorKind.PERMANENT

    def to_dict(self) -> dict:
        data = {"code": self.code.value, "kind": self.kind.value, "detail": self.detail}
        if self.retry_after is not None:
            data["retry_after"] = self.retry_after
        return data


class TransientError(ReconcileError):
    """Network hiccup, provider 5xx, ACME server error."""


class DNSPropagationTimeout(ReconcileError):
    """The TXT record never became visible on the public resolvers.

    The solver already spent the whole propagation budget polling, so
    the request is not retried automatically.
    """

    code = ErrorCode.DNS_PROPAGATION_TIMEOUT
    kind = ErrorKind.PERMANENT


class ACMEValidationRejected(ReconcileError):
    """The ACME server marked a challenge or authorization invalid."""

    code = ErrorCode.ACME_VALIDATION_REJECTED
    kind = ErrorKind.PERMANENT


class ACMERateLimited(ReconcileError):
    """The ACME server (or the local token bucket) refused the request."""

    code = ErrorCode.ACME_RATE_LIMITED
    kind = ErrorKind.RATE_LIMITED


class ACMEIssuanceTimeout(ReconcileError):
    """Finalisation did not complete inside the issuance window."""

    code = ErrorCode.ACME_ISSUANCE_TIMEOUT
    kind = ErrorKind.PERMANENT


class IssuerUnavailable(ReconcileError):
    """Credentials rejected or issuer misconfigured (401/403, bad zone)."""

    code = ErrorCode.ISSUER_UNAVAILABLE
    kind = ErrorKind.PERMANENT


class RequestCancelled(ReconcileError):
    """The request was deleted or revoked while work was in flight."""

    code = ErrorCode.CANCELLED
    kind = ErrorKind.PERMANENT


class DistributionFailed(ReconcileError):
    """Some namespace copies could not be written; the others were."""

    code = ErrorCode.DISTRIBUTION_FAILED
    kind = ErrorKind.PARTIAL
