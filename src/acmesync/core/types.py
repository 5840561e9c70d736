"""Enumerated types shared across the controller.

All enums inherit from :class:`enum.StrEnum` so their ``.value`` is a
plain string that psycopg serialises as TEXT and JSON round-trips
naturally.
"""

from __future__ import annotations

from enum import StrEnum

# ---------------------------------------------------------------------------
# Certificate request lifecycle
# ---------------------------------------------------------------------------


class RequestState(StrEnum):
    PENDING = "pending"
    VALIDATING = "validating"
    ISSUING = "issuing"
    ISSUED = "issued"
    RENEWING = "renewing"
    FAILED = "failed"
    REVOKED = "revoked"
    DELETED = "deleted"


# ---------------------------------------------------------------------------
# Error taxonomy
# ---------------------------------------------------------------------------


class ErrorKind(StrEnum):
    """How the reconciler reacts to a failure."""

    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    PERMANENT = "permanent"
    PARTIAL = "partial"


class ErrorCode(StrEnum):
    DNS_PROPAGATION_TIMEOUT = "DNSPropagationTimeout"
    ACME_VALIDATION_REJECTED = "ACMEValidationRejected"
    ACME_RATE_LIMITED = "ACMERateLimited"
    ACME_ISSUANCE_TIMEOUT = "ACMEIssuanceTimeout"
    ISSUER_UNAVAILABLE = "IssuerUnavailable"
    DISTRIBUTION_FAILED = "DistributionFailed"
    TRANSIENT = "Transient"
    CANCELLED = "Cancelled"


# ---------------------------------------------------------------------------
# Issuers
# ---------------------------------------------------------------------------


class IssuerEnvironment(StrEnum):
    STAGING = "staging"
    PRODUCTION = "production"


class KeyType(StrEnum):
    EC = "ec"
    RSA = "rsa"


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


class RecordType(StrEnum):
    TXT = "TXT"


class RevocationReason(StrEnum):
    UNSPECIFIED = "unspecified"
    KEY_COMPROMISE = "keyCompromise"
    SUPERSEDED = "superseded"
    CESSATION_OF_OPERATION = "cessationOfOperation"
