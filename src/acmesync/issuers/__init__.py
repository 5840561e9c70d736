"""ACME issuer registry and rate limiting."""

from acmesync.issuers.rate_limit import TokenBucket
from acmesync.issuers.registry import (
    LETSENCRYPT_PRODUCTION,
    LETSENCRYPT_STAGING,
    IssuerHandle,
    IssuerRegistry,
)

__all__ = [
    "LETSENCRYPT_PRODUCTION",
    "LETSENCRYPT_STAGING",
    "IssuerHandle",
    "IssuerRegistry",
    "TokenBucket",
]
