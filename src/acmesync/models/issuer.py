"""Issuer entity."""

from __future__ import annotations

from dataclasses import dataclass

from acmesync.core.types import IssuerEnvironment, KeyType


@dataclass(frozen=True)
class Issuer:
    """An ACME endpoint plus the DNS zone its challenges are solved in.

    Built from configuration at startup and never mutated afterwards.
    """

    name: str
    directory_url: str
    environment: IssuerEnvironment
    email: str
    account_storage: str
    dns_provider: str
    zone: str
    zone_id: str | None = None
    requests_per_week: int = 50
    max_concurrent: int = 1
    key_type: KeyType = KeyType.EC
    eab_kid: str | None = None
    eab_hmac_key: str | None = None
