"""Issued certificate bundle."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime


def bundle_hash(cert_pem: str, key_pem: str) -> str:
    """SHA-256 over the certificate chain and private key."""
    digest = hashlib.sha256()
    digest.update(cert_pem.encode("utf-8"))
    digest.update(b"\0")
    digest.update(key_pem.encode("utf-8"))
    return digest.hexdigest()


@dataclass(frozen=True)
class CertificateBundle:
    """Certificate chain, private key and the metadata parsed from the leaf.

    Attributes
    ----------
    cert_pem:
        Full PEM chain, leaf first.
    key_pem:
        PEM private key matching the leaf.
    not_before / not_after:
        Validity window of the leaf (UTC).
    serial_number:
        Hex-encoded leaf serial.
    fingerprint:
        SHA-256 hex digest of the leaf DER.
    content_hash:
        :func:`bundle_hash` of chain and key.  Equal hashes mean an
        identical secret payload.

    """

    cert_pem: str
    key_pem: str
    not_before: datetime
    not_after: datetime
    serial_number: str
    fingerprint: str
    content_hash: str
