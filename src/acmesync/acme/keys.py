"""Key, CSR and certificate helpers built on :mod:`cryptography`."""

from __future__ import annotations

import hashlib
import logging

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from acmesync.core.types import KeyType
from acmesync.models.bundle import CertificateBundle, bundle_hash

log = logging.getLogger(__name__)

_RSA_KEY_SIZE = 2048
_MAX_CN_LENGTH = 64


def generate_private_key(key_type: KeyType | str = KeyType.EC):
    """Generate a fresh certificate key (P-256 or RSA-2048)."""
    if KeyType(key_type) is KeyType.RSA:
        return rsa.generate_private_key(public_exponent=65537, key_size=_RSA_KEY_SIZE)
    return ec.generate_private_key(ec.SECP256R1())


def private_key_pem(key) -> str:  # noqa: ANN001
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def build_csr(key, domains: tuple[str, ...]) -> bytes:  # noqa: ANN001
    """Return a DER-encoded CSR for *domains* signed with *key*.

    The first domain short enough for a CN becomes the subject; every
    domain goes into the SAN extension.
    """
    builder = x509.CertificateSigningRequestBuilder()
    common_name = next((d for d in domains if len(d) <= _MAX_CN_LENGTH), None)
    if common_name:
        builder = builder.subject_name(
            x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)]),
        )
    builder = builder.add_extension(
        x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
        critical=False,
    )
    csr = builder.sign(key, hashes.SHA256())
    return csr.public_bytes(serialization.Encoding.DER)


def leaf_certificate(cert_pem: str) -> x509.Certificate:
    """Load the first certificate of a PEM chain."""
    return x509.load_pem_x509_certificate(cert_pem.encode("ascii"))


def certificate_der(cert_pem: str) -> bytes:
    return leaf_certificate(cert_pem).public_bytes(serialization.Encoding.DER)


def parse_bundle(cert_pem: str, key_pem: str) -> CertificateBundle:
    """Build a :class:`CertificateBundle` from an issued chain and its key."""
    leaf = leaf_certificate(cert_pem)
    fingerprint = hashlib.sha256(
        leaf.public_bytes(serialization.Encoding.DER),
    ).hexdigest()
    return CertificateBundle(
        cert_pem=cert_pem,
        key_pem=key_pem,
        not_before=leaf.not_valid_before_utc,
        not_after=leaf.not_valid_after_utc,
        serial_number=format(leaf.serial_number, "x"),
        fingerprint=fingerprint,
        content_hash=bundle_hash(cert_pem, key_pem),
    )
