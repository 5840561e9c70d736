"""ACME client integration."""

from acmesync.acme.acmeow_backend import AcmeowBackend, classify_acme_error
from acmesync.acme.base import AcmeBackend, AcmeOrder

__all__ = [
    "AcmeBackend",
    "AcmeOrder",
    "AcmeowBackend",
    "classify_acme_error",
]
