"""Entity models for the controller.

All models are frozen dataclasses.  Use :func:`dataclasses.replace`
for modifications (copy-on-write).
"""

from acmesync.models.bundle import CertificateBundle, bundle_hash
from acmesync.models.certificate_request import Attempt, CertificateRequest
from acmesync.models.challenge import Challenge
from acmesync.models.distributed_secret import DistributedSecret
from acmesync.models.issuer import Issuer

__all__ = [
    "Attempt",
    "CertificateBundle",
    "CertificateRequest",
    "Challenge",
    "DistributedSecret",
    "Issuer",
    "bundle_hash",
]
