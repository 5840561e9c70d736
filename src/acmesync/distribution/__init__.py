"""Certificate distribution into namespaces.

The Kubernetes store is imported lazily by the application context so
the ``kubernetes`` client is only loaded when configured.
"""

from acmesync.distribution.base import SecretStore, SecretStoreError
from acmesync.distribution.distributor import (
    DistributionResult,
    DistributionTarget,
    Distributor,
)
from acmesync.distribution.memory import InMemorySecretStore

__all__ = [
    "DistributionResult",
    "DistributionTarget",
    "Distributor",
    "InMemorySecretStore",
    "SecretStore",
    "SecretStoreError",
]
