"""Abstract ACME collaborator.

The controller never speaks the ACME protocol itself.  An
:class:`AcmeBackend` wraps an ACME client library for one issuer and
hands out :class:`AcmeOrder` objects that walk a single order through
DNS-01 authorization, finalisation and download.

Every method raises :class:`~acmesync.core.errors.ReconcileError`
subclasses; library-specific exceptions never escape a backend.
"""

from __future__ import annotations

import abc
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmesync.core.types import RevocationReason
    from acmesync.models.issuer import Issuer

log = logging.getLogger(__name__)


class AcmeOrder(abc.ABC):
    """One ACME order for a fixed domain set."""

    @abc.abstractmethod
    def authorize(self, responder: Callable[[str, str], None]) -> None:
        """Complete the DNS-01 challenge of every authorization.

        *responder* is called once per challenge with the domain and the
        TXT value to publish.  It must return only after the record is
        visible, and raise to abort the order.
        """

    @abc.abstractmethod
    def finalize(self, csr_der: bytes) -> None:
        """Submit the CSR.  May be retried after a retryable error."""

    @abc.abstractmethod
    def certificate(self) -> str:
        """Download the issued PEM chain."""


class AcmeBackend(abc.ABC):
    """ACME client wrapper bound to one issuer.

    Parameters
    ----------
    issuer:
        The issuer whose directory, account and email are used.

    """

    def __init__(self, issuer: Issuer) -> None:
        self.issuer = issuer

    def startup_check(self) -> None:  # noqa: B027
        """Verify the account can be used.  Called once at startup.

        Override to register the ACME account or check connectivity.
        """

    @abc.abstractmethod
    def new_order(self, domains: tuple[str, ...]) -> AcmeOrder:
        """Open a new order for *domains*."""

    @abc.abstractmethod
    def revoke(self, cert_pem: str, reason: RevocationReason | None = None) -> None:
        """Revoke a previously issued certificate."""
