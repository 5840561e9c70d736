"""Issuer registry.

Maps issuer names to everything needed to run an order against them:
the immutable :class:`~acmesync.models.issuer.Issuer`, its ACME
backend, the challenge solver for its DNS zone and its token bucket.

Usage::

    registry = IssuerRegistry()
    registry.register(issuer, backend=backend, solver=solver)

    handle = registry.get("letsencrypt-prod")
    handle.bucket.acquire()
    order = handle.backend.new_order(domains)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from acmesync.core.errors import IssuerUnavailable, ReconcileError
from acmesync.issuers.rate_limit import TokenBucket

if TYPE_CHECKING:
    from acmesync.acme.base import AcmeBackend
    from acmesync.challenge.solver import ChallengeSolver
    from acmesync.models.issuer import Issuer

log = logging.getLogger(__name__)

# Let's Encrypt directory endpoints.
LETSENCRYPT_STAGING = "https://acme-staging-v02.api.letsencrypt.org/directory"
LETSENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"


@dataclass(frozen=True)
class IssuerHandle:
    issuer: Issuer
    backend: AcmeBackend
    solver: ChallengeSolver
    bucket: TokenBucket

    @property
    def name(self) -> str:
        return self.issuer.name


class IssuerRegistry:
    """Registry of configured issuers keyed by name."""

    def __init__(self) -> None:
        self._handles: dict[str, IssuerHandle] = {}

    def register(
        self,
        issuer: Issuer,
        *,
        backend: AcmeBackend,
        solver: ChallengeSolver,
        bucket: TokenBucket | None = None,
    ) -> IssuerHandle:
        if issuer.name in self._handles:
            msg = f"Issuer '{issuer.name}' is already registered"
            raise ValueError(msg)
        handle = IssuerHandle(
            issuer=issuer,
            backend=backend,
            solver=solver,
            bucket=bucket or TokenBucket(issuer.requests_per_week),
        )
        self._handles[issuer.name] = handle
        log.info(
            "Registered issuer %s (%s, zone %s)",
            issuer.name,
            issuer.environment,
            issuer.zone,
        )
        return handle

    def get(self, name: str) -> IssuerHandle:
        """Return the handle for *name*.

        Raises
        ------
        IssuerUnavailable
            If no such issuer is configured.

        """
        try:
            return self._handles[name]
        except KeyError:
            msg = f"Issuer '{name}' is not configured"
            raise IssuerUnavailable(msg) from None

    def __contains__(self, name: object) -> bool:
        return name in self._handles

    def __iter__(self):  # noqa: ANN204
        return iter(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)

    @property
    def names(self) -> list[str]:
        return sorted(self._handles)

    def startup_check(self) -> dict[str, str | None]:
        """Run every backend's startup check.

        Returns a mapping of issuer name to error detail (``None`` when
        the issuer is ready).  A failing issuer does not stop the others.
        """
        results: dict[str, str | None] = {}
        for handle in self._handles.values():
            try:
                handle.backend.startup_check()
            except ReconcileError as exc:
                log.error("Issuer %s is not usable: %s", handle.name, exc.detail)  # noqa: TRY400
                results[handle.name] = exc.detail
            else:
                results[handle.name] = None
        return results
