"""Dependency container for acmesync.

Built once at startup from the typed settings and shared by the
scheduler, the HTTP surface and the CLI.  The Flask app keeps it in
``app.extensions["container"]``; request handlers reach it with
:func:`get_container`.

Usage::

    from acmesync.app.context import Container

    container = Container(get_config().settings)
    container.scheduler.start()
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from flask import current_app

from acmesync.core.types import IssuerEnvironment, KeyType
from acmesync.models.issuer import Issuer

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmesync.acme.base import AcmeBackend
    from acmesync.app.shutdown import ShutdownCoordinator
    from acmesync.config.settings import (
        AcmesyncSettings,
        DnsProviderSettings,
        IssuerSettings,
        SecretsSettings,
    )
    from acmesync.distribution.base import SecretStore
    from acmesync.dns.base import DnsProvider
    from acmesync.dns.propagation import PropagationChecker
    from acmesync.repositories.base import RequestStore

log = logging.getLogger(__name__)


def issuer_from_settings(entry: IssuerSettings) -> Issuer:
    """Turn one ``issuers[]`` config entry into an :class:`Issuer`."""
    return Issuer(
        name=entry.name,
        directory_url=entry.directory_url,
        environment=IssuerEnvironment(entry.environment),
        email=entry.email,
        account_storage=entry.account_storage,
        dns_provider=entry.dns_provider,
        zone=entry.zone,
        zone_id=entry.zone_id,
        requests_per_week=entry.requests_per_week,
        max_concurrent=entry.max_concurrent,
        key_type=KeyType(entry.key_type),
        eab_kid=entry.eab_kid,
        eab_hmac_key=entry.eab_hmac_key,
    )


def provider_settings_with_zone_ids(settings: AcmesyncSettings) -> tuple[DnsProviderSettings, ...]:
    """Fold each issuer's pinned ``zone_id`` into its provider's ``zone_ids``."""
    pinned: dict[str, dict[str, str]] = {}
    for entry in settings.issuers:
        if entry.zone_id:
            pinned.setdefault(entry.dns_provider, {})[entry.zone] = entry.zone_id
    result = []
    for provider in settings.providers:
        extra = pinned.get(provider.name)
        if extra:
            zone_ids = {**extra, **(provider.config.get("zone_ids") or {})}
            provider = replace(provider, config={**provider.config, "zone_ids": zone_ids})  # noqa: PLW2901
        result.append(provider)
    return tuple(result)


def build_request_store(settings: AcmesyncSettings) -> RequestStore:
    """Return the request store selected by ``storage.backend``."""
    if settings.storage.backend == "database":
        from acmesync.db.init import init_database  # noqa: PLC0415
        from acmesync.repositories.certificate_request import (  # noqa: PLC0415
            CertificateRequestRepository,
        )

        if settings.database is None:
            msg = "storage.backend is 'database' but no database section is configured"
            raise ValueError(msg)
        db = init_database(settings.database)
        return CertificateRequestRepository(db)

    from acmesync.repositories.memory import InMemoryRequestStore  # noqa: PLC0415

    log.warning("Using the in-memory request store; requests are lost on restart")
    return InMemoryRequestStore()


def build_secret_store(settings: SecretsSettings) -> SecretStore:
    """Return the secret store selected by ``secrets.backend``."""
    if settings.backend == "kubernetes":
        from acmesync.distribution.kubernetes import KubernetesSecretStore  # noqa: PLC0415

        return KubernetesSecretStore(
            kubeconfig=settings.kubeconfig,
            in_cluster=settings.in_cluster,
            labels=settings.labels,
        )

    from acmesync.distribution.memory import InMemorySecretStore  # noqa: PLC0415

    return InMemorySecretStore()


class Container:
    """Application-wide dependency container.

    Every collaborator can be overridden by keyword, which is how the
    tests swap in fake DNS providers, ACME backends and stores.
    """

    def __init__(  # noqa: PLR0913
        self,
        settings: AcmesyncSettings,
        *,
        store: RequestStore | None = None,
        secret_store: SecretStore | None = None,
        providers: dict[str, DnsProvider] | None = None,
        checker: PropagationChecker | None = None,
        backend_factory: Callable[[Issuer], AcmeBackend] | None = None,
        shutdown_coordinator: ShutdownCoordinator | None = None,
    ) -> None:
        from acmesync.challenge.solver import ChallengeSolver as _CS  # noqa: N814, PLC0415
        from acmesync.distribution.distributor import Distributor as _D  # noqa: N814, PLC0415
        from acmesync.dns.propagation import PropagationChecker as _PC  # noqa: N814, PLC0415
        from acmesync.dns.registry import build_providers  # noqa: PLC0415
        from acmesync.hooks.registry import HookRegistry as _HR  # noqa: N814, PLC0415
        from acmesync.issuers.registry import IssuerRegistry as _IR  # noqa: N814, PLC0415
        from acmesync.metrics.collector import MetricsCollector as _MC  # noqa: N814, PLC0415
        from acmesync.reconciler import (  # noqa: PLC0415
            Controller,
            RequestMachine,
            RetryPolicy,
            Scheduler,
        )

        self.settings = settings
        self.shutdown_coordinator = shutdown_coordinator

        self.metrics = _MC() if settings.metrics.enabled else None
        self.hook_registry = _HR(settings.hooks)

        # DNS
        self.providers: dict[str, DnsProvider] = (
            providers
            if providers is not None
            else build_providers(provider_settings_with_zone_ids(settings))
        )
        self.checker = checker or _PC(
            settings.dns.resolvers,
            timeout_seconds=settings.dns.resolver_timeout_seconds,
        )

        # Issuers
        if backend_factory is None:
            from acmesync.acme.acmeow_backend import AcmeowBackend  # noqa: PLC0415

            backend_factory = AcmeowBackend
        self.issuers = _IR()
        for entry in settings.issuers:
            issuer = issuer_from_settings(entry)
            solver = _CS(
                self.providers[entry.dns_provider],
                self.checker,
                zone=issuer.zone,
                ttl=settings.dns.record_ttl,
                propagation_timeout=settings.dns.propagation_timeout_seconds,
                poll_interval=settings.dns.propagation_interval_seconds,
                hooks=self.hook_registry,
            )
            self.issuers.register(issuer, backend=backend_factory(issuer), solver=solver)

        # Persistence and distribution
        self.store: RequestStore = store if store is not None else build_request_store(settings)
        self.secret_store: SecretStore = (
            secret_store if secret_store is not None else build_secret_store(settings.secrets)
        )
        self.distributor = _D(self.secret_store)

        # Reconciliation
        self.machine = RequestMachine(
            self.store,
            self.issuers,
            self.distributor,
            policy=RetryPolicy.from_settings(settings.controller),
            hooks=self.hook_registry,
            metrics=self.metrics,
        )
        self.scheduler = Scheduler(
            self.machine,
            certificates=settings.certificates,
            interval=settings.controller.reconcile_interval_seconds,
            metrics=self.metrics,
        )
        self.controller = Controller(self.store, self.issuers, self.scheduler)

    def startup_check(self) -> dict[str, Any]:
        """Check every issuer account and DNS zone; never raises."""
        results: dict[str, Any] = {"issuers": self.issuers.startup_check(), "zones": {}}
        for handle in self.issuers:
            provider = handle.solver.provider
            try:
                ok = provider.verify_zone(handle.issuer.zone)
            except Exception as exc:  # noqa: BLE001
                log.error("Zone check for issuer %s failed: %s", handle.name, exc)  # noqa: TRY400
                ok = False
            results["zones"][handle.name] = ok
            if not ok:
                log.error(
                    "DNS provider %s cannot manage zone %s for issuer %s",
                    handle.issuer.dns_provider,
                    handle.issuer.zone,
                    handle.name,
                )
        return results

    def shutdown(self) -> None:
        """Stop the scheduler and drain the hook pool."""
        self.scheduler.stop(timeout=self.settings.controller.shutdown_timeout_seconds)
        self.hook_registry.shutdown(wait=True)


def get_container() -> Container:
    """Return the :class:`Container` from the current Flask app.

    Must be called within a Flask application or request context.
    """
    return current_app.extensions["container"]
