"""Typed, frozen dataclasses for every configuration section.

This module is the **single source of truth** for default values.
JSON Schema defaults exist only for documentation; these builders
are what the controller actually reads.

Access pattern::

    from acmesync.config import get_config

    ctl = get_config().settings.controller
    print(ctl.reconcile_interval_seconds)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

# ---------------------------------------------------------------------------
# Controller
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ControllerSettings:
    """Reconciliation loop timing, retry and renewal policy."""

    reconcile_interval_seconds: float
    max_retries: int
    backoff_base_seconds: float
    backoff_max_seconds: float
    rate_limit_cooldown_seconds: float
    issuance_timeout_seconds: float
    issuance_poll_seconds: float
    renew_before_days: int
    shutdown_timeout_seconds: float


def _build_controller(data: dict | None) -> ControllerSettings:
    d = data or {}
    return ControllerSettings(
        reconcile_interval_seconds=d.get("reconcile_interval_seconds", 60),
        max_retries=d.get("max_retries", 5),
        backoff_base_seconds=d.get("backoff_base_seconds", 30),
        backoff_max_seconds=d.get("backoff_max_seconds", 3600),
        rate_limit_cooldown_seconds=d.get("rate_limit_cooldown_seconds", 3600),
        issuance_timeout_seconds=d.get("issuance_timeout_seconds", 600),
        issuance_poll_seconds=d.get("issuance_poll_seconds", 10),
        renew_before_days=d.get("renew_before_days", 15),
        shutdown_timeout_seconds=d.get("shutdown_timeout_seconds", 30),
    )


# ---------------------------------------------------------------------------
# DNS propagation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DnsSettings:
    """Public resolvers and timing used to confirm TXT propagation."""

    resolvers: tuple[str, ...]
    resolver_timeout_seconds: float
    propagation_timeout_seconds: float
    propagation_interval_seconds: float
    record_ttl: int


def _build_dns(data: dict | None) -> DnsSettings:
    d = data or {}
    return DnsSettings(
        resolvers=tuple(d.get("resolvers", ["1.1.1.1", "8.8.8.8"])),
        resolver_timeout_seconds=d.get("resolver_timeout_seconds", 5),
        propagation_timeout_seconds=d.get("propagation_timeout_seconds", 120),
        propagation_interval_seconds=d.get("propagation_interval_seconds", 5),
        record_ttl=d.get("record_ttl", 120),
    )


# ---------------------------------------------------------------------------
# DNS providers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DnsProviderSettings:
    """One named DNS provider and its backend-specific options."""

    name: str
    type: str
    config: dict[str, Any]


def _build_providers(data: list | None) -> tuple[DnsProviderSettings, ...]:
    return tuple(
        DnsProviderSettings(
            name=entry["name"],
            type=entry.get("type", "cloudflare"),
            config=dict(entry.get("config") or {}),
        )
        for entry in data or []
    )


# ---------------------------------------------------------------------------
# Issuers
# ---------------------------------------------------------------------------

_DIRECTORIES = {
    "staging": "https://acme-staging-v02.api.letsencrypt.org/directory",
    "production": "https://acme-v02.api.letsencrypt.org/directory",
}


@dataclass(frozen=True)
class IssuerSettings:
    """ACME endpoint, account and DNS zone of one issuer."""

    name: str
    environment: str
    directory_url: str
    email: str
    account_storage: str
    dns_provider: str
    zone: str
    zone_id: str | None
    requests_per_week: int
    max_concurrent: int
    key_type: str
    eab_kid: str | None
    eab_hmac_key: str | None


def _build_issuer(entry: dict) -> IssuerSettings:
    environment = entry.get("environment", "staging")
    name = entry["name"]
    rate = entry.get("rate_limit") or {}
    return IssuerSettings(
        name=name,
        environment=environment,
        directory_url=entry.get("directory_url") or _DIRECTORIES[environment],
        email=entry["email"],
        account_storage=entry.get("account_storage", f"./accounts/{name}"),
        dns_provider=entry["dns_provider"],
        zone=entry["zone"].rstrip(".").lower(),
        zone_id=entry.get("zone_id"),
        requests_per_week=rate.get("requests_per_week", 50),
        max_concurrent=entry.get("max_concurrent", 1),
        key_type=entry.get("key_type", "ec"),
        eab_kid=entry.get("eab_kid"),
        eab_hmac_key=entry.get("eab_hmac_key"),
    )


def _build_issuers(data: list | None) -> tuple[IssuerSettings, ...]:
    return tuple(_build_issuer(entry) for entry in data or [])


# ---------------------------------------------------------------------------
# Declared certificates
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CertificateSettings:
    """A certificate the scheduler keeps in existence."""

    secret_name: str
    issuer: str
    domains: tuple[str, ...]
    namespaces: tuple[str, ...]


def _build_certificates(data: list | None) -> tuple[CertificateSettings, ...]:
    return tuple(
        CertificateSettings(
            secret_name=entry["secret_name"],
            issuer=entry["issuer"],
            domains=tuple(entry["domains"]),
            namespaces=tuple(entry["namespaces"]),
        )
        for entry in data or []
    )


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StorageSettings:
    """Where certificate requests are persisted (``memory`` or ``database``)."""

    backend: str


def _build_storage(data: dict | None) -> StorageSettings:
    d = data or {}
    return StorageSettings(backend=d.get("backend", "memory"))


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """PostgreSQL connection and pool settings."""

    host: str
    port: int
    database: str
    user: str
    password: str
    sslmode: str
    min_connections: int
    max_connections: int
    connection_timeout: float
    auto_setup: bool


def _build_database(data: dict | None) -> DatabaseSettings | None:
    if not data:
        return None
    return DatabaseSettings(
        host=data.get("host", "localhost"),
        port=data.get("port", 5432),
        database=data["database"],
        user=data["user"],
        password=data.get("password", ""),
        sslmode=data.get("sslmode", "prefer"),
        min_connections=data.get("min_connections", 2),
        max_connections=data.get("max_connections", 10),
        connection_timeout=data.get("connection_timeout", 30.0),
        auto_setup=data.get("auto_setup", False),
    )


# ---------------------------------------------------------------------------
# Secret store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SecretsSettings:
    """Destination store for distributed certificate secrets."""

    backend: str
    kubeconfig: str | None
    in_cluster: bool
    labels: dict[str, str]


def _build_secrets(data: dict | None) -> SecretsSettings:
    d = data or {}
    return SecretsSettings(
        backend=d.get("backend", "memory"),
        kubeconfig=d.get("kubeconfig"),
        in_cluster=d.get("in_cluster", False),
        labels=dict(d.get("labels") or {}),
    )


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuditLogSettings:
    """State-transition audit log (rotating JSON file)."""

    enabled: bool
    file: str | None
    max_file_size_bytes: int
    backup_count: int


@dataclass(frozen=True)
class LoggingSettings:
    """Application logging configuration (level, format, audit)."""

    level: str
    format: str
    audit: AuditLogSettings


def _build_logging(data: dict | None) -> LoggingSettings:
    d = data or {}
    a = d.get("audit") or {}
    return LoggingSettings(
        level=d.get("level", "INFO"),
        format=d.get("format", "json"),
        audit=AuditLogSettings(
            enabled=a.get("enabled", False),
            file=a.get("file"),
            max_file_size_bytes=a.get("max_file_size_bytes", 104857600),
            backup_count=a.get("backup_count", 10),
        ),
    )


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class HookEntrySettings:
    """Single registered hook entry with events and config."""

    class_path: str
    enabled: bool
    events: tuple[str, ...]
    timeout_seconds: int | None
    config: dict[str, Any]


@dataclass(frozen=True)
class HookSettings:
    """Lifecycle hook system settings (workers, retries, registry)."""

    timeout_seconds: int
    max_workers: int
    max_retries: int
    dead_letter_log: str | None
    registered: tuple[HookEntrySettings, ...]


def _build_hooks(data: dict | None) -> HookSettings:
    from acmesync.hooks.events import KNOWN_EVENTS  # noqa: PLC0415

    d = data or {}
    registered = []
    for idx, entry in enumerate(d.get("registered", [])):
        events = tuple(entry.get("events", []))
        unknown = [evt for evt in events if evt not in KNOWN_EVENTS]
        if unknown:
            msg = (
                f"hooks.registered[{idx}].events: unknown event(s) "
                f"{unknown}. Known events: {sorted(KNOWN_EVENTS)}"
            )
            raise ValueError(msg)
        registered.append(
            HookEntrySettings(
                class_path=entry["class"],
                enabled=entry.get("enabled", True),
                events=events,
                timeout_seconds=entry.get("timeout_seconds"),
                config=entry.get("config", {}),
            )
        )
    return HookSettings(
        timeout_seconds=d.get("timeout_seconds", 30),
        max_workers=d.get("max_workers", 4),
        max_retries=d.get("max_retries", 0),
        dead_letter_log=d.get("dead_letter_log"),
        registered=tuple(registered),
    )


# ---------------------------------------------------------------------------
# Metrics / HTTP API
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MetricsSettings:
    enabled: bool
    path: str


def _build_metrics(data: dict | None) -> MetricsSettings:
    d = data or {}
    return MetricsSettings(
        enabled=d.get("enabled", True),
        path=d.get("path", "/metrics"),
    )


@dataclass(frozen=True)
class ApiSettings:
    """Embedded HTTP server for health, metrics and the admin API."""

    enabled: bool
    host: str
    port: int
    token: str | None


def _build_api(data: dict | None) -> ApiSettings:
    d = data or {}
    return ApiSettings(
        enabled=d.get("enabled", False),
        host=d.get("host", "127.0.0.1"),
        port=d.get("port", 8080),
        token=d.get("token") or None,
    )


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AcmesyncSettings:
    """Root of the typed settings tree."""

    controller: ControllerSettings
    dns: DnsSettings
    providers: tuple[DnsProviderSettings, ...]
    issuers: tuple[IssuerSettings, ...]
    certificates: tuple[CertificateSettings, ...]
    storage: StorageSettings
    database: DatabaseSettings | None
    secrets: SecretsSettings
    logging: LoggingSettings
    hooks: HookSettings
    metrics: MetricsSettings
    api: ApiSettings

    def issuer(self, name: str) -> IssuerSettings | None:
        for entry in self.issuers:
            if entry.name == name:
                return entry
        return None


def build_settings(data: dict) -> AcmesyncSettings:
    """Build the full typed settings tree from raw config data.

    Called once during :class:`AcmesyncConfig` initialization after
    schema validation and environment-variable resolution.
    """
    return AcmesyncSettings(
        controller=_build_controller(data.get("controller")),
        dns=_build_dns(data.get("dns")),
        providers=_build_providers(data.get("providers")),
        issuers=_build_issuers(data.get("issuers")),
        certificates=_build_certificates(data.get("certificates")),
        storage=_build_storage(data.get("storage")),
        database=_build_database(data.get("database")),
        secrets=_build_secrets(data.get("secrets")),
        logging=_build_logging(data.get("logging")),
        hooks=_build_hooks(data.get("hooks")),
        metrics=_build_metrics(data.get("metrics")),
        api=_build_api(data.get("api")),
    )
