"""Configuration subsystem for acmesync.

Public API::

    from acmesync.config import get_config, AcmesyncConfig

    # At startup (CLI only):
    AcmesyncConfig(config_file="config.yaml")

    # Everywhere else:
    cfg = get_config()
    interval = cfg.settings.controller.reconcile_interval_seconds
"""

from acmesync.config.acmesync_config import (
    AcmesyncConfig,
    ConfigValidationError,
    get_config,
)
from acmesync.config.settings import (
    AcmesyncSettings,
    ApiSettings,
    AuditLogSettings,
    CertificateSettings,
    ControllerSettings,
    DatabaseSettings,
    DnsProviderSettings,
    DnsSettings,
    HookEntrySettings,
    HookSettings,
    IssuerSettings,
    LoggingSettings,
    MetricsSettings,
    SecretsSettings,
    StorageSettings,
    build_settings,
)

__all__ = [
    "AcmesyncConfig",
    "AcmesyncSettings",
    "ApiSettings",
    "AuditLogSettings",
    "CertificateSettings",
    "ConfigValidationError",
    "ControllerSettings",
    "DatabaseSettings",
    "DnsProviderSettings",
    "DnsSettings",
    "HookEntrySettings",
    "HookSettings",
    "IssuerSettings",
    "LoggingSettings",
    "MetricsSettings",
    "SecretsSettings",
    "StorageSettings",
    "build_settings",
    "get_config",
]
