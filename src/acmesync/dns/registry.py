"""DNS provider loading.

Resolves the ``type`` of each ``providers.<name>`` entry to a
:class:`~acmesync.dns.base.DnsProvider` class (built-in names or
``ext:`` fully-qualified class paths) and instantiates it.

Usage::

    from acmesync.dns.registry import build_providers

    providers = build_providers(settings.providers)
    providers["cloudflare-main"].create_record(...)
"""

from __future__ import annotations

import importlib
import logging
from typing import TYPE_CHECKING, Any

from acmesync.dns.base import DnsProvider

if TYPE_CHECKING:
    from acmesync.config.settings import DnsProviderSettings

log = logging.getLogger(__name__)

# Maps config string → (module_path, class_name)
_BUILTIN_PROVIDERS: dict[str, tuple[str, str]] = {
    "cloudflare": ("acmesync.dns.cloudflare", "CloudflareProvider"),
}


def _resolve_class(provider_type: str) -> type[DnsProvider]:
    if provider_type in _BUILTIN_PROVIDERS:
        mod_path, cls_name = _BUILTIN_PROVIDERS[provider_type]
    elif provider_type.startswith("ext:"):
        fqn = provider_type[4:]
        mod_path, _, cls_name = fqn.rpartition(".")
        if not mod_path:
            msg = (
                f"Invalid external DNS provider '{fqn}': must be fully "
                "qualified (e.g. 'mypackage.module.ClassName')"
            )
            raise ValueError(msg)
    else:
        msg = (
            f"Unknown DNS provider type '{provider_type}'. "
            f"Built-in types: {sorted(_BUILTIN_PROVIDERS)}; "
            "use 'ext:package.module.Class' for custom providers"
        )
        raise ValueError(msg)

    module = importlib.import_module(mod_path)
    cls = getattr(module, cls_name)
    if not (isinstance(cls, type) and issubclass(cls, DnsProvider)):
        msg = f"DNS provider '{provider_type}' must be a subclass of DnsProvider"
        raise TypeError(msg)
    return cls


def load_dns_provider(provider_type: str, config: dict[str, Any] | None = None) -> DnsProvider:
    """Instantiate a single provider from its type string and options."""
    cls = _resolve_class(provider_type)
    provider = cls(config or {})
    log.info("Loaded DNS provider: %s", provider_type)
    return provider


def build_providers(
    settings: tuple[DnsProviderSettings, ...],
) -> dict[str, DnsProvider]:
    """Instantiate every configured provider, keyed by provider name."""
    providers: dict[str, DnsProvider] = {}
    for entry in settings:
        providers[entry.name] = load_dns_provider(entry.type, entry.config)
    return providers
