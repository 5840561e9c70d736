"""acmesync configuration loader built on ConfigKit.

Lifecycle::

    # 1. CLI creates the singleton (once, at startup)
    AcmesyncConfig(config_file="/etc/acmesync/config.yaml")

    # 2. Any module retrieves it afterwards
    from acmesync.config import get_config
    cfg = get_config()
    cfg.settings.controller.reconcile_interval_seconds

    # 3. Extension / dynamic access
    cfg.get("providers", default=[])
"""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

from configkit import ConfigKit, ConfigKitMeta

from acmesync.config.settings import AcmesyncSettings, build_settings

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

# Whole-value references only: ${VAR}, ${VAR:-default} or ${file:/path}.
_REF_RE = re.compile(
    r"\A\$\{(?:file:(?P<file>[^}]+)"
    r"|(?P<var>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<default>.*))?)\}\Z",
    re.DOTALL,
)

_BUILTIN_PROVIDER_TYPES = frozenset({"cloudflare"})
_MAX_SENSIBLE_RENEW_BEFORE_DAYS = 90

log = logging.getLogger(__name__)

_instance: AcmesyncConfig | None = None


def get_config() -> AcmesyncConfig:
    """Return the initialised configuration singleton.

    Raises :class:`RuntimeError` if :class:`AcmesyncConfig` has not been
    created yet.
    """
    if _instance is None:
        msg = (
            "Configuration not initialised. "
            "AcmesyncConfig must be created with config_file= before calling get_config()."
        )
        raise RuntimeError(msg)
    return _instance


class ConfigValidationError(Exception):
    """Raised when cross-field validation finds one or more problems."""

    def __init__(self, errors: list[str]) -> None:
        self.errors = errors
        body = "\n".join(f"  - {e}" for e in errors)
        super().__init__(f"Configuration validation failed:\n{body}")


def _dereference(value: str, path: str, errors: list[str]) -> str:
    match = _REF_RE.match(value)
    if match is None:
        return value

    if match["file"] is not None:
        # Mounted secret files usually end with a newline.
        try:
            return Path(match["file"]).read_text(encoding="utf-8").strip()
        except OSError as exc:
            errors.append(f"'{path}': cannot read secret file {match['file']}: {exc.strerror}")
            return value

    resolved = os.environ.get(match["var"], match["default"])
    if resolved is None:
        errors.append(
            f"'{path}': environment variable '{match['var']}' is not set and has no default",
        )
        return value
    return resolved


def resolve_env_vars(data: Any) -> None:  # noqa: ANN401
    """Replace whole-value ``${...}`` references in *data*, in place.

    Supported forms are ``${VAR}``, ``${VAR:-default}`` and
    ``${file:/path}`` (file content, surrounding whitespace stripped).
    Every unresolved reference is reported in one
    :class:`ConfigValidationError`.
    """
    errors: list[str] = []
    stack: list[tuple[Any, str]] = [(data, "")]
    while stack:
        node, path = stack.pop()
        if isinstance(node, dict):
            children = [(key, f"{path}.{key}" if path else str(key)) for key in node]
        elif isinstance(node, list):
            children = [(idx, f"{path}[{idx}]") for idx in range(len(node))]
        else:
            continue
        for key, child_path in children:
            child = node[key]
            if isinstance(child, str):
                node[key] = _dereference(child, child_path, errors)
            else:
                stack.append((child, child_path))
    if errors:
        raise ConfigValidationError(sorted(errors))


def _domain_in_zone(domain: str, zone: str) -> bool:
    bare = domain.lower().rstrip(".").removeprefix("*.")
    zone = zone.lower().rstrip(".")
    return bare == zone or bare.endswith("." + zone)


# ---------------------------------------------------------------------------
# Config class
# ---------------------------------------------------------------------------


class AcmesyncConfig(ConfigKit):
    """Central configuration for the acmesync controller.

    The JSON schema is bundled at ``config/schema.json``; callers supply
    only ``config_file``.  After construction the typed settings tree is
    available at :pyattr:`settings`.
    """

    def __init__(
        self,
        *,
        config_file: str | Path,
        schema_file: str | Path | None = None,  # noqa: ARG002
    ) -> None:
        """Load, validate and materialise the configuration.

        Parameters
        ----------
        config_file:
            Path to the YAML/JSON configuration file.
        schema_file:
            Ignored.  Accepted only for the :class:`ConfigKitMeta`
            singleton guard.

        """
        global _instance  # noqa: PLW0603

        super().__init__(
            config_file=config_file,
            schema_file=_SCHEMA_PATH,
        )
        self._settings: AcmesyncSettings = build_settings(self.data)
        _instance = self

    def _load(self) -> None:
        """Load the file, then resolve env-var references before schema validation."""
        super()._load()
        resolve_env_vars(self._data)

    @property
    def settings(self) -> AcmesyncSettings:
        """Fully-typed, frozen settings tree."""
        return self._settings

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:  # noqa: C901, PLR0912
        """Cross-field validation, run by ConfigKit after the schema passes."""
        errors: list[str] = []
        warnings: list[str] = []

        controller = self.data.get("controller") or {}
        dns_cfg = self.data.get("dns") or {}
        providers = self.data.get("providers") or []
        issuers = self.data.get("issuers") or []
        certificates = self.data.get("certificates") or []
        storage = self.data.get("storage") or {}

        # -- providers --
        provider_names: set[str] = set()
        for idx, provider in enumerate(providers):
            name = provider.get("name")
            if name in provider_names:
                errors.append(f"providers[{idx}]: duplicate provider name '{name}'")
            provider_names.add(name)
            ptype = provider.get("type", "cloudflare")
            if ptype not in _BUILTIN_PROVIDER_TYPES and not ptype.startswith("ext:"):
                errors.append(
                    f"providers[{idx}].type '{ptype}' is unknown; built-in types: "
                    f"{sorted(_BUILTIN_PROVIDER_TYPES)}, or use 'ext:package.module.Class'",
                )
            if ptype == "cloudflare" and not (provider.get("config") or {}).get("api_token"):
                errors.append(f"providers[{idx}].config.api_token is required for cloudflare")

        # -- issuers --
        zones: dict[str, str] = {}
        for idx, issuer in enumerate(issuers):
            name = issuer.get("name")
            if name in zones:
                errors.append(f"issuers[{idx}]: duplicate issuer name '{name}'")
            zones[name] = issuer.get("zone", "")
            if issuer.get("dns_provider") not in provider_names:
                errors.append(
                    f"issuers[{idx}].dns_provider '{issuer.get('dns_provider')}' "
                    "does not name a configured provider",
                )
            if bool(issuer.get("eab_kid")) != bool(issuer.get("eab_hmac_key")):
                errors.append(
                    f"issuers[{idx}]: eab_kid and eab_hmac_key must be set together",
                )

        # -- certificates --
        for idx, cert in enumerate(certificates):
            issuer_name = cert.get("issuer")
            if issuer_name not in zones:
                errors.append(
                    f"certificates[{idx}].issuer '{issuer_name}' is not a configured issuer",
                )
                continue
            zone = zones[issuer_name]
            for domain in cert.get("domains", []):
                if not _domain_in_zone(domain, zone):
                    errors.append(
                        f"certificates[{idx}]: domain '{domain}' is outside "
                        f"zone '{zone}' of issuer '{issuer_name}'",
                    )

        # -- storage --
        if storage.get("backend") == "database" and not self.data.get("database"):
            errors.append("storage.backend is 'database' but no database section is configured")

        # -- controller --
        base = controller.get("backoff_base_seconds", 30)
        cap = controller.get("backoff_max_seconds", 3600)
        if base > cap:
            errors.append(
                f"controller.backoff_base_seconds ({base}) must be <= "
                f"controller.backoff_max_seconds ({cap})",
            )
        renew_before = controller.get("renew_before_days", 15)
        if renew_before >= _MAX_SENSIBLE_RENEW_BEFORE_DAYS:
            warnings.append(
                f"controller.renew_before_days ({renew_before}) is not shorter than "
                "a 90-day certificate; every certificate will renew immediately",
            )

        # -- dns --
        interval = dns_cfg.get("propagation_interval_seconds", 5)
        timeout = dns_cfg.get("propagation_timeout_seconds", 120)
        if interval > timeout:
            errors.append(
                f"dns.propagation_interval_seconds ({interval}) must be <= "
                f"dns.propagation_timeout_seconds ({timeout})",
            )

        for w in warnings:
            log.warning("Config warning: %s", w)

        if errors:
            raise ConfigValidationError(errors)

    # -- helpers ------------------------------------------------------------

    def reload_settings(self) -> AcmesyncSettings:
        """Re-read the config file and return a fresh settings tree.

        Does not replace the singleton.  Used on SIGHUP.
        """
        import json  # noqa: PLC0415

        import yaml  # noqa: PLC0415

        source_file = self.data.get("_source", "")
        if not source_file:
            msg = "Cannot reload: no source file recorded"
            raise RuntimeError(msg)

        with open(source_file, encoding="utf-8") as f:  # noqa: PTH123
            if source_file.endswith((".yaml", ".yml")):
                new_data = yaml.safe_load(f)
            else:
                new_data = json.load(f)

        resolve_env_vars(new_data)
        return build_settings(new_data)

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        global _instance  # noqa: PLW0603
        _instance = None
        ConfigKitMeta.reset()

    def __repr__(self) -> str:
        source = self.data.get("_source", "?")
        return f"<AcmesyncConfig config_file={source}>"
