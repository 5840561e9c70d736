"""``run`` subcommand: the long-running controller process."""

from __future__ import annotations

import logging
import sys
from dataclasses import replace

log = logging.getLogger(__name__)


def run_controller(config, args) -> None:
    """Start the scheduler (and the HTTP API when enabled) until signalled."""
    from acmesync.app.context import Container  # noqa: PLC0415
    from acmesync.app.shutdown import ShutdownCoordinator  # noqa: PLC0415

    settings = config.settings
    coordinator = ShutdownCoordinator(
        graceful_timeout=settings.controller.shutdown_timeout_seconds,
    )

    try:
        container = Container(settings, shutdown_coordinator=coordinator)
    except Exception as exc:
        if args.debug:
            raise
        print(f"error: controller initialisation failed: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    checks = container.startup_check()
    broken = [name for name, detail in checks["issuers"].items() if detail is not None]
    broken += [name for name, ok in checks["zones"].items() if not ok and name not in broken]
    if broken:
        log.warning(
            "Issuers not usable at startup: %s; their requests fail until fixed",
            ", ".join(sorted(broken)),
        )

    server = None
    if settings.api.enabled:
        from acmesync.app.factory import create_app  # noqa: PLC0415
        from acmesync.app.server import ApiServer  # noqa: PLC0415

        server = ApiServer(create_app(container), settings.api.host, settings.api.port)
        server.start()

    coordinator.add_step("controller", container.shutdown)
    if server is not None:
        coordinator.add_step("api", server.stop)
    coordinator.register_signals()
    coordinator.register_reload_signal()
    container.scheduler.start()

    try:
        while not coordinator.wait(timeout=1.0):
            if coordinator.reload_requested:
                coordinator.consume_reload()
                apply_reload(config, container)
    finally:
        coordinator.run_steps()
        log.info("acmesync stopped")


def apply_reload(config, container) -> list[str]:
    """Apply the reload-safe parts of a re-read configuration.

    Safe: logging level, declared certificates, reconcile interval.
    Everything else needs a restart and is only reported.
    """
    try:
        new = config.reload_settings()
    except Exception:
        log.exception("Config reload failed; keeping current settings")
        return []

    scheduler = container.scheduler
    current = container.settings
    updated = current
    reloaded: list[str] = []

    if new.logging.level != current.logging.level:
        logging.getLogger("acmesync").setLevel(new.logging.level.upper())
        updated = replace(updated, logging=replace(updated.logging, level=new.logging.level))
        reloaded.append(f"logging.level={new.logging.level}")

    if new.certificates != current.certificates:
        usable = []
        for cert in new.certificates:
            if cert.issuer in container.issuers:
                usable.append(cert)
            else:
                log.warning(
                    "Declared certificate %s references issuer %s which is not loaded; "
                    "restart to add issuers",
                    cert.secret_name,
                    cert.issuer,
                )
        scheduler.certificates = tuple(usable)
        updated = replace(updated, certificates=new.certificates)
        reloaded.append("certificates")

    interval = new.controller.reconcile_interval_seconds
    if interval != current.controller.reconcile_interval_seconds:
        scheduler.interval = interval
        updated = replace(
            updated,
            controller=replace(updated.controller, reconcile_interval_seconds=interval),
        )
        reloaded.append(f"controller.reconcile_interval_seconds={interval}")

    for section in ("issuers", "providers", "storage", "database", "secrets", "hooks", "api"):
        if getattr(new, section) != getattr(current, section):
            log.warning("Config section '%s' changed; restart to apply", section)

    if reloaded:
        container.settings = updated
        scheduler.wake()
        log.info("Config reloaded sections: %s", ", ".join(reloaded))
    else:
        log.info("Config reload requested but no reload-safe changes detected")
    return reloaded
