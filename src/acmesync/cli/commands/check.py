"""``check`` subcommand: verify an issuer's external dependencies.

Usage::

    acmesync -c config.yaml check issuer letsencrypt-staging
    acmesync -c config.yaml check issuer letsencrypt-prod --acme

Runs, in order: DNS credential check, zone access check, an end-to-end
TXT publish / resolve / delete round trip under
``_acme-challenge.acmesync-selftest.<zone>`` and, with ``--acme``, an
ACME account registration.  Exits non-zero if any step fails.
"""

from __future__ import annotations

import logging
import secrets
import sys

log = logging.getLogger(__name__)

SELFTEST_LABEL = "acmesync-selftest"


def _report(ok: bool, message: str) -> bool:
    print(f"[{'ok' if ok else 'FAIL'}] {message}")  # noqa: T201
    return ok


def run_check(config, args) -> None:
    """Dispatch check subcommands."""
    if getattr(args, "check_command", None) != "issuer":
        print("usage: acmesync -c CONFIG check issuer NAME", file=sys.stderr)  # noqa: T201
        sys.exit(1)
    sys.exit(0 if check_issuer(config.settings, args.name, args) else 1)


def check_issuer(settings, name: str, args, *, provider=None, checker=None) -> bool:  # noqa: C901, PLR0911
    """Run every check for issuer *name*; return True when all pass."""
    from acmesync.app.context import issuer_from_settings, provider_settings_with_zone_ids  # noqa: PLC0415
    from acmesync.challenge.solver import ChallengeSolver  # noqa: PLC0415
    from acmesync.core.errors import ReconcileError  # noqa: PLC0415
    from acmesync.dns.base import DnsProviderError  # noqa: PLC0415
    from acmesync.dns.propagation import PropagationChecker  # noqa: PLC0415
    from acmesync.dns.registry import load_dns_provider  # noqa: PLC0415

    entry = settings.issuer(name)
    if entry is None:
        return _report(False, f"issuer '{name}' is not configured")
    issuer = issuer_from_settings(entry)

    if provider is None:
        provider_settings = next(
            p for p in provider_settings_with_zone_ids(settings) if p.name == issuer.dns_provider
        )
        try:
            provider = load_dns_provider(provider_settings.type, provider_settings.config)
        except (ValueError, TypeError, ImportError) as exc:
            return _report(False, f"DNS provider '{issuer.dns_provider}' failed to load: {exc}")

    # 1. credentials
    try:
        token_ok = provider.verify_token()
    except DnsProviderError as exc:
        token_ok = False
        log.debug("Token verification error: %s", exc)
    if not _report(token_ok, f"DNS provider '{issuer.dns_provider}' accepts the credentials"):
        return False

    # 2. zone access
    try:
        zone_ok = provider.verify_zone(issuer.zone)
    except DnsProviderError as exc:
        zone_ok = False
        log.debug("Zone verification error: %s", exc)
    if not _report(zone_ok, f"zone '{issuer.zone}' is accessible"):
        return False

    # 3. TXT round trip
    solver = ChallengeSolver(
        provider,
        checker
        or PropagationChecker(
            settings.dns.resolvers,
            timeout_seconds=settings.dns.resolver_timeout_seconds,
        ),
        zone=issuer.zone,
        ttl=settings.dns.record_ttl,
        propagation_timeout=settings.dns.propagation_timeout_seconds,
        poll_interval=settings.dns.propagation_interval_seconds,
    )
    domain = f"{SELFTEST_LABEL}.{issuer.zone}"
    value = secrets.token_urlsafe(32)
    all_ok = True
    try:
        challenge = solver.publish(domain, value)
    except ReconcileError as exc:
        return _report(False, f"publish TXT {domain}: {exc.detail}")
    _report(True, f"published TXT {challenge.record_name} (id {challenge.record_id})")
    try:
        if not args.skip_propagation:
            try:
                solver.await_propagation(challenge)
            except ReconcileError as exc:
                all_ok = _report(False, f"propagation: {exc.detail}")
            else:
                _report(True, f"TXT visible on {', '.join(solver.checker.resolvers)}")
    finally:
        try:
            solver.cleanup(challenge)
        except ReconcileError as exc:
            all_ok = _report(False, f"delete TXT {challenge.record_name}: {exc.detail}")
        else:
            _report(True, f"deleted TXT {challenge.record_name}")

    # 4. ACME account
    if getattr(args, "acme", False):
        from acmesync.acme.acmeow_backend import AcmeowBackend  # noqa: PLC0415

        try:
            AcmeowBackend(issuer).startup_check()
        except ReconcileError as exc:
            all_ok = _report(False, f"ACME account at {issuer.directory_url}: {exc.detail}")
        else:
            _report(True, f"ACME account ready at {issuer.directory_url}")

    return all_ok
