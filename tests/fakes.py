"""In-process fakes shared by the test suite.

Nothing here touches the network: the DNS provider keeps its records in
a dict, the propagation checker reads that dict, and the ACME backend
self-signs whatever it is asked to issue.
"""

from __future__ import annotations

import copy
import itertools
import random
import threading
import uuid
from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from acmesync.acme.base import AcmeBackend, AcmeOrder
from acmesync.challenge.solver import ChallengeSolver
from acmesync.config.settings import build_settings
from acmesync.core.domains import normalize_domains
from acmesync.core.types import IssuerEnvironment
from acmesync.distribution.distributor import Distributor
from acmesync.distribution.memory import InMemorySecretStore
from acmesync.dns.base import DnsProvider
from acmesync.hooks.base import Hook
from acmesync.issuers.rate_limit import TokenBucket
from acmesync.issuers.registry import LETSENCRYPT_STAGING, IssuerRegistry
from acmesync.models.certificate_request import CertificateRequest
from acmesync.models.issuer import Issuer
from acmesync.reconciler.machine import RequestMachine, RetryPolicy
from acmesync.repositories.memory import InMemoryRequestStore

ZONE = "example.com"
ISSUER_NAME = "letsencrypt-staging"


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


def make_cert_pem(domains, *, days: float = 90, not_before: datetime | None = None) -> str:
    """Self-signed EC certificate covering *domains*."""
    domains = list(domains)
    key = ec.generate_private_key(ec.SECP256R1())
    start = not_before or datetime.now(UTC) - timedelta(minutes=5)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])])
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(start)
        .not_valid_after(start + timedelta(days=days))
        .add_extension(
            x509.SubjectAlternativeName([x509.DNSName(d) for d in domains]),
            critical=False,
        )
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii")


def make_issuer(name: str = ISSUER_NAME, zone: str = ZONE, **overrides) -> Issuer:
    fields = {
        "name": name,
        "directory_url": LETSENCRYPT_STAGING,
        "environment": IssuerEnvironment.STAGING,
        "email": "ops@example.com",
        "account_storage": f"/tmp/acmesync-test/{name}",
        "dns_provider": "cloudflare",
        "zone": zone,
    }
    fields.update(overrides)
    return Issuer(**fields)


def make_request(
    domains=("*.example.com",),
    namespaces=("production", "staging"),
    *,
    issuer_name: str = ISSUER_NAME,
    secret_name: str = "wildcard-tls",
    **overrides,
) -> CertificateRequest:
    return CertificateRequest(
        id=overrides.pop("id", uuid.uuid4()),
        issuer_name=issuer_name,
        domains=normalize_domains(domains),
        secret_name=secret_name,
        namespaces=tuple(namespaces),
        **overrides,
    )


# ---------------------------------------------------------------------------
# DNS
# ---------------------------------------------------------------------------


class FakeDnsProvider(DnsProvider):
    """Records live in a dict; scripted errors are raised in order."""

    def __init__(self, config: dict | None = None) -> None:
        super().__init__(config)
        self.records: dict[str, tuple[str, str, str]] = {}
        self.created: list[tuple[str, str]] = []
        self.deleted: list[str] = []
        self.create_errors: list[Exception] = []
        self.delete_errors: list[Exception] = []
        self.token_ok = True
        self.zone_ok = True
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create_record(self, zone, name, type, value, ttl):  # noqa: A002, ARG002
        with self._lock:
            if self.create_errors:
                raise self.create_errors.pop(0)
            record_id = f"rec-{next(self._ids)}"
            self.records[record_id] = (zone, name, value)
            self.created.append((name, value))
            return record_id

    def delete_record(self, zone, record_id):  # noqa: ARG002
        with self._lock:
            if self.delete_errors:
                raise self.delete_errors.pop(0)
            self.records.pop(record_id, None)
            self.deleted.append(record_id)

    def verify_token(self) -> bool:
        return self.token_ok

    def verify_zone(self, zone) -> bool:  # noqa: ARG002
        return self.zone_ok

    def values(self, name: str) -> set[str]:
        with self._lock:
            return {value for _zone, n, value in self.records.values() if n == name}


class FakeChecker:
    """Propagation checker that reads the fake provider's records.

    Setting :attr:`visible` forces every answer.
    """

    def __init__(self, provider: FakeDnsProvider | None = None, *, visible: bool | None = None) -> None:
        self.provider = provider
        self.visible = visible
        self.resolvers = ("1.1.1.1", "8.8.8.8")
        self.checks = 0

    def is_visible(self, name: str, expected: str) -> bool:
        self.checks += 1
        if self.visible is not None:
            return self.visible
        return self.provider is not None and expected in self.provider.values(name)


# ---------------------------------------------------------------------------
# ACME
# ---------------------------------------------------------------------------


class FakeOrder(AcmeOrder):
    def __init__(self, backend: FakeAcmeBackend, domains: tuple[str, ...]) -> None:
        self.backend = backend
        self.domains = domains
        self.finalize_calls = 0
        self.challenges: list[tuple[str, str]] = []

    def authorize(self, responder) -> None:
        for domain in self.domains:
            value = f"txt-{uuid.uuid4().hex}"
            self.challenges.append((domain, value))
            responder(domain, value)
        if self.backend.authorize_error is not None:
            raise self.backend.authorize_error

    def finalize(self, csr_der: bytes) -> None:
        self.finalize_calls += 1
        if self.backend.finalize_errors:
            raise self.backend.finalize_errors.pop(0)
        self.backend.csrs.append(csr_der)

    def certificate(self) -> str:
        return make_cert_pem(self.domains, days=self.backend.validity_days)


class FakeAcmeBackend(AcmeBackend):
    """ACME backend that self-signs; every failure point is scriptable."""

    def __init__(self, issuer: Issuer) -> None:
        super().__init__(issuer)
        self.orders: list[FakeOrder] = []
        self.order_errors: list[Exception] = []
        self.authorize_error: Exception | None = None
        self.finalize_errors: list[Exception] = []
        self.revoked: list[tuple[str, object]] = []
        self.revoke_error: Exception | None = None
        self.startup_error: Exception | None = None
        self.validity_days: float = 90
        self.csrs: list[bytes] = []

    def startup_check(self) -> None:
        if self.startup_error is not None:
            raise self.startup_error

    def new_order(self, domains):
        if self.order_errors:
            raise self.order_errors.pop(0)
        order = FakeOrder(self, tuple(domains))
        self.orders.append(order)
        return order

    def revoke(self, cert_pem, reason=None) -> None:
        if self.revoke_error is not None:
            raise self.revoke_error
        self.revoked.append((cert_pem, reason))


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


FAST_POLICY = RetryPolicy(
    max_retries=3,
    backoff_base=1,
    backoff_max=2,
    rate_limit_cooldown=60,
    issuance_timeout=5,
    issuance_poll=0.01,
)


class Harness:
    """A :class:`RequestMachine` for one issuer wired entirely to fakes."""

    def __init__(
        self,
        *,
        policy: RetryPolicy = FAST_POLICY,
        propagation_timeout: float = 0.5,
        bucket: TokenBucket | None = None,
        hooks=None,
        metrics=None,
        **machine_kwargs,
    ) -> None:
        self.issuer = make_issuer()
        self.provider = FakeDnsProvider()
        self.checker = FakeChecker(self.provider)
        self.backend = FakeAcmeBackend(self.issuer)
        self.solver = ChallengeSolver(
            self.provider,
            self.checker,
            zone=ZONE,
            propagation_timeout=propagation_timeout,
            poll_interval=0.01,
            hooks=hooks,
        )
        self.registry = IssuerRegistry()
        self.handle = self.registry.register(
            self.issuer,
            backend=self.backend,
            solver=self.solver,
            bucket=bucket or TokenBucket(1000),
        )
        self.store = InMemoryRequestStore()
        self.secrets = InMemorySecretStore()
        self.distributor = Distributor(self.secrets)
        self.machine = RequestMachine(
            self.store,
            self.registry,
            self.distributor,
            policy=policy,
            hooks=hooks,
            metrics=metrics,
            rng=random.Random(7),
            **machine_kwargs,
        )

    def create(self, domains=("*.example.com",), namespaces=("production", "staging"), **kw):
        request, _ = self.store.create_if_absent(make_request(domains, namespaces, **kw))
        return request

    def run(self, request, cancel=None):
        return self.machine.run(request, cancel)

    def issued(self, **kw):
        """Create a request and take it all the way to ``issued``."""
        return self.run(self.create(**kw))


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


BASE_SETTINGS: dict = {
    "controller": {
        "reconcile_interval_seconds": 0.05,
        "max_retries": 3,
        "backoff_base_seconds": 1,
        "backoff_max_seconds": 2,
        "issuance_timeout_seconds": 5,
        "issuance_poll_seconds": 0.01,
        "shutdown_timeout_seconds": 5,
    },
    "dns": {
        "resolvers": ["1.1.1.1"],
        "propagation_timeout_seconds": 0.5,
        "propagation_interval_seconds": 0.01,
    },
    "providers": [
        {"name": "cloudflare", "type": "cloudflare", "config": {"api_token": "test-token"}},
    ],
    "issuers": [
        {
            "name": ISSUER_NAME,
            "email": "ops@example.com",
            "dns_provider": "cloudflare",
            "zone": ZONE,
            "account_storage": "/tmp/acmesync-test/accounts",
        },
    ],
}


def deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge *overrides* into *base*."""
    for key, value in overrides.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            deep_merge(base[key], value)
        else:
            base[key] = value


def settings_data(overrides: dict | None = None) -> dict:
    data = copy.deepcopy(BASE_SETTINGS)
    if overrides:
        deep_merge(data, overrides)
    return data


def make_settings(overrides: dict | None = None):
    return build_settings(settings_data(overrides))


def make_container(settings=None, **kwargs):
    """A :class:`Container` whose DNS, ACME and stores are all fakes."""
    from acmesync.app.context import Container

    settings = settings or make_settings()
    provider = kwargs.pop("provider", None) or FakeDnsProvider()
    kwargs.setdefault("store", InMemoryRequestStore())
    kwargs.setdefault("secret_store", InMemorySecretStore())
    kwargs.setdefault("providers", {p.name: provider for p in settings.providers})
    kwargs.setdefault("checker", FakeChecker(provider))
    kwargs.setdefault("backend_factory", FakeAcmeBackend)
    return Container(settings, **kwargs)


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


class RecordingHook(Hook):
    """Appends every context it receives to the class-level :attr:`calls`."""

    calls: list[tuple[str, dict]] = []

    @classmethod
    def validate_config(cls, config: dict) -> None:
        if config.get("reject"):
            msg = "rejected by validate_config"
            raise ValueError(msg)

    def on_request_transition(self, ctx: dict) -> None:
        self.calls.append(("request.transition", ctx))

    def on_certificate_issued(self, ctx: dict) -> None:
        self.calls.append(("certificate.issued", ctx))


class FailingHook(Hook):
    attempts = 0

    def on_certificate_issued(self, ctx: dict) -> None:  # noqa: ARG002
        type(self).attempts += 1
        msg = "webhook unreachable"
        raise ConnectionError(msg)


class NotAHook:
    pass
