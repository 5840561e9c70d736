"""Tests for the dependency container and its builders."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import flask
import pytest

from acmesync.app.context import (
    build_request_store,
    build_secret_store,
    get_container,
    issuer_from_settings,
    provider_settings_with_zone_ids,
)
from acmesync.core.errors import IssuerUnavailable
from acmesync.core.types import IssuerEnvironment, KeyType, RequestState
from acmesync.distribution.memory import InMemorySecretStore
from acmesync.repositories.memory import InMemoryRequestStore
from fakes import BASE_SETTINGS, ISSUER_NAME, FakeDnsProvider, make_container, make_settings


def _issuers_with(**fields) -> dict:
    return {"issuers": [{**BASE_SETTINGS["issuers"][0], **fields}]}


class TestIssuerFromSettings:
    def test_converts_enums(self):
        issuer = issuer_from_settings(make_settings().issuers[0])
        assert issuer.name == ISSUER_NAME
        assert issuer.environment is IssuerEnvironment.STAGING
        assert issuer.key_type is KeyType.EC
        assert issuer.zone == "example.com"


class TestProviderZoneIds:
    def test_pins_issuer_zone_id(self):
        settings = make_settings(_issuers_with(zone_id="zone-123"))

        (provider,) = provider_settings_with_zone_ids(settings)

        assert provider.config["zone_ids"] == {"example.com": "zone-123"}
        assert provider.config["api_token"] == "test-token"

    def test_explicit_provider_mapping_wins(self):
        data = _issuers_with(zone_id="zone-123")
        data["providers"] = [
            {
                "name": "cloudflare",
                "type": "cloudflare",
                "config": {"api_token": "t", "zone_ids": {"example.com": "explicit"}},
            },
        ]

        (provider,) = provider_settings_with_zone_ids(make_settings(data))

        assert provider.config["zone_ids"] == {"example.com": "explicit"}

    def test_untouched_without_zone_id(self):
        settings = make_settings()
        assert provider_settings_with_zone_ids(settings) == settings.providers


class TestStoreBuilders:
    def test_memory_request_store(self):
        assert isinstance(build_request_store(make_settings()), InMemoryRequestStore)

    def test_database_request_store(self):
        settings = make_settings(
            {"storage": {"backend": "database"}, "database": {"database": "acmesync", "user": "acmesync"}},
        )
        db = MagicMock()
        with patch("acmesync.db.init.init_database", return_value=db) as mock_init:
            store = build_request_store(settings)

        mock_init.assert_called_once_with(settings.database)
        assert type(store).__name__ == "CertificateRequestRepository"

    def test_database_backend_without_section(self):
        with pytest.raises(ValueError, match="no database section"):
            build_request_store(make_settings({"storage": {"backend": "database"}}))

    def test_memory_secret_store(self):
        assert isinstance(build_secret_store(make_settings().secrets), InMemorySecretStore)

    def test_kubernetes_secret_store(self):
        settings = make_settings({"secrets": {"backend": "kubernetes", "in_cluster": True}})
        with patch("acmesync.distribution.kubernetes.KubernetesSecretStore") as mock_store:
            store = build_secret_store(settings.secrets)

        assert store is mock_store.return_value
        assert mock_store.call_args.kwargs["in_cluster"] is True


class TestContainer:
    def test_wiring(self):
        container = make_container()
        try:
            assert container.issuers.names() == [ISSUER_NAME]
            assert container.controller.store is container.store
            assert container.machine.registry is container.issuers
            assert container.metrics is not None
        finally:
            container.shutdown()

    def test_metrics_disabled(self):
        container = make_container(make_settings({"metrics": {"enabled": False}}))
        try:
            assert container.metrics is None
        finally:
            container.shutdown()

    def test_declared_certificate_reconciled(self):
        settings = make_settings(
            {
                "certificates": [
                    {
                        "secret_name": "wildcard-tls",
                        "issuer": ISSUER_NAME,
                        "domains": ["*.example.com"],
                        "namespaces": ["production"],
                    },
                ],
            },
        )
        container = make_container(settings)
        try:
            container.scheduler.tick()
            container.scheduler.wait_idle(timeout=5)

            (request,) = container.store.list_requests()
            assert request.state is RequestState.ISSUED
            assert container.secret_store.get("production", "wildcard-tls") is not None
        finally:
            container.shutdown()

    def test_shutdown_closes_hook_pool(self):
        container = make_container()
        container.shutdown()
        assert container.hook_registry.is_shutdown


class TestStartupCheck:
    def test_all_ok(self):
        container = make_container()
        try:
            assert container.startup_check() == {
                "issuers": {ISSUER_NAME: None},
                "zones": {ISSUER_NAME: True},
            }
        finally:
            container.shutdown()

    def test_zone_not_manageable(self):
        provider = FakeDnsProvider()
        provider.zone_ok = False
        container = make_container(provider=provider)
        try:
            assert container.startup_check()["zones"] == {ISSUER_NAME: False}
        finally:
            container.shutdown()

    def test_zone_check_raises(self):
        provider = FakeDnsProvider()
        provider.verify_zone = MagicMock(side_effect=ConnectionError("unreachable"))
        container = make_container(provider=provider)
        try:
            assert container.startup_check()["zones"] == {ISSUER_NAME: False}
        finally:
            container.shutdown()

    def test_issuer_account_failure(self):
        container = make_container()
        try:
            container.issuers.get(ISSUER_NAME).backend.startup_error = IssuerUnavailable("EAB rejected")
            assert container.startup_check()["issuers"] == {ISSUER_NAME: "EAB rejected"}
        finally:
            container.shutdown()


class TestGetContainer:
    def test_from_app_extensions(self):
        app = flask.Flask("test_context")
        sentinel = object()
        app.extensions["container"] = sentinel
        with app.app_context():
            assert get_container() is sentinel
