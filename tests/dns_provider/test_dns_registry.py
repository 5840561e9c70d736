"""Tests for DNS provider loading."""

from __future__ import annotations

import pytest

from acmesync.config.settings import DnsProviderSettings
from acmesync.dns.cloudflare import CloudflareProvider
from acmesync.dns.registry import build_providers, load_dns_provider
from fakes import FakeDnsProvider


class TestLoadDnsProvider:
    def test_builtin_cloudflare(self):
        provider = load_dns_provider("cloudflare", {"api_token": "t"})
        assert isinstance(provider, CloudflareProvider)
        assert provider.config == {"api_token": "t"}

    def test_external_provider(self):
        provider = load_dns_provider("ext:fakes.FakeDnsProvider", {"region": "eu"})
        assert isinstance(provider, FakeDnsProvider)
        assert provider.config["region"] == "eu"

    def test_unknown_type(self):
        with pytest.raises(ValueError, match="Unknown DNS provider type 'route53'"):
            load_dns_provider("route53")

    def test_external_path_must_be_qualified(self):
        with pytest.raises(ValueError, match="fully"):
            load_dns_provider("ext:FakeDnsProvider")

    def test_external_class_must_subclass_provider(self):
        with pytest.raises(TypeError, match="subclass of DnsProvider"):
            load_dns_provider("ext:fakes.FakeChecker")

    def test_builtin_config_errors_surface(self):
        with pytest.raises(ValueError, match="api_token"):
            load_dns_provider("cloudflare", {})


class TestBuildProviders:
    def test_keyed_by_name(self):
        providers = build_providers(
            (
                DnsProviderSettings(name="main", type="cloudflare", config={"api_token": "a"}),
                DnsProviderSettings(name="lab", type="ext:fakes.FakeDnsProvider", config={}),
            ),
        )
        assert set(providers) == {"main", "lab"}
        assert isinstance(providers["main"], CloudflareProvider)
        assert isinstance(providers["lab"], FakeDnsProvider)

    def test_empty(self):
        assert build_providers(()) == {}
