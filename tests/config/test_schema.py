"""Tests for the bundled JSON Schema."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from jsonschema import ValidationError, validate

from fakes import settings_data

SCHEMA_PATH = (
    Path(__file__).resolve().parent.parent.parent / "src" / "acmesync" / "config" / "schema.json"
)


@pytest.fixture(scope="module")
def schema() -> dict:
    return json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))


def _with_certificate(**overrides) -> dict:
    cert = {
        "secret_name": "wildcard-tls",
        "issuer": "letsencrypt-staging",
        "domains": ["*.example.com"],
        "namespaces": ["production"],
    }
    cert.update(overrides)
    return settings_data({"certificates": [cert]})


class TestSchemaValid:
    def test_test_settings_validate(self, schema):
        validate(instance=settings_data(), schema=schema)

    def test_full_config(self, schema):
        cfg = settings_data(
            {
                "storage": {"backend": "database"},
                "database": {"database": "acmesync", "user": "acmesync", "sslmode": "require"},
                "secrets": {"backend": "kubernetes", "in_cluster": True, "labels": {"team": "ops"}},
                "logging": {"level": "DEBUG", "format": "text", "audit": {"enabled": True}},
                "hooks": {"registered": [{"class": "pkg.Hook", "events": ["certificate.issued"]}]},
                "metrics": {"enabled": True, "path": "/metrics"},
                "api": {"enabled": True, "host": "0.0.0.0", "port": 8080, "token": "t"},
            },
        )
        validate(instance=cfg, schema=schema)

    def test_certificate(self, schema):
        validate(instance=_with_certificate(), schema=schema)


class TestSchemaInvalid:
    @pytest.mark.parametrize(
        "cert_overrides",
        [
            {"domains": []},
            {"namespaces": []},
            {"secret_name": "Wildcard_TLS"},
            {"extra": True},
        ],
    )
    def test_bad_certificate(self, schema, cert_overrides):
        with pytest.raises(ValidationError):
            validate(instance=_with_certificate(**cert_overrides), schema=schema)

    def test_issuer_requires_zone(self, schema):
        cfg = settings_data()
        del cfg["issuers"][0]["zone"]
        with pytest.raises(ValidationError, match="'zone' is a required property"):
            validate(instance=cfg, schema=schema)

    def test_unknown_environment(self, schema):
        cfg = settings_data()
        cfg["issuers"][0]["environment"] = "testing"
        with pytest.raises(ValidationError):
            validate(instance=cfg, schema=schema)

    def test_storage_backend_enum(self, schema):
        with pytest.raises(ValidationError):
            validate(instance=settings_data({"storage": {"backend": "sqlite"}}), schema=schema)

    def test_api_port_range(self, schema):
        with pytest.raises(ValidationError):
            validate(instance=settings_data({"api": {"port": 70000}}), schema=schema)

    def test_metrics_path_must_be_absolute(self, schema):
        with pytest.raises(ValidationError):
            validate(instance=settings_data({"metrics": {"path": "metrics"}}), schema=schema)

    def test_unknown_top_level_section(self, schema):
        with pytest.raises(ValidationError):
            validate(instance=settings_data({"server": {}}), schema=schema)
