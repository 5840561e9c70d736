"""Tests for the CLI subcommands: check, request, status and run."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import uuid
from unittest.mock import MagicMock, patch

import pytest

from acmesync.cli.commands.check import SELFTEST_LABEL, check_issuer
from acmesync.cli.commands.request import build_controller, print_table, run_request
from acmesync.cli.commands.run import apply_reload, run_controller
from acmesync.cli.commands.status import run_status
from acmesync.dns.base import DnsProviderError
from acmesync.reconciler import Controller
from fakes import ISSUER_NAME, FakeChecker, FakeDnsProvider, Harness, make_settings


def _check_args(**overrides):
    return argparse.Namespace(**{"skip_propagation": False, "acme": False, **overrides})


def _request_args(sub, **fields):
    return argparse.Namespace(request_command=sub, **fields)


# ---------------------------------------------------------------------------
# check issuer
# ---------------------------------------------------------------------------


class TestCheckIssuer:
    @pytest.fixture()
    def provider(self):
        return FakeDnsProvider()

    def _run(self, provider, checker=None, **args):
        return check_issuer(
            make_settings(),
            ISSUER_NAME,
            _check_args(**args),
            provider=provider,
            checker=checker or FakeChecker(provider),
        )

    def test_all_steps_pass(self, provider, capsys):
        assert self._run(provider) is True

        out = capsys.readouterr().out
        assert "[ok] DNS provider 'cloudflare' accepts the credentials" in out
        assert "[ok] zone 'example.com' is accessible" in out
        assert "TXT visible on 1.1.1.1, 8.8.8.8" in out
        assert provider.created[0][0] == f"_acme-challenge.{SELFTEST_LABEL}.example.com"
        assert provider.records == {}

    def test_unknown_issuer(self, provider, capsys):
        assert check_issuer(make_settings(), "nope", _check_args(), provider=provider) is False
        assert "issuer 'nope' is not configured" in capsys.readouterr().out

    def test_token_rejected(self, provider, capsys):
        provider.token_ok = False
        assert self._run(provider) is False
        assert "[FAIL] DNS provider" in capsys.readouterr().out
        assert provider.created == []

    def test_token_check_error(self, provider):
        provider.verify_token = MagicMock(side_effect=DnsProviderError("forbidden", status=403))
        assert self._run(provider) is False

    def test_zone_inaccessible(self, provider, capsys):
        provider.zone_ok = False
        assert self._run(provider) is False
        assert "[FAIL] zone 'example.com'" in capsys.readouterr().out

    def test_publish_fails(self, provider, capsys):
        provider.create_errors = [DnsProviderError("Authentication error", status=403)]
        assert self._run(provider) is False
        assert "[FAIL] publish TXT" in capsys.readouterr().out

    def test_propagation_fails_but_record_removed(self, provider, capsys):
        assert self._run(provider, FakeChecker(visible=False)) is False

        out = capsys.readouterr().out
        assert "[FAIL] propagation" in out
        assert "[ok] deleted TXT" in out
        assert provider.records == {}

    def test_skip_propagation(self, provider):
        checker = FakeChecker(visible=False)
        assert self._run(provider, checker, skip_propagation=True) is True
        assert checker.checks == 0

    def test_delete_fails(self, provider, capsys):
        provider.delete_errors = [DnsProviderError("Authentication error", status=403)]
        assert self._run(provider) is False
        assert "[FAIL] delete TXT" in capsys.readouterr().out

    def test_acme_account(self, provider, capsys):
        with patch("acmesync.acme.acmeow_backend.AcmeowBackend") as mock_backend:
            assert self._run(provider, acme=True) is True
        mock_backend.return_value.startup_check.assert_called_once()
        assert "[ok] ACME account ready" in capsys.readouterr().out


# ---------------------------------------------------------------------------
# request / status
# ---------------------------------------------------------------------------


@pytest.fixture()
def h():
    return Harness()


@pytest.fixture()
def config():
    return MagicMock(settings=make_settings())


@pytest.fixture()
def controller(h):
    return Controller(h.store, h.registry)


class TestRequestCommands:
    def test_create(self, config, controller, h, capsys):
        args = _request_args(
            "create",
            issuer=ISSUER_NAME,
            domains=["*.example.com"],
            secret_name="wildcard-tls",
            namespaces=["production"],
        )

        run_request(config, args, controller)

        (request,) = h.store.list_requests()
        assert capsys.readouterr().out.strip() == f"{request.id} created (pending)"

    def test_create_coalesced(self, config, controller, h, capsys):
        existing = h.create(namespaces=("production",))
        args = _request_args(
            "create",
            issuer=ISSUER_NAME,
            domains=["*.example.com"],
            secret_name="wildcard-tls",
            namespaces=["production"],
        )

        run_request(config, args, controller)

        assert f"{existing.id} already active" in capsys.readouterr().out

    def test_create_unknown_issuer(self, config, controller, capsys):
        args = _request_args(
            "create", issuer="nope", domains=["example.com"], secret_name="s", namespaces=["web"],
        )
        with pytest.raises(SystemExit):
            run_request(config, args, controller)
        assert "unknown issuer 'nope'" in capsys.readouterr().err

    def test_create_outside_zone(self, config, controller, capsys):
        args = _request_args(
            "create", issuer=ISSUER_NAME, domains=["a.other.org"], secret_name="s", namespaces=["web"],
        )
        with pytest.raises(SystemExit):
            run_request(config, args, controller)
        assert "outside zone 'example.com'" in capsys.readouterr().err

    def test_list(self, config, controller, h, capsys):
        issued = h.issued()
        h.create(domains=("api.example.com",), namespaces=("web",), secret_name="api-tls")

        run_request(config, _request_args("list", state=None), controller)

        lines = capsys.readouterr().out.splitlines()
        assert lines[0].split() == ["ID", "ISSUER", "STATE", "EXPIRES", "DOMAINS", "NAMESPACES"]
        assert len(lines) == 3
        assert str(issued.id) in lines[1]
        assert "production,staging" in lines[1]
        assert "web(pending)" in lines[2]

    def test_list_by_state(self, config, controller, h, capsys):
        h.issued()
        h.create(domains=("api.example.com",))

        run_request(config, _request_args("list", state=["pending"]), controller)

        assert len(capsys.readouterr().out.splitlines()) == 2

    def test_show(self, config, controller, h, capsys):
        request = h.issued()

        run_request(config, _request_args("show", request_id=str(request.id)), controller)

        body = json.loads(capsys.readouterr().out)
        assert body["id"] == str(request.id)
        assert body["state"] == "issued"
        assert body["attempts"]

    def test_show_missing(self, config, controller, capsys):
        with pytest.raises(SystemExit):
            run_request(config, _request_args("show", request_id=str(uuid.uuid4())), controller)
        assert "not found" in capsys.readouterr().err

    def test_show_bad_uuid(self, config, controller, capsys):
        with pytest.raises(SystemExit):
            run_request(config, _request_args("show", request_id="nope"), controller)
        assert "invalid argument" in capsys.readouterr().err

    def test_delete(self, config, controller, h, capsys):
        request = h.create()
        run_request(config, _request_args("delete", request_id=str(request.id)), controller)
        assert h.store.find_request(request.id).deletion_requested is True
        assert "flagged for deletion" in capsys.readouterr().out

    def test_retry_refused(self, config, controller, h, capsys):
        request = h.create()
        with pytest.raises(SystemExit):
            run_request(config, _request_args("retry", request_id=str(request.id)), controller)
        assert "only failed or issued" in capsys.readouterr().err

    def test_revoke(self, config, controller, h, capsys):
        request = h.issued()
        run_request(
            config,
            _request_args("revoke", request_id=str(request.id), reason="superseded"),
            controller,
        )
        assert h.store.find_request(request.id).revocation_reason == "superseded"
        assert "flagged for revocation (superseded)" in capsys.readouterr().out

    def test_missing_subcommand(self, config, controller):
        with pytest.raises(SystemExit):
            run_request(config, _request_args(None), controller)

    def test_memory_storage_refused(self, capsys):
        with pytest.raises(SystemExit):
            build_controller(make_settings())
        assert "storage.backend: database" in capsys.readouterr().err


class TestPrintTable:
    def test_failed_namespace_marked(self, h, capsys):
        issued = h.issued()
        print_table([dataclasses.replace(issued, failed_namespaces=("staging",))])
        assert "production,staging(failed)" in capsys.readouterr().out


class TestStatus:
    def test_summary_and_table(self, config, controller, h, capsys):
        h.issued()
        h.create(domains=("api.example.com",))

        run_status(config, argparse.Namespace(), controller)

        out = capsys.readouterr().out
        assert out.splitlines()[0] == "requests: pending=1, issued=1 (active 2)"

    def test_empty(self, config, controller, capsys):
        run_status(config, argparse.Namespace(), controller)
        assert capsys.readouterr().out.startswith("requests: none (active 0)")


# ---------------------------------------------------------------------------
# run / reload
# ---------------------------------------------------------------------------


@pytest.fixture()
def _restore_acmesync_level():
    logger = logging.getLogger("acmesync")
    level = logger.level
    yield
    logger.setLevel(level)


class TestApplyReload:
    def _container(self, settings):
        container = MagicMock()
        container.settings = settings
        container.issuers = {ISSUER_NAME}
        return container

    def test_reload_safe_sections(self, _restore_acmesync_level):
        current = make_settings()
        new = make_settings(
            {
                "logging": {"level": "DEBUG"},
                "controller": {"reconcile_interval_seconds": 30},
                "certificates": [
                    {
                        "secret_name": "wildcard-tls",
                        "issuer": ISSUER_NAME,
                        "domains": ["*.example.com"],
                        "namespaces": ["production"],
                    },
                    {
                        "secret_name": "other-tls",
                        "issuer": "not-loaded",
                        "domains": ["other.example.com"],
                        "namespaces": ["production"],
                    },
                ],
            },
        )
        config = MagicMock()
        config.reload_settings.return_value = new
        container = self._container(current)

        reloaded = apply_reload(config, container)

        assert reloaded == [
            "logging.level=DEBUG",
            "certificates",
            "controller.reconcile_interval_seconds=30",
        ]
        assert [c.secret_name for c in container.scheduler.certificates] == ["wildcard-tls"]
        assert container.scheduler.interval == 30
        assert container.settings.controller.reconcile_interval_seconds == 30
        assert logging.getLogger("acmesync").level == logging.DEBUG
        container.scheduler.wake.assert_called_once()

    def test_restart_only_sections_reported(self, caplog):
        current = make_settings()
        new = make_settings({"api": {"enabled": True}})
        config = MagicMock()
        config.reload_settings.return_value = new
        container = self._container(current)

        with caplog.at_level(logging.WARNING, logger="acmesync.cli.commands.run"):
            assert apply_reload(config, container) == []

        assert "Config section 'api' changed; restart to apply" in caplog.text
        assert container.settings is current
        container.scheduler.wake.assert_not_called()

    def test_reload_failure_keeps_settings(self):
        config = MagicMock()
        config.reload_settings.side_effect = ValueError("bad yaml")
        container = self._container(make_settings())

        assert apply_reload(config, container) == []


class TestRunController:
    def test_starts_and_stops(self):
        config = MagicMock(settings=make_settings())
        args = argparse.Namespace(debug=False)
        with (
            patch("acmesync.app.context.Container") as mock_container_cls,
            patch("acmesync.app.shutdown.ShutdownCoordinator") as mock_coordinator_cls,
        ):
            container = mock_container_cls.return_value
            container.startup_check.return_value = {
                "issuers": {ISSUER_NAME: "account rejected"},
                "zones": {ISSUER_NAME: True},
            }
            coordinator = mock_coordinator_cls.return_value
            coordinator.wait.return_value = True

            run_controller(config, args)

        coordinator.register_signals.assert_called_once()
        container.scheduler.start.assert_called_once()
        coordinator.add_step.assert_called_once_with("controller", container.shutdown)
        coordinator.run_steps.assert_called_once()

    def test_reload_applied_while_running(self):
        config = MagicMock(settings=make_settings())
        config.reload_settings.return_value = make_settings()
        args = argparse.Namespace(debug=False)
        with (
            patch("acmesync.app.context.Container") as mock_container_cls,
            patch("acmesync.app.shutdown.ShutdownCoordinator") as mock_coordinator_cls,
        ):
            container = mock_container_cls.return_value
            container.settings = config.settings
            container.startup_check.return_value = {"issuers": {}, "zones": {}}
            coordinator = mock_coordinator_cls.return_value
            coordinator.wait.side_effect = [False, True]
            coordinator.reload_requested = True

            run_controller(config, args)

        config.reload_settings.assert_called_once()
        coordinator.consume_reload.assert_called_once()

    def test_initialisation_failure_exits(self, capsys):
        config = MagicMock(settings=make_settings())
        with patch("acmesync.app.context.Container", side_effect=RuntimeError("db down")):
            with pytest.raises(SystemExit) as exc_info:
                run_controller(config, argparse.Namespace(debug=False))
        assert exc_info.value.code == 1
        assert "controller initialisation failed: db down" in capsys.readouterr().err
