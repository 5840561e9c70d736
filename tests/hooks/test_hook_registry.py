"""Tests for hook loading and event dispatch."""

from __future__ import annotations

import json

import pytest

from acmesync.config.settings import HookEntrySettings, HookSettings
from acmesync.hooks.base import Hook
from acmesync.hooks.events import EVENT_METHOD_MAP, KNOWN_EVENTS
from acmesync.hooks.registry import HookRegistry, load_hook_class
from fakes import FailingHook, RecordingHook


def _entry(class_path, *, events=(), enabled=True, config=None):
    return HookEntrySettings(
        class_path=class_path,
        enabled=enabled,
        events=tuple(events),
        timeout_seconds=None,
        config=config or {},
    )


def _settings(*entries, max_retries=0, dead_letter_log=None):
    return HookSettings(
        timeout_seconds=30,
        max_workers=2,
        max_retries=max_retries,
        dead_letter_log=dead_letter_log,
        registered=tuple(entries),
    )


@pytest.fixture(autouse=True)
def _reset_hooks():
    RecordingHook.calls = []
    FailingHook.attempts = 0


class TestEvents:
    def test_every_event_has_a_hook_method(self):
        for method in EVENT_METHOD_MAP.values():
            assert callable(getattr(Hook, method))


class TestLoadHookClass:
    def test_loads(self):
        assert load_hook_class("fakes.RecordingHook") is RecordingHook

    def test_invalid_path(self):
        with pytest.raises(ValueError, match="Invalid hook class path"):
            load_hook_class("RecordingHook")

    def test_not_a_hook(self):
        with pytest.raises(TypeError, match="subclass of acmesync.hooks.Hook"):
            load_hook_class("fakes.NotAHook")


class TestLoading:
    def test_no_hooks_means_no_executor(self):
        registry = HookRegistry(_settings())
        assert registry.hook_names == []
        registry.dispatch("certificate.issued", {"request_id": "r"})
        assert registry.dispatch_count == 0

    def test_disabled_hooks_skipped(self):
        registry = HookRegistry(_settings(_entry("fakes.RecordingHook", enabled=False)))
        assert registry.hook_names == []

    def test_validate_config_failure_stops_startup(self):
        with pytest.raises(ValueError, match="rejected"):
            HookRegistry(_settings(_entry("fakes.RecordingHook", config={"reject": True})))

    def test_unknown_subscription(self):
        entry = _entry("fakes.RecordingHook", events=["order.created"])
        with pytest.raises(ValueError, match="unknown events"):
            HookRegistry(_settings(entry))


class TestDispatch:
    def test_delivers_deep_copy(self):
        registry = HookRegistry(_settings(_entry("fakes.RecordingHook")))
        ctx = {"request_id": "r1", "domains": ["example.com"]}

        registry.dispatch("certificate.issued", ctx)
        ctx["domains"].append("mutated.example.com")
        registry.shutdown()

        assert RecordingHook.calls == [
            ("certificate.issued", {"request_id": "r1", "domains": ["example.com"]}),
        ]
        assert registry.dispatch_count == 1
        assert registry.error_count == 0

    def test_respects_subscriptions(self):
        registry = HookRegistry(
            _settings(_entry("fakes.RecordingHook", events=["request.transition"])),
        )
        registry.dispatch("certificate.issued", {})
        registry.dispatch("request.transition", {"to_state": "issued"})
        registry.shutdown()

        assert [event for event, _ in RecordingHook.calls] == ["request.transition"]

    def test_unknown_event(self):
        registry = HookRegistry(_settings(_entry("fakes.RecordingHook")))
        with pytest.raises(ValueError, match="Unknown hook event 'order.created'"):
            registry.dispatch("order.created", {})
        registry.shutdown()

    def test_after_shutdown_is_noop(self):
        registry = HookRegistry(_settings(_entry("fakes.RecordingHook")))
        registry.shutdown()
        registry.shutdown()
        registry.dispatch("certificate.issued", {})

        assert registry.is_shutdown
        assert RecordingHook.calls == []

    def test_failure_is_counted_not_raised(self):
        registry = HookRegistry(_settings(_entry("fakes.FailingHook")))
        registry.dispatch("certificate.issued", {"request_id": "r1"})
        registry.shutdown()

        assert FailingHook.attempts == 1
        assert registry.error_count == 1

    def test_retries_then_dead_letters(self, tmp_path):
        dead_letter = tmp_path / "hooks-dead.jsonl"
        registry = HookRegistry(
            _settings(
                _entry("fakes.FailingHook"),
                max_retries=1,
                dead_letter_log=str(dead_letter),
            ),
        )
        registry.dispatch("certificate.issued", {"request_id": "r1"})
        registry.shutdown()

        assert FailingHook.attempts == 2
        entry = json.loads(dead_letter.read_text(encoding="utf-8").strip())
        assert entry["hook_name"] == "fakes.FailingHook"
        assert entry["event"] == "certificate.issued"
        assert entry["attempts"] == 2
        assert entry["error"] == "ConnectionError: webhook unreachable"


def test_known_events():
    assert "distribution.partial" in KNOWN_EVENTS
