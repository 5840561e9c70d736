"""Hook registry: loads hooks from configuration and dispatches events.

- Dispatch is fire-and-forget on a thread pool; the reconciler never
  waits on a hook.
- Each hook gets its own shallow copy of a deep-copied context.
- A hook that cannot be loaded stops startup.
- Failed deliveries are retried ``max_retries`` times and then, when
  ``dead_letter_log`` is set, appended to it as JSON lines.

Usage::

    registry = HookRegistry(settings.hooks)
    registry.dispatch("certificate.issued", {"request_id": "..."})
"""

from __future__ import annotations

import copy
import importlib
import json
import logging
import re
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import TYPE_CHECKING

from acmesync.hooks.base import Hook
from acmesync.hooks.events import EVENT_METHOD_MAP, KNOWN_EVENTS

if TYPE_CHECKING:
    from acmesync.config.settings import HookEntrySettings, HookSettings

log = logging.getLogger(__name__)

_CLASS_PATH_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*(\.[a-zA-Z_][a-zA-Z0-9_]*)+$")


@dataclass(frozen=True)
class _LoadedHook:
    instance: Hook
    entry: HookEntrySettings
    events: frozenset[str]

    @property
    def name(self) -> str:
        return self.entry.class_path


@dataclass(frozen=True)
class HookOutcome:
    hook_name: str
    event: str
    ok: bool
    duration_ms: float
    attempts: int
    error: str | None = None


def load_hook_class(class_path: str) -> type[Hook]:
    """Import *class_path* and check it is a :class:`Hook` subclass."""
    if not _CLASS_PATH_RE.match(class_path):
        msg = (
            f"Invalid hook class path '{class_path}': must match "
            "'package.module.ClassName'"
        )
        raise ValueError(msg)
    module_path, _, cls_name = class_path.rpartition(".")
    cls = getattr(importlib.import_module(module_path), cls_name)
    if not (isinstance(cls, type) and issubclass(cls, Hook)):
        msg = f"Hook '{class_path}' must be a subclass of acmesync.hooks.Hook"
        raise TypeError(msg)
    return cls


class HookRegistry:
    """Loaded hooks plus the executor that runs them.

    Parameters
    ----------
    settings:
        The ``hooks`` configuration section.

    """

    def __init__(self, settings: HookSettings) -> None:
        self._settings = settings
        self._hooks: list[_LoadedHook] = []
        self._executor: ThreadPoolExecutor | None = None
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._dispatched = 0
        self._failed = 0
        self._load()

    # -- counters ------------------------------------------------------------

    @property
    def dispatch_count(self) -> int:
        with self._lock:
            return self._dispatched

    @property
    def error_count(self) -> int:
        with self._lock:
            return self._failed

    @property
    def is_shutdown(self) -> bool:
        return self._closed.is_set()

    @property
    def hook_names(self) -> list[str]:
        return [h.name for h in self._hooks]

    # -- loading -------------------------------------------------------------

    def _load(self) -> None:
        for entry in self._settings.registered:
            if not entry.enabled:
                log.debug("Hook '%s' is disabled, skipping", entry.class_path)
                continue
            try:
                self._hooks.append(self._load_one(entry))
            except Exception:
                log.critical("Failed to load hook '%s'; refusing to start", entry.class_path)
                raise

        if self._hooks:
            self._executor = ThreadPoolExecutor(
                max_workers=self._settings.max_workers,
                thread_name_prefix="acmesync-hook",
            )
            log.info("Loaded %d hook(s), pool size %d", len(self._hooks), self._settings.max_workers)

    @staticmethod
    def _load_one(entry: HookEntrySettings) -> _LoadedHook:
        cls = load_hook_class(entry.class_path)
        cls.validate_config(entry.config)

        events = frozenset(entry.events) or KNOWN_EVENTS
        unknown = events - KNOWN_EVENTS
        if unknown:
            msg = (
                f"Hook '{entry.class_path}' subscribes to unknown events "
                f"{sorted(unknown)}; known events: {sorted(KNOWN_EVENTS)}"
            )
            raise ValueError(msg)

        loaded = _LoadedHook(instance=cls(config=entry.config), entry=entry, events=events)
        log.info(
            "Loaded hook %s (events=%s)",
            entry.class_path,
            "all" if events == KNOWN_EVENTS else sorted(events),
        )
        return loaded

    # -- dispatch ------------------------------------------------------------

    def dispatch(self, event: str, context: dict) -> None:
        """Queue *event* for every subscribed hook and return immediately."""
        method_name = EVENT_METHOD_MAP.get(event)
        if method_name is None:
            msg = f"Unknown hook event '{event}'; known events: {sorted(KNOWN_EVENTS)}"
            raise ValueError(msg)
        if self._closed.is_set() or self._executor is None:
            return

        snapshot = copy.deepcopy(context)
        for loaded in self._hooks:
            if event not in loaded.events:
                continue
            try:
                future = self._executor.submit(
                    self._run, loaded, method_name, event, snapshot.copy()
                )
            except RuntimeError:
                log.warning("Hook executor closed; dropped '%s' for %s", event, loaded.name)
                continue
            future.add_done_callback(lambda f, _l=loaded: self._finished(f, _l))

    def _run(self, loaded: _LoadedHook, method_name: str, event: str, ctx: dict) -> HookOutcome:
        retries = self._settings.max_retries
        start = time.monotonic()
        error: str | None = None
        for attempt in range(1, retries + 2):
            try:
                getattr(loaded.instance, method_name)(ctx)
            except Exception as exc:  # noqa: BLE001
                error = f"{type(exc).__name__}: {exc}"
                if attempt <= retries:
                    time.sleep(0.5 * (2 ** (attempt - 1)))
                    continue
                return HookOutcome(
                    hook_name=loaded.name,
                    event=event,
                    ok=False,
                    duration_ms=round((time.monotonic() - start) * 1000, 2),
                    attempts=attempt,
                    error=error,
                )
            return HookOutcome(
                hook_name=loaded.name,
                event=event,
                ok=True,
                duration_ms=round((time.monotonic() - start) * 1000, 2),
                attempts=attempt,
            )
        msg = "unreachable"
        raise AssertionError(msg)

    def _finished(self, future: Future, loaded: _LoadedHook) -> None:
        try:
            outcome: HookOutcome = future.result(timeout=0)
        except Exception:
            with self._lock:
                self._dispatched += 1
                self._failed += 1
            log.exception("Hook %s crashed outside its handler", loaded.name)
            return

        with self._lock:
            self._dispatched += 1
            if not outcome.ok:
                self._failed += 1

        extra = {
            "hook_name": outcome.hook_name,
            "event": outcome.event,
            "outcome": "success" if outcome.ok else "error",
            "duration_ms": outcome.duration_ms,
        }
        timeout = loaded.entry.timeout_seconds or self._settings.timeout_seconds
        if not outcome.ok:
            log.error(
                "Hook %s failed on '%s' after %d attempt(s): %s",
                outcome.hook_name,
                outcome.event,
                outcome.attempts,
                outcome.error,
                extra=extra,
            )
            if self._settings.dead_letter_log:
                self._dead_letter(outcome)
        elif outcome.duration_ms > timeout * 1000:
            log.warning(
                "Hook %s took %.1fms on '%s' (limit %ds)",
                outcome.hook_name,
                outcome.duration_ms,
                outcome.event,
                timeout,
                extra=extra,
            )
        else:
            log.debug("Hook %s handled '%s'", outcome.hook_name, outcome.event, extra=extra)

    def _dead_letter(self, outcome: HookOutcome) -> None:
        line = json.dumps(
            {
                "timestamp": time.time(),
                "hook_name": outcome.hook_name,
                "event": outcome.event,
                "error": outcome.error,
                "attempts": outcome.attempts,
            }
        )
        try:
            with open(self._settings.dead_letter_log, "a", encoding="utf-8") as fh:  # noqa: PTH123
                fh.write(line + "\n")
        except OSError:
            log.exception("Could not write hook dead-letter entry")

    # -- lifecycle -----------------------------------------------------------

    def shutdown(self, *, wait: bool = True) -> None:
        """Stop accepting events and close the pool.  Idempotent."""
        if self._closed.is_set():
            return
        self._closed.set()
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
            log.info(
                "Hook executor shut down (dispatched=%d, errors=%d)",
                self.dispatch_count,
                self.error_count,
            )
