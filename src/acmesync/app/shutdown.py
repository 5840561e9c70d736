"""Process signal handling for ``acmesync run``.

SIGTERM / SIGINT end the main loop and the registered stop steps run
in reverse registration order (API server before the controller it
serves).  SIGHUP only flags a configuration reload; the main loop
applies it between waits.

Usage::

    coordinator = ShutdownCoordinator(graceful_timeout=30)
    coordinator.add_step("controller", container.shutdown)
    coordinator.add_step("api", server.stop)
    coordinator.register_signals()
    coordinator.register_reload_signal()

    while not coordinator.wait(timeout=1.0):
        if coordinator.reload_requested:
            coordinator.consume_reload()
            apply_reload(config, container)
    coordinator.run_steps()
"""

from __future__ import annotations

import logging
import signal
import threading
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)


class ShutdownCoordinator:
    """Turns process signals into a stop flag, a reload flag and stop steps.

    Parameters
    ----------
    graceful_timeout:
        Seconds the stop steps are expected to finish in.  Overrunning
        is reported, not enforced: each step bounds its own waits.

    """

    def __init__(self, graceful_timeout: float = 30) -> None:
        self._graceful_timeout = graceful_timeout
        self._stop = threading.Event()
        self._reload = threading.Event()
        self._steps: list[tuple[str, Callable[[], None]]] = []
        self._steps_lock = threading.Lock()
        self._signal_count = 0

    @property
    def is_shutting_down(self) -> bool:
        return self._stop.is_set()

    @property
    def reload_requested(self) -> bool:
        """True while a SIGHUP is pending and no shutdown has begun."""
        return self._reload.is_set() and not self._stop.is_set()

    def add_step(self, name: str, step: Callable[[], None]) -> None:
        """Register *step* to run during :meth:`run_steps`."""
        with self._steps_lock:
            self._steps.append((name, step))

    def wait(self, timeout: float | None = None) -> bool:
        """Block until shutdown is requested or *timeout* elapses."""
        return self._stop.wait(timeout=timeout)

    def initiate(self) -> None:
        if self._stop.is_set():
            return
        self._stop.set()
        log.info("Shutdown requested")

    def request_reload(self) -> None:
        self._reload.set()

    def consume_reload(self) -> None:
        self._reload.clear()

    def run_steps(self) -> list[str]:
        """Run every registered step, newest first, once.

        A failing step is logged and the remaining steps still run.
        Returns the names of the steps that failed.
        """
        self.initiate()
        with self._steps_lock:
            steps = list(reversed(self._steps))
            self._steps.clear()

        failed: list[str] = []
        started = time.monotonic()
        for name, step in steps:
            step_started = time.monotonic()
            try:
                step()
            except Exception:
                log.exception("Shutdown step '%s' failed", name)
                failed.append(name)
                continue
            log.debug("Shutdown step '%s' took %.2fs", name, time.monotonic() - step_started)

        elapsed = time.monotonic() - started
        if elapsed > self._graceful_timeout:
            log.warning(
                "Shutdown took %.1fs, longer than the %ss graceful timeout",
                elapsed,
                self._graceful_timeout,
            )
        return failed

    def register_signals(self) -> None:
        """Install SIGTERM and SIGINT handlers.  Main thread only."""
        try:
            signal.signal(signal.SIGTERM, self._signal_handler)
            signal.signal(signal.SIGINT, self._signal_handler)
        except (ValueError, OSError):
            log.debug("Could not register signal handlers (not main thread)")

    def register_reload_signal(self) -> None:
        """Install a SIGHUP handler where the platform has one."""
        if not hasattr(signal, "SIGHUP"):
            log.debug("SIGHUP not available on this platform")
            return
        try:
            signal.signal(signal.SIGHUP, self._reload_handler)
        except (ValueError, OSError):
            log.debug("Could not register SIGHUP handler (not main thread)")

    def _signal_handler(self, signum: int, frame) -> None:  # noqa: ARG002
        self._signal_count += 1
        name = signal.Signals(signum).name
        if self._signal_count > 1:
            log.warning("Received %s again; still stopping in-flight work", name)
            return
        log.info("Received %s, stopping the controller", name)
        self.initiate()

    def _reload_handler(self, signum: int, frame) -> None:  # noqa: ARG002
        if self._stop.is_set():
            log.info("Ignoring SIGHUP during shutdown")
            return
        log.info("Received SIGHUP, flagging config reload")
        self._reload.set()
