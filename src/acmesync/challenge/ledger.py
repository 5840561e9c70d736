"""Scoped ownership of the challenges of one validation attempt.

Usage::

    with ChallengeLedger(solver, cancel=event) as ledger:
        ledger.solve("example.com", txt_value)
        ...
    # every published record has been deleted (or recorded as orphaned)

Leaving the ``with`` block, normally or through an exception, removes
each published record exactly once.  Deletions that fail are kept in
:attr:`ChallengeLedger.orphaned` for the scheduler to retry later.
"""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING

from acmesync.core.errors import ReconcileError

if TYPE_CHECKING:
    from acmesync.challenge.solver import ChallengeSolver
    from acmesync.models.challenge import Challenge

log = logging.getLogger(__name__)


class ChallengeLedger:
    """Tracks published challenges and guarantees their cleanup."""

    def __init__(
        self,
        solver: ChallengeSolver,
        *,
        cancel: threading.Event | None = None,
    ) -> None:
        self._solver = solver
        self._cancel = cancel
        self._lock = threading.Lock()
        self._challenges: dict[tuple[str, str], Challenge] = {}
        self._closed = False
        self.orphaned: list[Challenge] = []

    def __enter__(self) -> ChallengeLedger:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:  # noqa: ANN001
        self.close()
        return False

    @staticmethod
    def _key(challenge: Challenge) -> tuple[str, str]:
        # *.example.com and example.com share a record name but not a value.
        return (challenge.record_name, challenge.expected_value)

    def _track(self, challenge: Challenge) -> None:
        with self._lock:
            self._challenges[self._key(challenge)] = challenge

    def solve(self, domain: str, value: str) -> Challenge:
        """Publish and confirm the challenge for *domain* under this ledger."""
        if self._closed:
            msg = "ChallengeLedger is closed"
            raise RuntimeError(msg)
        challenge = self._solver.solve(
            domain,
            value,
            cancel=self._cancel,
            on_published=self._track,
        )
        self._track(challenge)
        return challenge

    @property
    def challenges(self) -> list[Challenge]:
        with self._lock:
            return list(self._challenges.values())

    def close(self) -> None:
        """Delete every tracked record that has not been cleaned yet."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            pending = list(self._challenges.items())

        for key, challenge in pending:
            if challenge.cleaned_up:
                continue
            try:
                cleaned = self._solver.cleanup(challenge)
            except ReconcileError as exc:
                log.warning(
                    "Could not remove DNS-01 record %s (id=%s): %s; will retry",
                    challenge.record_name,
                    challenge.record_id,
                    exc.detail,
                )
                self.orphaned.append(challenge)
                continue
            with self._lock:
                self._challenges[key] = cleaned
