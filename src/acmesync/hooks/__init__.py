"""Lifecycle hooks.

Public API::

    from acmesync.hooks import Hook, HookRegistry, KNOWN_EVENTS
"""

from acmesync.hooks.base import Hook
from acmesync.hooks.events import KNOWN_EVENTS
from acmesync.hooks.registry import HookRegistry

__all__ = ["KNOWN_EVENTS", "Hook", "HookRegistry"]
