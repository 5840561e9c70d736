"""Logging subsystem for acmesync.

Public API::

    from acmesync.logging import configure_logging

    configure_logging(settings.logging)
"""

from acmesync.logging.setup import configure_logging, log_transition

__all__ = ["configure_logging", "log_transition"]
