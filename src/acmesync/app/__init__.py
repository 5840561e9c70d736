"""Application wiring: dependency container, Flask factory and shutdown."""

from acmesync.app.context import Container, get_container
from acmesync.app.factory import create_app

__all__ = [
    "Container",
    "create_app",
    "get_container",
]
