"""Certificate request stores.

The PostgreSQL repository extends :class:`pypgkit.BaseRepository`; it
is imported on demand so the memory backend runs without a database
driver configured.
"""

from acmesync.repositories.base import DuplicateActiveRequestError, RequestStore
from acmesync.repositories.memory import InMemoryRequestStore

__all__ = [
    "DuplicateActiveRequestError",
    "InMemoryRequestStore",
    "RequestStore",
]
