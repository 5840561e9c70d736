"""Record of a certificate copy written into one namespace."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID


@dataclass(frozen=True)
class DistributedSecret:
    request_id: UUID
    namespace: str
    secret_name: str
    content_hash: str
    last_synced_at: datetime
