"""DNS-01 challenge entity."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class Challenge:
    domain: str
    record_name: str
    expected_value: str
    zone: str
    record_id: str | None = None
    propagated: bool = False
    cleaned_up: bool = False
    published_at: datetime | None = None
    cleaned_at: datetime | None = None

    @property
    def published(self) -> bool:
        return self.record_id is not None
