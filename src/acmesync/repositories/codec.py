"""JSON encoding of the nested parts of a certificate request.

Bundles, attempt history, distributed copies and orphaned challenge
records are stored as JSONB columns; datetimes travel as ISO-8601.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from acmesync.core.types import RequestState
from acmesync.models.bundle import CertificateBundle
from acmesync.models.certificate_request import Attempt
from acmesync.models.challenge import Challenge
from acmesync.models.distributed_secret import DistributedSecret


def _dt(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


def bundle_to_dict(bundle: CertificateBundle, *, include_key: bool = True) -> dict:
    data = {
        "cert_pem": bundle.cert_pem,
        "not_before": _dt(bundle.not_before),
        "not_after": _dt(bundle.not_after),
        "serial_number": bundle.serial_number,
        "fingerprint": bundle.fingerprint,
        "content_hash": bundle.content_hash,
    }
    if include_key:
        data["key_pem"] = bundle.key_pem
    return data


def bundle_from_dict(data: dict | None) -> CertificateBundle | None:
    if not data:
        return None
    return CertificateBundle(
        cert_pem=data["cert_pem"],
        key_pem=data["key_pem"],
        not_before=_parse_dt(data["not_before"]),
        not_after=_parse_dt(data["not_after"]),
        serial_number=data["serial_number"],
        fingerprint=data["fingerprint"],
        content_hash=data["content_hash"],
    )


def attempt_to_dict(attempt: Attempt) -> dict:
    return {
        "from_state": attempt.from_state.value,
        "to_state": attempt.to_state.value,
        "at": _dt(attempt.at),
        "code": attempt.code,
        "kind": attempt.kind,
        "detail": attempt.detail,
    }


def attempt_from_dict(data: dict) -> Attempt:
    return Attempt(
        from_state=RequestState(data["from_state"]),
        to_state=RequestState(data["to_state"]),
        at=_parse_dt(data["at"]),
        code=data.get("code"),
        kind=data.get("kind"),
        detail=data.get("detail"),
    )


def distributed_to_dict(copy: DistributedSecret) -> dict:
    return {
        "request_id": str(copy.request_id),
        "namespace": copy.namespace,
        "secret_name": copy.secret_name,
        "content_hash": copy.content_hash,
        "last_synced_at": _dt(copy.last_synced_at),
    }


def distributed_from_dict(data: dict) -> DistributedSecret:
    return DistributedSecret(
        request_id=UUID(data["request_id"]),
        namespace=data["namespace"],
        secret_name=data["secret_name"],
        content_hash=data["content_hash"],
        last_synced_at=_parse_dt(data["last_synced_at"]),
    )


def challenge_to_dict(challenge: Challenge) -> dict:
    return {
        "domain": challenge.domain,
        "record_name": challenge.record_name,
        "expected_value": challenge.expected_value,
        "zone": challenge.zone,
        "record_id": challenge.record_id,
        "propagated": challenge.propagated,
        "cleaned_up": challenge.cleaned_up,
        "published_at": _dt(challenge.published_at),
        "cleaned_at": _dt(challenge.cleaned_at),
    }


def challenge_from_dict(data: dict) -> Challenge:
    return Challenge(
        domain=data["domain"],
        record_name=data["record_name"],
        expected_value=data["expected_value"],
        zone=data["zone"],
        record_id=data.get("record_id"),
        propagated=data.get("propagated", False),
        cleaned_up=data.get("cleaned_up", False),
        published_at=_parse_dt(data.get("published_at")),
        cleaned_at=_parse_dt(data.get("cleaned_at")),
    )
