"""Response serializers for certificate requests."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from datetime import datetime

    from acmesync.models.certificate_request import Attempt, CertificateRequest


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_attempt(attempt: Attempt) -> dict:
    return {
        "from_state": attempt.from_state.value,
        "to_state": attempt.to_state.value,
        "at": attempt.at.isoformat(),
        "code": attempt.code,
        "kind": attempt.kind,
        "detail": attempt.detail,
    }


def serialize_request(request: CertificateRequest, *, detailed: bool = False) -> dict:
    """Serialize a certificate request (never includes the private key).

    ``detailed`` adds the attempt history, challenge leftovers and the
    issued certificate chain.
    """
    bundle = request.bundle
    data: dict = {
        "id": str(request.id),
        "issuer": request.issuer_name,
        "domains": list(request.domains),
        "secret_name": request.secret_name,
        "namespaces": list(request.namespaces),
        "state": request.state.value,
        "retry_count": request.retry_count,
        "last_error": request.last_error,
        "next_attempt_at": _ts(request.next_attempt_at),
        "expires_at": _ts(request.expires_at),
        "renew_at": _ts(request.renew_at),
        "last_validated_at": _ts(request.last_validated_at),
        "serial_number": bundle.serial_number if bundle else None,
        "distributed": {
            d.namespace: {"content_hash": d.content_hash, "synced_at": d.last_synced_at.isoformat()}
            for d in request.distributed
        },
        "failed_namespaces": list(request.failed_namespaces),
        "flags": {
            "deletion_requested": request.deletion_requested,
            "revocation_requested": request.revocation_requested,
            "retrigger_requested": request.retrigger_requested,
        },
        "created_at": _ts(request.created_at),
        "updated_at": _ts(request.updated_at),
    }
    if detailed:
        data["attempts"] = [serialize_attempt(a) for a in request.attempts]
        data["orphaned_records"] = [
            {"domain": c.domain, "record_name": c.record_name, "record_id": c.record_id}
            for c in request.orphaned_records
        ]
        data["certificate"] = bundle.cert_pem if bundle else None
        data["fingerprint"] = bundle.fingerprint if bundle else None
    return data
