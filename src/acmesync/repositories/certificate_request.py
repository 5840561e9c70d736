"""PostgreSQL certificate request repository."""

from __future__ import annotations

from typing import TYPE_CHECKING

from psycopg.errors import UniqueViolation
from psycopg.types.json import Jsonb
from pypgkit import BaseRepository, Database

from acmesync.core.state import TERMINAL_STATES
from acmesync.core.types import RequestState
from acmesync.models.certificate_request import CertificateRequest
from acmesync.repositories.base import (
    OPERATOR_FIELDS,
    DuplicateActiveRequestError,
    RequestStore,
    check_operator_fields,
)
from acmesync.repositories.codec import (
    attempt_from_dict,
    attempt_to_dict,
    bundle_from_dict,
    bundle_to_dict,
    challenge_from_dict,
    challenge_to_dict,
    distributed_from_dict,
    distributed_to_dict,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from uuid import UUID

_TERMINAL_VALUES = tuple(sorted(s.value for s in TERMINAL_STATES))

# Must match the predicate of uq_certificate_requests_active in schema.sql.
_ACTIVE_PREDICATE = "state NOT IN ('deleted', 'failed', 'revoked')"


class CertificateRequestRepository(BaseRepository[CertificateRequest], RequestStore):
    table_name = "certificate_requests"
    primary_key = "id"

    def _row_to_entity(self, row: dict) -> CertificateRequest:
        return CertificateRequest(
            id=row["id"],
            issuer_name=row["issuer_name"],
            domains=tuple(row["domains"]),
            secret_name=row["secret_name"],
            namespaces=tuple(row["namespaces"]),
            state=RequestState(row["state"]),
            retry_count=row["retry_count"],
            last_error=row.get("last_error"),
            attempts=tuple(attempt_from_dict(a) for a in row.get("attempts") or []),
            next_attempt_at=row.get("next_attempt_at"),
            bundle=bundle_from_dict(row.get("bundle")),
            expires_at=row.get("expires_at"),
            renew_at=row.get("renew_at"),
            last_validated_at=row.get("last_validated_at"),
            distributed=tuple(distributed_from_dict(d) for d in row.get("distributed") or []),
            failed_namespaces=tuple(row.get("failed_namespaces") or []),
            orphaned_records=tuple(
                challenge_from_dict(c) for c in row.get("orphaned_records") or []
            ),
            deletion_requested=row["deletion_requested"],
            revocation_requested=row["revocation_requested"],
            retrigger_requested=row["retrigger_requested"],
            revocation_reason=row.get("revocation_reason"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            dedup_key=row["dedup_key"],
        )

    def _entity_to_row(self, entity: CertificateRequest) -> dict:
        return {
            "id": entity.id,
            "issuer_name": entity.issuer_name,
            "dedup_key": entity.dedup_key,
            "domains": Jsonb(list(entity.domains)),
            "secret_name": entity.secret_name,
            "namespaces": Jsonb(list(entity.namespaces)),
            "state": entity.state.value,
            "retry_count": entity.retry_count,
            "last_error": Jsonb(entity.last_error) if entity.last_error is not None else None,
            "attempts": Jsonb([attempt_to_dict(a) for a in entity.attempts]),
            "next_attempt_at": entity.next_attempt_at,
            "bundle": Jsonb(bundle_to_dict(entity.bundle)) if entity.bundle else None,
            "expires_at": entity.expires_at,
            "renew_at": entity.renew_at,
            "last_validated_at": entity.last_validated_at,
            "distributed": Jsonb([distributed_to_dict(d) for d in entity.distributed]),
            "failed_namespaces": Jsonb(list(entity.failed_namespaces)),
            "orphaned_records": Jsonb([challenge_to_dict(c) for c in entity.orphaned_records]),
            "deletion_requested": entity.deletion_requested,
            "revocation_requested": entity.revocation_requested,
            "retrigger_requested": entity.retrigger_requested,
            "revocation_reason": entity.revocation_reason,
        }

    def create_if_absent(self, request: CertificateRequest) -> tuple[CertificateRequest, bool]:
        """Insert unless an active duplicate exists (partial unique index)."""
        db = Database.get_instance()
        row = self._entity_to_row(request)
        columns = ", ".join(row)
        placeholders = ", ".join(["%s"] * len(row))
        created = db.fetch_one(
            f"INSERT INTO certificate_requests ({columns}) VALUES ({placeholders}) "  # noqa: S608
            f"ON CONFLICT (issuer_name, dedup_key) WHERE {_ACTIVE_PREDICATE} "
            "DO NOTHING RETURNING *",
            tuple(row.values()),
            as_dict=True,
        )
        if created:
            return self._row_to_entity(created), True
        existing = self.find_active(request.issuer_name, request.dedup_key)
        if existing is None:
            # The conflicting row went terminal between INSERT and SELECT.
            return self.create_if_absent(request)
        return existing, False

    def find_request(self, request_id: UUID) -> CertificateRequest | None:
        return self.find_by_id(request_id)

    def find_active(self, issuer_name: str, dedup_key: str) -> CertificateRequest | None:
        db = Database.get_instance()
        row = db.fetch_one(
            "SELECT * FROM certificate_requests "
            "WHERE issuer_name = %s AND dedup_key = %s "
            "  AND state <> ALL(%s)",
            (issuer_name, dedup_key, list(_TERMINAL_VALUES)),
            as_dict=True,
        )
        return self._row_to_entity(row) if row else None

    def list_requests(self, states: Iterable[RequestState] | None = None) -> list[CertificateRequest]:
        db = Database.get_instance()
        if states is None:
            rows = db.fetch_all(
                "SELECT * FROM certificate_requests ORDER BY created_at",
                as_dict=True,
            )
        else:
            rows = db.fetch_all(
                "SELECT * FROM certificate_requests WHERE state = ANY(%s) ORDER BY created_at",
                ([s.value for s in states],),
                as_dict=True,
            )
        return [self._row_to_entity(r) for r in rows]

    def persist(
        self,
        request: CertificateRequest,
        *,
        expected_state: RequestState | None = None,
    ) -> CertificateRequest | None:
        """Write the lifecycle columns; compare-and-swap on ``expected_state``."""
        row = self._entity_to_row(request)
        for column in ("id", "issuer_name", "dedup_key", "domains", *OPERATOR_FIELDS):
            row.pop(column)
        where = "id = %s"
        params: list = [request.id]
        if expected_state is not None:
            where += " AND state = %s"
            params.append(expected_state.value)
        try:
            return self._update(row, where, params)
        except UniqueViolation as exc:
            raise DuplicateActiveRequestError(request.issuer_name, request.dedup_key) from exc

    def set_flags(self, request_id: UUID, **changes: object) -> CertificateRequest | None:
        check_operator_fields(changes)
        row = {
            name: Jsonb(list(value)) if name == "namespaces" else value
            for name, value in changes.items()
        }
        return self._update(row, "id = %s", [request_id])

    def _update(self, row: dict, where: str, where_params: list) -> CertificateRequest | None:
        db = Database.get_instance()
        set_parts = [f"{col} = %s" for col in row]
        set_parts.append("updated_at = now()")
        updated = db.fetch_one(
            f"UPDATE certificate_requests SET {', '.join(set_parts)} "  # noqa: S608
            f"WHERE {where} RETURNING *",
            (*row.values(), *where_params),
            as_dict=True,
        )
        return self._row_to_entity(updated) if updated else None
