"""Cloudflare DNS provider.

Talks to the Cloudflare v4 REST API with a scoped API token
(``Zone:DNS:Edit`` plus ``Zone:Zone:Read``).

Configuration (``providers.<name>``)::

    type: cloudflare
    api_token: ${CLOUDFLARE_API_TOKEN}
    api_url: https://api.cloudflare.com/client/v4   # optional
    timeout_seconds: 30
    max_retries: 3
    retry_delay_seconds: 1.0
    zone_ids:                 # optional, skips the zone lookup
      example.com: 023e105f4ecef8ad9ca31a8372d0c353

Every response is the standard Cloudflare envelope::

    {"success": true, "errors": [], "messages": [], "result": {...}}
"""

from __future__ import annotations

import contextlib
import json
import logging
import threading
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import TYPE_CHECKING, Any

from acmesync.dns.base import DnsProvider, DnsProviderError, DnsRecord

if TYPE_CHECKING:
    from collections.abc import Callable

    from acmesync.core.types import RecordType

log = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.cloudflare.com/client/v4"

# "Record already exists" / "An identical record already exists."
_DUPLICATE_RECORD_CODES = frozenset({81057, 81058})

_HTTP_NOT_FOUND = 404
_HTTP_TOO_MANY_REQUESTS = 429
_HTTP_SERVER_ERROR = 500


class CloudflareError(DnsProviderError):
    """A Cloudflare API failure, with the envelope's error codes."""

    def __init__(
        self,
        detail: str,
        *,
        status: int | None = None,
        retryable: bool = False,
        retry_after: float | None = None,
        codes: tuple[int, ...] = (),
    ) -> None:
        super().__init__(detail, status=status, retryable=retryable, retry_after=retry_after)
        self.codes = codes


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


def _envelope_errors(envelope: dict) -> tuple[tuple[int, ...], str]:
    errors = envelope.get("errors") or []
    codes = tuple(int(e["code"]) for e in errors if isinstance(e, dict) and "code" in e)
    text = "; ".join(
        f"{e.get('code')}: {e.get('message')}" for e in errors if isinstance(e, dict)
    )
    return codes, text


def _unquote_txt(value: str) -> str:
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):  # noqa: PLR2004
        return value[1:-1]
    return value


class CloudflareProvider(DnsProvider):
    """DNS provider backed by the Cloudflare v4 API."""

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        super().__init__(config)
        token = self.config.get("api_token")
        if not token:
            msg = "Cloudflare provider requires 'api_token'"
            raise ValueError(msg)
        self._token = token
        self._api_url = self.config.get("api_url", DEFAULT_API_URL).rstrip("/")
        self._timeout = self.config.get("timeout_seconds", 30)
        self._max_retries = self.config.get("max_retries", 3)
        self._retry_delay = self.config.get("retry_delay_seconds", 1.0)
        self._sleep = sleep
        self._zone_ids: dict[str, str] = dict(self.config.get("zone_ids") or {})
        self._zone_lock = threading.Lock()

    # -- HTTP plumbing -------------------------------------------------------

    def _build_request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        body: dict | None = None,
    ) -> urllib.request.Request:
        url = f"{self._api_url}{path}"
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        data = json.dumps(body).encode("utf-8") if body is not None else None
        return urllib.request.Request(  # noqa: S310
            url,
            data=data,
            method=method,
            headers={
                "Authorization": f"Bearer {self._token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

    def _single_request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        body: dict | None = None,
    ) -> dict:
        req = self._build_request(method, path, params=params, body=body)
        try:
            resp = urllib.request.urlopen(req, timeout=self._timeout)  # noqa: S310
        except urllib.error.HTTPError as exc:
            envelope: dict = {}
            with contextlib.suppress(Exception):
                envelope = json.loads(exc.read().decode("utf-8", errors="replace"))
            codes, text = _envelope_errors(envelope)
            msg = f"Cloudflare {method} {path} returned HTTP {exc.code}: {text or exc.reason}"
            raise CloudflareError(
                msg,
                status=exc.code,
                retryable=exc.code >= _HTTP_SERVER_ERROR or exc.code == _HTTP_TOO_MANY_REQUESTS,
                retry_after=_parse_retry_after(exc.headers.get("Retry-After") if exc.headers else None),
                codes=codes,
            ) from exc
        except (urllib.error.URLError, OSError) as exc:
            msg = f"Failed to reach Cloudflare API at {self._api_url}: {exc}"
            raise CloudflareError(msg, retryable=True) from exc

        try:
            envelope = json.loads(resp.read().decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            msg = f"Cloudflare returned invalid JSON for {method} {path}: {exc}"
            raise CloudflareError(msg, status=resp.status, retryable=False) from exc

        if not envelope.get("success", False):
            codes, text = _envelope_errors(envelope)
            msg = f"Cloudflare {method} {path} failed: {text or 'unknown error'}"
            raise CloudflareError(msg, status=resp.status, retryable=False, codes=codes)
        return envelope

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict | None = None,
        body: dict | None = None,
    ) -> dict:
        """Send a request, retrying transient failures with backoff."""
        last_exc: CloudflareError | None = None
        for attempt in range(self._max_retries + 1):
            try:
                return self._single_request(method, path, params=params, body=body)
            except CloudflareError as exc:
                if not exc.retryable or attempt == self._max_retries:
                    raise
                last_exc = exc
                delay = self._retry_delay * (2**attempt)
                if exc.retry_after is not None:
                    delay = max(delay, exc.retry_after)
                log.warning(
                    "Cloudflare attempt %d/%d failed: %s (retrying in %.1fs)",
                    attempt + 1,
                    self._max_retries + 1,
                    exc.detail,
                    delay,
                )
                self._sleep(delay)
        raise last_exc  # type: ignore[misc]

    # -- zones ---------------------------------------------------------------

    def zone_id(self, zone: str) -> str:
        """Return the Cloudflare zone id for *zone*, looking it up once."""
        zone = zone.lower().rstrip(".")
        with self._zone_lock:
            cached = self._zone_ids.get(zone)
        if cached:
            return cached
        envelope = self._request("GET", "/zones", params={"name": zone})
        result = envelope.get("result") or []
        if not result:
            msg = f"Zone {zone!r} not found or not accessible with this token"
            raise CloudflareError(msg, status=_HTTP_NOT_FOUND, retryable=False)
        found = result[0]["id"]
        with self._zone_lock:
            self._zone_ids[zone] = found
        log.debug("Resolved Cloudflare zone %s -> %s", zone, found)
        return found

    def verify_zone(self, zone: str) -> bool:
        try:
            zid = self.zone_id(zone)
            self._request("GET", f"/zones/{zid}")
        except CloudflareError as exc:
            if exc.auth_failed or exc.status == _HTTP_NOT_FOUND:
                log.warning("Zone %s is not accessible: %s", zone, exc.detail)
                return False
            raise
        return True

    # -- token ---------------------------------------------------------------

    def verify_token(self) -> bool:
        try:
            envelope = self._request("GET", "/user/tokens/verify")
        except CloudflareError as exc:
            if exc.auth_failed:
                log.warning("Cloudflare rejected API token: %s", exc.detail)
                return False
            raise
        status = (envelope.get("result") or {}).get("status")
        return status == "active"

    # -- records -------------------------------------------------------------

    def find_records(
        self,
        zone: str,
        name: str,
        type: RecordType | str = "TXT",  # noqa: A002
    ) -> list[DnsRecord]:
        zid = self.zone_id(zone)
        envelope = self._request(
            "GET",
            f"/zones/{zid}/dns_records",
            params={"type": str(type), "name": name},
        )
        return [
            DnsRecord(
                record_id=r["id"],
                name=r.get("name", name),
                type=r.get("type", str(type)),
                content=_unquote_txt(r.get("content", "")),
                ttl=r.get("ttl", 1),
            )
            for r in envelope.get("result") or []
        ]

    def create_record(
        self,
        zone: str,
        name: str,
        type: RecordType | str,  # noqa: A002
        value: str,
        ttl: int,
    ) -> str:
        zid = self.zone_id(zone)
        try:
            envelope = self._request(
                "POST",
                f"/zones/{zid}/dns_records",
                body={"type": str(type), "name": name, "content": value, "ttl": ttl},
            )
        except CloudflareError as exc:
            if not _DUPLICATE_RECORD_CODES.intersection(exc.codes):
                raise
            for record in self.find_records(zone, name, type):
                if record.content == value:
                    log.info(
                        "%s record %s already present (id=%s)",
                        type,
                        name,
                        record.record_id,
                    )
                    return record.record_id
            raise
        record_id = envelope["result"]["id"]
        log.info("Created %s record %s in zone %s (id=%s)", type, name, zone, record_id)
        return record_id

    def delete_record(self, zone: str, record_id: str) -> None:
        zid = self.zone_id(zone)
        try:
            self._request("DELETE", f"/zones/{zid}/dns_records/{record_id}")
        except CloudflareError as exc:
            if exc.status == _HTTP_NOT_FOUND:
                log.info("Record %s already absent from zone %s", record_id, zone)
                return
            raise
        log.info("Deleted record %s from zone %s", record_id, zone)
