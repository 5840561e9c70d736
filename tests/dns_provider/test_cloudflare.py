"""Tests for the Cloudflare DNS provider (urllib patched out)."""

from __future__ import annotations

import io
import json
import urllib.error
from unittest.mock import MagicMock, patch

import pytest

from acmesync.dns.cloudflare import CloudflareError, CloudflareProvider

_URLOPEN = "acmesync.dns.cloudflare.urllib.request.urlopen"
ZONE_ID = "023e105f4ecef8ad9ca31a8372d0c353"


class _Response:
    def __init__(self, payload: dict, status: int = 200) -> None:
        self._body = json.dumps(payload).encode("utf-8")
        self.status = status

    def read(self) -> bytes:
        return self._body


def _ok(result) -> _Response:
    return _Response({"success": True, "errors": [], "messages": [], "result": result})


def _http_error(code: int, errors: list | None = None, headers: dict | None = None):
    body = json.dumps({"success": False, "errors": errors or [], "result": None}).encode()
    return urllib.error.HTTPError(
        "https://api.cloudflare.com/client/v4",
        code,
        "error",
        headers or {},
        io.BytesIO(body),
    )


@pytest.fixture()
def sleep():
    return MagicMock()


@pytest.fixture()
def provider(sleep):
    return CloudflareProvider(
        {"api_token": "cf-token", "max_retries": 2, "retry_delay_seconds": 1.0},
        sleep=sleep,
    )


class _Recorder:
    """urlopen side effect returning scripted responses and keeping requests."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests = []

    def __call__(self, req, timeout=None):  # noqa: ARG002
        self.requests.append(req)
        item = self.responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


class TestConstruction:
    def test_requires_token(self):
        with pytest.raises(ValueError, match="api_token"):
            CloudflareProvider({})

    def test_custom_api_url(self):
        recorder = _Recorder(_ok({"status": "active"}))
        p = CloudflareProvider({"api_token": "t", "api_url": "https://cf.internal/v4/"})
        with patch(_URLOPEN, side_effect=recorder):
            p.verify_token()
        assert recorder.requests[0].full_url == "https://cf.internal/v4/user/tokens/verify"


class TestCreateRecord:
    def test_looks_up_zone_then_creates(self, provider):
        recorder = _Recorder(_ok([{"id": ZONE_ID}]), _ok({"id": "rec-1"}))
        with patch(_URLOPEN, side_effect=recorder):
            record_id = provider.create_record(
                "example.com", "_acme-challenge.example.com", "TXT", "value", 120
            )

        assert record_id == "rec-1"
        lookup, create = recorder.requests
        assert lookup.get_method() == "GET"
        assert "name=example.com" in lookup.full_url
        assert create.get_method() == "POST"
        assert create.full_url.endswith(f"/zones/{ZONE_ID}/dns_records")
        assert create.get_header("Authorization") == "Bearer cf-token"
        assert json.loads(create.data) == {
            "type": "TXT",
            "name": "_acme-challenge.example.com",
            "content": "value",
            "ttl": 120,
        }

    def test_zone_id_cached(self, provider):
        recorder = _Recorder(_ok([{"id": ZONE_ID}]), _ok({"id": "rec-1"}), _ok({"id": "rec-2"}))
        with patch(_URLOPEN, side_effect=recorder):
            provider.create_record("example.com", "a", "TXT", "v1", 120)
            provider.create_record("Example.com.", "b", "TXT", "v2", 120)
        assert len(recorder.requests) == 3

    def test_configured_zone_ids_skip_lookup(self, sleep):
        p = CloudflareProvider(
            {"api_token": "t", "zone_ids": {"example.com": ZONE_ID}},
            sleep=sleep,
        )
        recorder = _Recorder(_ok({"id": "rec-9"}))
        with patch(_URLOPEN, side_effect=recorder):
            assert p.create_record("example.com", "n", "TXT", "v", 60) == "rec-9"
        assert len(recorder.requests) == 1

    def test_duplicate_returns_existing_record(self, provider):
        recorder = _Recorder(
            _ok([{"id": ZONE_ID}]),
            _http_error(400, [{"code": 81058, "message": "An identical record already exists."}]),
            _ok(
                [
                    {"id": "rec-other", "name": "n", "type": "TXT", "content": "other"},
                    {"id": "rec-old", "name": "n", "type": "TXT", "content": '"v"'},
                ],
            ),
        )
        with patch(_URLOPEN, side_effect=recorder):
            assert provider.create_record("example.com", "n", "TXT", "v", 60) == "rec-old"

    def test_forbidden_is_not_retried(self, provider, sleep):
        recorder = _Recorder(
            _ok([{"id": ZONE_ID}]),
            _http_error(403, [{"code": 10000, "message": "Authentication error"}]),
        )
        with patch(_URLOPEN, side_effect=recorder), pytest.raises(CloudflareError) as exc_info:
            provider.create_record("example.com", "n", "TXT", "v", 60)

        exc = exc_info.value
        assert exc.status == 403
        assert exc.auth_failed
        assert not exc.retryable
        assert "Authentication error" in exc.detail
        sleep.assert_not_called()

    def test_unknown_zone(self, provider):
        with patch(_URLOPEN, side_effect=_Recorder(_ok([]))), pytest.raises(
            CloudflareError, match="not found"
        ) as exc_info:
            provider.create_record("nope.example", "n", "TXT", "v", 60)
        assert exc_info.value.status == 404


class TestRetries:
    def test_server_error_retried_with_backoff(self, provider, sleep):
        recorder = _Recorder(_http_error(502), _http_error(503), _ok({"status": "active"}))
        with patch(_URLOPEN, side_effect=recorder):
            assert provider.verify_token() is True
        assert [c.args[0] for c in sleep.call_args_list] == [1.0, 2.0]

    def test_retry_after_honoured(self, provider, sleep):
        recorder = _Recorder(
            _http_error(429, headers={"Retry-After": "7"}),
            _ok({"status": "active"}),
        )
        with patch(_URLOPEN, side_effect=recorder):
            provider.verify_token()
        sleep.assert_called_once_with(7.0)

    def test_gives_up_after_max_retries(self, provider, sleep):
        failure = urllib.error.URLError("connection refused")
        recorder = _Recorder(failure, failure, failure)
        with patch(_URLOPEN, side_effect=recorder), pytest.raises(
            CloudflareError, match="Failed to reach"
        ) as exc_info:
            provider.verify_token()
        assert exc_info.value.retryable
        assert len(recorder.requests) == 3
        assert sleep.call_count == 2

    def test_unsuccessful_envelope_is_permanent(self, provider, sleep):
        envelope = _Response({"success": False, "errors": [{"code": 1004, "message": "bad"}]})
        with patch(_URLOPEN, side_effect=_Recorder(envelope)), pytest.raises(
            CloudflareError, match="1004: bad"
        ) as exc_info:
            provider.verify_token()
        assert exc_info.value.codes == (1004,)
        sleep.assert_not_called()


class TestDeleteAndVerify:
    def test_delete(self, provider):
        recorder = _Recorder(_ok([{"id": ZONE_ID}]), _ok({"id": "rec-1"}))
        with patch(_URLOPEN, side_effect=recorder):
            provider.delete_record("example.com", "rec-1")
        assert recorder.requests[1].get_method() == "DELETE"
        assert recorder.requests[1].full_url.endswith(f"/zones/{ZONE_ID}/dns_records/rec-1")

    def test_delete_missing_record_is_not_an_error(self, provider):
        recorder = _Recorder(_ok([{"id": ZONE_ID}]), _http_error(404))
        with patch(_URLOPEN, side_effect=recorder):
            provider.delete_record("example.com", "gone")

    def test_verify_token_rejected(self, provider):
        with patch(_URLOPEN, side_effect=_Recorder(_http_error(401))):
            assert provider.verify_token() is False

    def test_verify_token_inactive(self, provider):
        with patch(_URLOPEN, side_effect=_Recorder(_ok({"status": "disabled"}))):
            assert provider.verify_token() is False

    def test_verify_zone(self, provider):
        recorder = _Recorder(_ok([{"id": ZONE_ID}]), _ok({"id": ZONE_ID, "name": "example.com"}))
        with patch(_URLOPEN, side_effect=recorder):
            assert provider.verify_zone("example.com") is True

    def test_verify_zone_not_accessible(self, provider):
        with patch(_URLOPEN, side_effect=_Recorder(_ok([]))):
            assert provider.verify_zone("example.org") is False
