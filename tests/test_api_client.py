"""Tests for the remote API client."""

import asyncio

import httpx
import pytest

from conftest import API_BASE
from fieldsync.api.client import RemoteAPI
from fieldsync.api.schemas import EventOutcome, UploadTarget
from fieldsync.errors import RemoteAPIError, UploadTargetError


def _client(handler, max_retries=3):
    return RemoteAPI(
        API_BASE,
        max_retries=max_retries,
        retry_backoff=0,
        transport=httpx.MockTransport(handler),
    )


class TestRetries:
    """Transient failures are retried, client errors are not."""

    def test_retries_server_errors_until_success(self):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) < 3:
                return httpx.Response(503, text="busy")
            return httpx.Response(200, json={"items": []})

        api = _client(handler)
        assert asyncio.run(api.list_recordings("t")) == []
        assert len(calls) == 3

    def test_client_error_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(403, text="forbidden")

        api = _client(handler)
        with pytest.raises(RemoteAPIError) as exc_info:
            asyncio.run(api.list_recordings("t"))

        assert exc_info.value.status_code == 403
        assert exc_info.value.is_transient is False
        assert len(calls) == 1

    def test_connection_error_raised_after_last_attempt(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        api = _client(handler, max_retries=2)
        with pytest.raises(httpx.ConnectError):
            asyncio.run(api.list_recordings("t"))
        assert len(calls) == 2

    def test_status_event_batch_sent_once(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502, text="bad gateway")

        api = _client(handler)
        with pytest.raises(RemoteAPIError):
            asyncio.run(api.send_status_events("t", [{"appointmentId": "WO-1"}]))
        assert len(calls) == 1


class TestRequests:
    """Shape of outgoing requests."""

    def test_list_recordings_drops_empty_params(self, api, remote):
        asyncio.run(api.list_recordings("t", {"from": "2026-03-01", "status": "", "deviceId": None}))

        request = remote.requests[0]
        assert dict(request.url.params) == {"from": "2026-03-01"}
        assert request.headers["Authorization"] == "Bearer t"

    def test_no_token_sends_no_authorization(self, api, remote):
        asyncio.run(api.list_recordings(None))

        assert "Authorization" not in remote.requests[0].headers

    def test_upload_target_without_url_raises(self):
        api = _client(lambda request: httpx.Response(200, json={"s3Key": "k"}))

        with pytest.raises(UploadTargetError):
            asyncio.run(api.issue_upload_target("t", "WO-1", "audio/mp4", "d", None))

    def test_playback_target(self, api):
        target = asyncio.run(api.issue_playback_target("t", "recordings/WO-1/1.m4a"))

        assert target.playback_url == "https://storage.test/play/recordings/WO-1/1.m4a"

    def test_empty_event_response_yields_no_outcomes(self):
        api = _client(lambda request: httpx.Response(200))

        result = asyncio.run(api.send_status_events("t", []))
        assert result.results == []

    def test_non_json_event_response_yields_no_outcomes(self):
        api = _client(lambda request: httpx.Response(200, text="OK"))

        result = asyncio.run(api.send_status_events("t", []))
        assert result.results == []


class TestSchemas:
    """Parsing of remote response shapes."""

    def test_upload_target_key_falls_back_to_file_key(self):
        target = UploadTarget.model_validate({"uploadUrl": "u", "fileKey": "f"})
        assert target.key == "f"

    def test_outcome_nested_error_object(self):
        outcome = EventOutcome.model_validate({
            "appointmentId": "WO-2",
            "eventType": "START",
            "success": False,
            "error": {"statusCode": 404, "errorCode": "NOT_FOUND", "message": "gone"},
        })

        assert outcome.status_code == 404
        assert outcome.error_code == "NOT_FOUND"
        assert outcome.message == "gone"

    def test_outcome_error_list(self):
        outcome = EventOutcome.model_validate({
            "appointmentId": "WO-2",
            "eventType": "START",
            "statusCode": 400,
            "error": [{"code": "INVALID_FIELD"}],
        })

        assert outcome.status_code == 400
        assert outcome.error_code == "INVALID_FIELD"
        assert outcome.success is False

    def test_outcome_error_string(self):
        outcome = EventOutcome.model_validate({
            "appointmentId": "WO-2",
            "eventType": "START",
            "error": "timeout",
        })

        assert outcome.message == "timeout"
        assert outcome.error_code is None
