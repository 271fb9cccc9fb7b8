"""Shared fixtures: temporary stores and an in-memory fake of the remote API."""

import json
from datetime import date
from typing import Any, Callable, Optional

import httpx
import pytest

from fieldsync.api.client import RemoteAPI
from fieldsync.models import OwnerInfo, Recording
from fieldsync.providers import ConnectivityMonitor, Credentials, StaticCredentialProvider
from fieldsync.store import RecordingStore, StatusEventStore

API_BASE = "https://api.test"
STORAGE_BASE = "https://storage.test"


class FakeRemote:
    """Minimal stand-in for the remote API and the object storage behind it.

    Tests tweak the public attributes to inject failures or outcomes.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.objects: dict[str, bytes] = {}
        self.index: list[dict[str, Any]] = []
        self.event_batches: list[list[dict[str, Any]]] = []
        self.upload_targets_issued = 0

        # Failure injection
        self.fail_upload_target_status: Optional[int] = None
        self.fail_put_times = 0
        self.fail_events_status: Optional[int] = None
        self.events_transport_error = False
        self.index_status: Optional[int] = None
        self.omit_key = False
        self.upload_url_override: Optional[str] = None

        # Maps a received batch to the JSON response body
        self.event_responder: Callable[[list[dict[str, Any]]], Any] = self.all_success

    @staticmethod
    def all_success(events: list[dict[str, Any]]) -> dict[str, Any]:
        return {
            "processed": len(events),
            "successCount": len(events),
            "failedCount": 0,
            "results": [
                {
                    "appointmentId": e["appointmentId"],
                    "eventType": e["eventType"],
                    "occurredAt": e["occurredAt"],
                    "success": True,
                }
                for e in events
            ],
        }

    def add_index_item(self, **fields: Any) -> dict[str, Any]:
        item = {"status": "uploaded", **fields}
        self.index.append(item)
        return item

    def _filtered_index(self, params: httpx.QueryParams) -> list[dict[str, Any]]:
        items = self.index
        if "from" in params:
            start = date.fromisoformat(params["from"])
            items = [i for i in items if date.fromisoformat(i["createdAt"][:10]) >= start]
        if "to" in params:
            end = date.fromisoformat(params["to"])
            items = [i for i in items if date.fromisoformat(i["createdAt"][:10]) <= end]
        if "status" in params:
            items = [i for i in items if i.get("status") == params["status"]]
        if "deviceId" in params:
            items = [i for i in items if i.get("deviceId") == params["deviceId"]]
        return items

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.url.host == "storage.test" and request.method == "PUT":
            if self.fail_put_times > 0:
                self.fail_put_times -= 1
                return httpx.Response(500, text="storage unavailable")
            self.objects[path.lstrip("/")] = request.content
            return httpx.Response(200)

        if path == "/getUploadUrl":
            if self.fail_upload_target_status:
                return httpx.Response(self.fail_upload_target_status, text="nope")
            body = json.loads(request.content)
            self.upload_targets_issued += 1
            key = f"recordings/{body['appointmentId']}/{self.upload_targets_issued}.m4a"
            payload = {"uploadUrl": self.upload_url_override or f"{STORAGE_BASE}/{key}"}
            if not self.omit_key:
                payload["s3Key"] = key
            return httpx.Response(200, json=payload)

        if path == "/getPlaybackUrl":
            body = json.loads(request.content)
            return httpx.Response(200, json={"playbackUrl": f"{STORAGE_BASE}/play/{body['s3Key']}"})

        if path == "/recordings":
            if self.index_status:
                return httpx.Response(self.index_status, text="index down")
            return httpx.Response(200, json={"items": self._filtered_index(request.url.params)})

        if path == "/sfStatusEvents":
            if self.events_transport_error:
                raise httpx.ConnectError("connection refused", request=request)
            if self.fail_events_status:
                return httpx.Response(self.fail_events_status, text="gateway timeout")
            events = json.loads(request.content)["events"]
            self.event_batches.append(events)
            return httpx.Response(200, json=self.event_responder(events))

        return httpx.Response(404, text=f"unknown path {path}")


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture
def api(remote: FakeRemote) -> RemoteAPI:
    return RemoteAPI(
        API_BASE,
        timeout=5.0,
        max_retries=1,
        retry_backoff=0,
        transport=httpx.MockTransport(remote.handler),
    )


@pytest.fixture
def identity() -> OwnerInfo:
    return OwnerInfo(sub="user-1", email="tech@example.com", name="Field Tech")


@pytest.fixture
def credentials(identity: OwnerInfo) -> Credentials:
    return Credentials(token="token-abc", identity=identity)


@pytest.fixture
def credential_provider(credentials: Credentials) -> StaticCredentialProvider:
    return StaticCredentialProvider(credentials)


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor(online=True)


@pytest.fixture
def recording_store(tmp_path):
    store = RecordingStore(tmp_path / "recordings.db")
    yield store
    store.close()


@pytest.fixture
def event_store(tmp_path):
    store = StatusEventStore(tmp_path / "events.db")
    yield store
    store.close()


def make_recording(
    appointment_id: str = "WO-1",
    device_id: str = "device-1",
    created_at: str = "2026-03-10T09:30:00+00:00",
    **fields: Any,
) -> Recording:
    return Recording(
        appointment_id=appointment_id,
        artifact=fields.pop("artifact", b"\x00\x01audio-bytes"),
        device_id=device_id,
        created_at=created_at,
        **fields,
    )
