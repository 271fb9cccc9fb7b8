"""Async HTTP client for the remote recordings and status API."""

import asyncio
import logging
from typing import Any, Optional

import httpx

from fieldsync import __version__
from fieldsync.api.schemas import (
    PlaybackTarget,
    RecordingIndex,
    RemoteRecording,
    StatusEventBatchResult,
    UploadTarget,
)
from fieldsync.errors import RemoteAPIError, UploadTargetError

logger = logging.getLogger(__name__)


class RemoteAPI:
    """Client for the remote API boundary.

    Uses one httpx.AsyncClient for connection pooling. Idempotent calls are
    retried with exponential backoff on transient failures (5xx, 429,
    connection errors, timeouts) but not on other client errors (4xx).
    The batch status event call is sent exactly once per invocation.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        max_retries: int = 3,
        retry_backoff: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Base URL of the remote API
            timeout: Request timeout in seconds
            max_retries: Attempts per idempotent call
            retry_backoff: Base delay in seconds, doubled after each attempt
            transport: Optional transport override (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_backoff = retry_backoff

        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers={"User-Agent": f"fieldsync/{__version__}"},
            transport=transport,
        )

    @staticmethod
    def _auth_headers(token: Optional[str]) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _send(
        self,
        operation: str,
        method: str,
        url: str,
        retry: bool = True,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, retrying transient failures when allowed.

        Raises:
            RemoteAPIError: On a non-2xx response that is final
            httpx.HTTPError: On a network failure after the last attempt
        """
        attempts = self.max_retries if retry else 1
        last_error: Exception | None = None

        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.is_success:
                    return response

                error = RemoteAPIError(operation, response.status_code, response.text)
                if not error.is_transient:
                    raise error
                last_error = error
            except httpx.TransportError as e:
                last_error = e

            logger.debug(
                "%s attempt %d/%d failed: %s", operation, attempt, attempts, last_error
            )
            if attempt < attempts and self.retry_backoff > 0:
                await asyncio.sleep(self.retry_backoff * 2 ** (attempt - 1))

        assert last_error is not None
        raise last_error

    async def issue_upload_target(
        self,
        token: Optional[str],
        appointment_id: str,
        content_type: str,
        device_id: str,
        duration_seconds: Optional[float],
    ) -> UploadTarget:
        """Request a time-limited write location for an artifact.

        Raises:
            UploadTargetError: If the response has no upload URL
        """
        response = await self._send(
            "getUploadUrl",
            "POST",
            f"{self.base_url}/getUploadUrl",
            headers=self._auth_headers(token),
            json={
                "appointmentId": appointment_id,
                "fileName": "recording",
                "contentType": content_type,
                "deviceId": device_id,
                "durationSeconds": duration_seconds,
            },
        )
        target = UploadTarget.model_validate(response.json())
        if not target.upload_url:
            raise UploadTargetError("No uploadUrl returned")
        return target

    async def issue_playback_target(self, token: Optional[str], key: str) -> PlaybackTarget:
        """Request a time-limited read location for an uploaded artifact."""
        response = await self._send(
            "getPlaybackUrl",
            "POST",
            f"{self.base_url}/getPlaybackUrl",
            headers=self._auth_headers(token),
            json={"s3Key": key},
        )
        return PlaybackTarget.model_validate(response.json())

    async def list_recordings(
        self, token: Optional[str], params: Optional[dict[str, Any]] = None
    ) -> list[RemoteRecording]:
        """Query the remote index; empty filter values are not sent."""
        query = {
            key: value
            for key, value in (params or {}).items()
            if value is not None and value != ""
        }
        response = await self._send(
            "listRecordings",
            "GET",
            f"{self.base_url}/recordings",
            headers=self._auth_headers(token),
            params=query,
        )
        return RecordingIndex.model_validate(response.json()).items

    async def send_status_events(
        self, token: Optional[str], events: list[dict[str, Any]]
    ) -> StatusEventBatchResult:
        """Deliver a batch of status events and return per-event outcomes.

        A success response without a JSON body yields no outcomes.
        """
        response = await self._send(
            "sfStatusEvents",
            "POST",
            f"{self.base_url}/sfStatusEvents",
            retry=False,
            headers=self._auth_headers(token),
            json={"events": events},
        )
        if not response.content:
            return StatusEventBatchResult()
        try:
            data = response.json()
        except ValueError:
            logger.warning("Status event response is not JSON: %s", response.text[:200])
            return StatusEventBatchResult()
        return StatusEventBatchResult.model_validate(data or {})

    async def put_artifact(self, upload_url: str, data: bytes, content_type: str) -> None:
        """Transfer artifact bytes to a pre-issued write location.

        No bearer token is sent; the URL itself carries the authorization.
        """
        await self._send(
            "putArtifact",
            "PUT",
            upload_url,
            content=data,
            headers={"Content-Type": content_type},
        )

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        await self._client.aclose()

    async def __aenter__(self) -> "RemoteAPI":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        await self.close()
