"""Moves one local recording to remote storage."""

import logging
import time
from dataclasses import dataclass
from typing import Optional

import httpx

from fieldsync.api.client import RemoteAPI
from fieldsync.errors import RemoteAPIError, StoreError, UploadTargetError
from fieldsync.logging import log_upload_failed, log_upload_success
from fieldsync.models import Recording, RecordingStatus
from fieldsync.providers import Credentials
from fieldsync.store.recordings import RecordingStore

logger = logging.getLogger(__name__)


@dataclass
class UploadResult:
    """Result of one upload attempt."""

    recording_id: str
    success: bool
    skipped: bool = False
    remote_key: Optional[str] = None
    error: Optional[str] = None


class RecordingUploader:
    """Drives a recording from pending/failed to uploaded, or back to failed.

    Every step is persisted before the next one starts, so an interrupted
    attempt is visible as ``uploading`` (later recovered to pending) and
    the remote key is known before any byte is sent. The local artifact is
    never deleted here; a failed attempt keeps it for the next cycle.

    Callers must not run two uploads of the same record concurrently.
    """

    def __init__(self, store: RecordingStore, api: RemoteAPI) -> None:
        self.store = store
        self.api = api
        self._log = logger

    async def upload(
        self, record: Recording, credentials: Optional[Credentials]
    ) -> UploadResult:
        """Upload one recording.

        Args:
            record: Recording to upload; mutated and persisted in place
            credentials: Current credentials; without them nothing is attempted

        Returns:
            UploadResult; failures are reported, not raised
        """
        if credentials is None:
            return UploadResult(
                recording_id=record.id,
                success=False,
                skipped=True,
                error="Not authenticated",
            )

        started = time.monotonic()
        try:
            record.status = RecordingStatus.UPLOADING
            self.store.update(record)

            target = await self.api.issue_upload_target(
                credentials.token,
                appointment_id=record.appointment_id,
                content_type=record.content_type,
                device_id=record.device_id,
                duration_seconds=record.duration_seconds,
            )
            if not target.key:
                raise UploadTargetError("No storage key returned")

            record.remote_key = target.key
            self.store.update(record)

            await self.api.put_artifact(target.upload_url, record.artifact, record.content_type)
        except (
            RemoteAPIError,
            UploadTargetError,
            StoreError,
            httpx.HTTPError,
            httpx.InvalidURL,
            ValueError,
        ) as e:
            error = str(e) or e.__class__.__name__
            self._mark_failed(record, error)
            return UploadResult(
                recording_id=record.id,
                success=False,
                remote_key=record.remote_key,
                error=error,
            )

        record.status = RecordingStatus.UPLOADED
        record.last_error = None
        try:
            self.store.update(record)
        except StoreError as e:
            self._mark_failed(record, f"Uploaded but not recorded locally: {e}")
            return UploadResult(recording_id=record.id, success=False, error=str(e))

        log_upload_success(
            self._log, record.id, record.remote_key, (time.monotonic() - started) * 1000
        )
        return UploadResult(recording_id=record.id, success=True, remote_key=record.remote_key)

    def _mark_failed(self, record: Recording, error: str) -> None:
        """Persist the failed state; a store that refuses it leaves the row for recovery."""
        record.status = RecordingStatus.FAILED
        record.last_error = error
        try:
            self.store.update(record)
        except StoreError as e:
            # The row stays uploading on disk and is reset to pending on the next load
            self._log.error(
                "Could not persist failed upload: recording_id=%s, error=%s", record.id, e
            )
        log_upload_failed(self._log, record.id, error)
