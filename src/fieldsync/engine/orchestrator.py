"""Presentation-facing entry point wiring stores, sync components and state."""

import logging
from datetime import date
from typing import Any, Callable, Optional, Union

import httpx

from fieldsync.api.client import RemoteAPI
from fieldsync.config import Settings
from fieldsync.device import get_device_id
from fieldsync.errors import PreconditionError, RemoteAPIError
from fieldsync.logging import set_device_id
from fieldsync.models import (
    Recording,
    RowSource,
    StatusEvent,
    UnifiedRow,
    utc_now_iso,
)
from fieldsync.providers import CapturedAudio, ConnectivityMonitor, CredentialProvider
from fieldsync.store import RecordingStore, StatusEventStore
from fieldsync.sync import (
    FailureClassifier,
    RecordingUploader,
    StatusEventDispatcher,
    SyncController,
    SyncReport,
    SyncTrigger,
    UnifiedViewBuilder,
    UploadResult,
    ViewFilters,
)
from fieldsync.sync.duration import measure_duration

logger = logging.getLogger(__name__)

DateLike = Union[date, str, None]


def _to_date(value: DateLike) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


class FieldSyncOrchestrator:
    """High-level facade used by the presentation layer.

    Owns the local stores, the remote API client and the sync controller,
    and exposes the unified recordings list, filter setters, the user
    actions and an observable status message.

    Example:
        orchestrator = FieldSyncOrchestrator(settings, credentials, connectivity)
        orchestrator.on_message(print)
        orchestrator.start()
        await orchestrator.save_new_recording(audio, "WO-1")
        await orchestrator.sync_now()
        await orchestrator.close()
    """

    def __init__(
        self,
        config: Settings,
        credentials: CredentialProvider,
        connectivity: ConnectivityMonitor,
        api: Optional[RemoteAPI] = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Settings instance with all configuration
            credentials: Source of the bearer token and identity
            connectivity: Reachability monitor fed by the platform
            api: Optional pre-built API client (defaults to one built from config)
        """
        self.config = config
        self.credentials = credentials
        self.connectivity = connectivity
        self._log = logger

        data_path = config.data_path
        data_path.mkdir(parents=True, exist_ok=True)
        self.device_id = get_device_id(data_path)
        set_device_id(self.device_id)

        self.recordings = RecordingStore(data_path / "recordings.db")
        self.events = StatusEventStore(data_path / "events.db")
        self.api = api or RemoteAPI(
            config.api_base_url,
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            retry_backoff=config.retry_backoff_seconds,
        )

        self.uploader = RecordingUploader(self.recordings, self.api)
        self.dispatcher = StatusEventDispatcher(
            self.events,
            self.api,
            FailureClassifier(config.load_failure_signatures()),
        )
        self.view = UnifiedViewBuilder(self.recordings, self.api, self.device_id)
        self.controller = SyncController(
            self.recordings,
            self.uploader,
            self.dispatcher,
            credentials,
            connectivity,
        )
        self.controller.on_progress(self._set_message)

        self._filters = ViewFilters.last_days(config.default_filter_days)
        self._rows: list[UnifiedRow] = []
        self._message = ""
        self._error: Optional[str] = None
        self._message_callbacks: list[Callable[[str], None]] = []
        self._started = False

    # --- Observable state ---

    @property
    def message(self) -> str:
        """Latest progress / status message for the user."""
        return self._message

    @property
    def error(self) -> Optional[str]:
        """Last remote index error, if the latest refresh hit one."""
        return self._error

    @property
    def network_status(self) -> str:
        return "Online" if self.connectivity.is_online else "Offline"

    @property
    def unified_rows(self) -> list[UnifiedRow]:
        """Rows of the last refresh, newest first."""
        return list(self._rows)

    @property
    def filters(self) -> ViewFilters:
        return self._filters

    def on_message(self, callback: Callable[[str], None]) -> None:
        """Register callback for status message changes.

        Args:
            callback: Function called with each new message
        """
        self._message_callbacks.append(callback)

    def _set_message(self, message: str) -> None:
        self._message = message
        for callback in self._message_callbacks:
            try:
                callback(message)
            except Exception as e:
                self._log.error("Message callback failed: %s", e)

    def _handle_connectivity(self, online: bool) -> None:
        if online:
            self._set_message(
                "Back online. Pending uploads and status updates will resume automatically."
            )
        else:
            self._set_message(
                "You are offline. You can record; uploads and status updates will wait."
            )

    # --- Lifecycle ---

    def start(self) -> None:
        """Subscribe to connectivity transitions."""
        if self._started:
            return
        self.connectivity.subscribe(self._handle_connectivity)
        self.controller.attach()
        self._started = True
        self._log.info(
            "Sync engine started: device_id=%s, data_dir=%s", self.device_id, self.config.data_path
        )

    async def close(self) -> None:
        """Stop listening, wait for background cycles and release resources."""
        if self._started:
            self.connectivity.unsubscribe(self._handle_connectivity)
            self.controller.detach()
            self._started = False
        await self.controller.wait_idle()
        await self.api.close()
        self.recordings.close()
        self.events.close()

    # --- Filters ---

    def set_filter_from(self, value: DateLike) -> None:
        self._filters.date_from = _to_date(value)

    def set_filter_to(self, value: DateLike) -> None:
        self._filters.date_to = _to_date(value)

    def set_filter_status(self, value: Optional[str]) -> None:
        self._filters.status = value or ""

    def set_filter_device(self, value: Optional[str]) -> None:
        self._filters = ViewFilters(
            date_from=self._filters.date_from,
            date_to=self._filters.date_to,
            status=self._filters.status,
            device=value or "any",
        )

    async def refresh(self) -> list[UnifiedRow]:
        """Rebuild the unified list from the local store and remote index."""
        result = await self.view.build(
            self._filters, self.credentials.current(), self.connectivity.is_online
        )
        self._rows = result.rows
        self._error = result.remote_error
        return self.unified_rows

    # --- Actions ---

    async def save_new_recording(self, audio: CapturedAudio, appointment_id: str) -> Recording:
        """Persist a finished capture and upload it right away when possible.

        Raises:
            PreconditionError: If the appointment id or the audio is missing
        """
        appointment_id = (appointment_id or "").strip()
        if not appointment_id:
            raise PreconditionError("Appointment ID is required to save")
        if audio is None or not audio.data:
            raise PreconditionError("No recording to save")

        content_type = audio.content_type or self.config.default_content_type
        duration = audio.duration_seconds
        if duration is None:
            duration = await measure_duration(
                audio.data, content_type, self.config.duration_probe_timeout
            )

        credentials = self.credentials.current()
        record = Recording(
            appointment_id=appointment_id,
            artifact=audio.data,
            device_id=self.device_id,
            content_type=content_type,
            duration_seconds=duration,
            owner=credentials.identity if credentials else None,
        )
        self.recordings.create(record)
        self._log.info(
            "Recording saved: recording_id=%s, appointment_id=%s, size=%d",
            record.id, appointment_id, len(audio.data),
        )

        if self.connectivity.is_online and credentials is not None:
            self._set_message("Recording saved on device. Uploading now…")
            await self._upload(record)
        else:
            self._set_message(
                "Recording saved on device. It will upload when you are back online."
            )
        return record

    async def upload_one(self, record_id: str) -> Optional[UploadResult]:
        """Upload one local recording on user request.

        Raises:
            PreconditionError: If no such local recording exists
        """
        record = self.recordings.get(record_id)
        if record is None:
            raise PreconditionError(f"Recording {record_id} not found on this device")
        if not self.connectivity.is_online:
            self._set_message("Offline: will upload when back online.")
            return None
        if self.credentials.current() is None:
            self._set_message("Not authenticated. Please sign in again.")
            return None
        return await self._upload(record)

    async def _upload(self, record: Recording) -> Optional[UploadResult]:
        result = await self.controller.upload_one(record)
        if result is None:
            self._set_message("Upload already in progress.")
        elif result.success:
            self._set_message("Upload complete.")
        elif not result.skipped:
            self._set_message(f"Upload failed: {result.error}")
        return result

    def delete_local(self, record_id: str) -> bool:
        """Delete a local recording unless it is being uploaded.

        Returns:
            True if the record was removed
        """
        if self.controller.is_uploading(record_id):
            self._set_message("Cannot delete a recording while it uploads.")
            return False
        removed = self.recordings.delete_by_id(record_id)
        self._rows = [
            row for row in self._rows if not (row.source == RowSource.LOCAL and row.id == record_id)
        ]
        return removed

    def clear_uploaded_locals(self) -> int:
        """Delete local copies of every recording already uploaded."""
        return self.controller.cleanup_uploaded()

    async def sync_now(self) -> Optional[SyncReport]:
        """Run a manual sync cycle and refresh the list.

        Returns:
            SyncReport, or None if a cycle was already running
        """
        report = await self.controller.run_cycle(SyncTrigger.MANUAL)
        if report is None:
            self._set_message("Sync already in progress.")
            return None
        await self.refresh()
        return report

    async def queue_status_event(
        self,
        appointment_id: str,
        event_type: str,
        status_value: str,
        occurred_at: Optional[str] = None,
    ) -> StatusEvent:
        """Queue a status change and try to deliver it right away when online.

        Raises:
            PreconditionError: If the appointment id or event type is missing
        """
        appointment_id = (appointment_id or "").strip()
        if not appointment_id:
            raise PreconditionError(
                "Set an Appointment ID before sending a status update."
            )
        if not event_type:
            raise PreconditionError("Event type is required")

        credentials = self.credentials.current()
        event = StatusEvent(
            appointment_id=appointment_id,
            event_type=event_type,
            status_value=status_value,
            occurred_at=occurred_at or utc_now_iso(),
            owner=credentials.identity if credentials else None,
        )
        self.events.queue(event)

        if not self.connectivity.is_online:
            self._set_message("Status update saved. It will be sent when you are back online.")
            return event

        result = await self.controller.run_event_pass()
        if result is None or result.skipped_reason:
            self._set_message("Status update saved. It will be sent on the next sync.")
        elif result.error or result.kept_pending:
            self._set_message("Status update failed (will retry when you sync / go online).")
        else:
            self._set_message("Status update sent.")
        return event

    def clear_pending_events(self) -> int:
        """Discard every queued status event that has not been delivered."""
        removed = self.events.clear_pending()
        self._log.warning("Pending status events cleared: count=%d", removed)
        return removed

    async def playback_url(self, row: UnifiedRow) -> Optional[str]:
        """Resolve a playable URL for a remote row.

        Local rows return None: their bytes are on ``row.local.artifact``.
        """
        if row.source == RowSource.LOCAL:
            return None
        credentials = self.credentials.current()
        if credentials is None or not row.remote_key:
            return None
        try:
            target = await self.api.issue_playback_target(credentials.token, row.remote_key)
        except (RemoteAPIError, httpx.HTTPError, ValueError) as e:
            self._set_message(f"Playback unavailable: {e}")
            return None
        return target.playback_url

    def get_status(self) -> dict[str, Any]:
        """Get current engine status.

        Returns:
            Dictionary with connectivity, auth, cycle and store state
        """
        return {
            "online": self.connectivity.is_online,
            "authenticated": self.credentials.current() is not None,
            "syncing": self.controller.is_syncing,
            "device_id": self.device_id,
            "recordings": self.recordings.get_stats(),
            "events": self.events.get_stats(),
            "message": self._message,
            "data_dir": str(self.config.data_path),
        }
