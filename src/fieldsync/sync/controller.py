"""Runs the upload, cleanup and event passes when connectivity returns or on demand."""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

from fieldsync.logging import log_state_change, state_logger
from fieldsync.models import Recording, RecordingStatus
from fieldsync.providers import ConnectivityMonitor, CredentialProvider
from fieldsync.store.recordings import RecordingStore
from fieldsync.sync.dispatcher import DispatchResult, StatusEventDispatcher
from fieldsync.sync.uploader import RecordingUploader, UploadResult

logger = logging.getLogger(__name__)


class SyncTrigger(str, Enum):
    """What started a sync cycle."""

    CONNECTIVITY = "connectivity"
    MANUAL = "manual"


class CycleKind(str, Enum):
    """Passes that must never overlap with themselves."""

    UPLOAD = "upload"
    EVENTS = "events"


@dataclass
class SyncReport:
    """Outcome of one full sync cycle."""

    trigger: SyncTrigger
    uploads: list[UploadResult] = field(default_factory=list)
    cleaned: int = 0
    events: DispatchResult = field(default_factory=DispatchResult)

    @property
    def uploaded(self) -> int:
        return sum(1 for r in self.uploads if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.uploads if not r.success and not r.skipped)

    def summary(self) -> str:
        """Human-readable one-line summary."""
        return (
            f"Sync complete: {self.uploaded} uploaded, {self.failed} failed, "
            f"{self.cleaned} local copies cleared, {self.events.succeeded} status updates sent, "
            f"{self.events.dropped} dropped, {self.events.kept_pending} waiting."
        )


class SyncController:
    """Sequences uploads, local cleanup and event delivery.

    Both connectivity-regained and manual triggers run the same cycle:
    upload every pending/failed recording, delete local copies that are
    already uploaded, then deliver queued status events. A trigger arriving
    while a cycle runs is dropped, not queued; the next trigger catches up.

    In-flight state lives here rather than in the components: the set of
    recording ids being uploaded and one flag per pass kind.

    Example:
        controller = SyncController(store, uploader, dispatcher, credentials, connectivity)
        controller.attach()
        report = await controller.run_cycle(SyncTrigger.MANUAL)
    """

    def __init__(
        self,
        recordings: RecordingStore,
        uploader: RecordingUploader,
        dispatcher: StatusEventDispatcher,
        credentials: CredentialProvider,
        connectivity: ConnectivityMonitor,
    ) -> None:
        self.recordings = recordings
        self.uploader = uploader
        self.dispatcher = dispatcher
        self.credentials = credentials
        self.connectivity = connectivity

        self._in_flight: set[str] = set()
        self._pass_running: dict[CycleKind, bool] = {kind: False for kind in CycleKind}
        self._cycle_running = False
        self._tasks: set[asyncio.Task] = set()
        self._progress_callbacks: list[Callable[[str], None]] = []
        self._attached = False

    @property
    def is_syncing(self) -> bool:
        return self._cycle_running

    def is_uploading(self, record_id: str) -> bool:
        return record_id in self._in_flight

    def is_pass_running(self, kind: CycleKind) -> bool:
        return self._pass_running[kind]

    def on_progress(self, callback: Callable[[str], None]) -> None:
        """Register callback for manual sync progress messages.

        Args:
            callback: Function called with each progress message
        """
        self._progress_callbacks.append(callback)

    def _notify_progress(self, message: str) -> None:
        for callback in self._progress_callbacks:
            try:
                callback(message)
            except Exception as e:
                logger.error("Progress callback failed: %s", e)

    def attach(self) -> None:
        """Start listening for connectivity transitions."""
        if not self._attached:
            self.connectivity.subscribe(self._handle_connectivity)
            self._attached = True

    def detach(self) -> None:
        if self._attached:
            self.connectivity.unsubscribe(self._handle_connectivity)
            self._attached = False

    def _handle_connectivity(self, online: bool) -> None:
        """Schedule a cycle on the running loop when the network comes back."""
        log_state_change(
            state_logger(),
            "offline" if online else "online",
            "online" if online else "offline",
            trigger="connectivity",
        )
        if not online:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("Connectivity regained outside an event loop; sync deferred")
            return
        task = loop.create_task(self.run_cycle(SyncTrigger.CONNECTIVITY))
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background sync cycle failed: %s", task.exception())

    async def wait_idle(self) -> None:
        """Wait for cycles scheduled by connectivity callbacks to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def upload_one(self, record: Recording) -> Optional[UploadResult]:
        """Upload one record unless an upload of it is already running.

        Returns:
            UploadResult, or None when the record is already in flight
        """
        if record.id in self._in_flight:
            logger.debug("Upload already in flight: recording_id=%s", record.id)
            return None
        if not self.connectivity.is_online:
            return UploadResult(recording_id=record.id, success=False, skipped=True, error="Offline")

        self._in_flight.add(record.id)
        try:
            return await self.uploader.upload(record, self.credentials.current())
        finally:
            self._in_flight.discard(record.id)

    def _upload_candidates(self) -> list[Recording]:
        return [record for record in self.recordings.get_all() if self._is_candidate(record)]

    def _is_candidate(self, record: Optional[Recording]) -> bool:
        if record is None or record.id in self._in_flight:
            return False
        return record.is_retryable or record.status == RecordingStatus.UPLOADING

    async def run_upload_pass(self, report_progress: bool = False) -> Optional[list[UploadResult]]:
        """Upload every pending, failed or stale-uploading record, one at a time.

        Returns:
            Results per record, or None if an upload pass is already running
        """
        if self._pass_running[CycleKind.UPLOAD]:
            return None
        self._pass_running[CycleKind.UPLOAD] = True
        try:
            if not self.connectivity.is_online or self.credentials.current() is None:
                return []

            candidates = self._upload_candidates()
            results: list[UploadResult] = []
            for index, candidate in enumerate(candidates, start=1):
                # Earlier transfers yield; the record may have been deleted or uploaded since
                record = self.recordings.get(candidate.id)
                if not self._is_candidate(record):
                    logger.debug("Upload candidate no longer eligible: recording_id=%s", candidate.id)
                    continue
                if report_progress:
                    self._notify_progress(f"Uploading {index} of {len(candidates)}…")
                result = await self.upload_one(record)
                if result is not None:
                    results.append(result)
            return results
        finally:
            self._pass_running[CycleKind.UPLOAD] = False

    def cleanup_uploaded(self) -> int:
        """Delete local copies of recordings already uploaded.

        Returns:
            Number of local records removed
        """
        removed = 0
        for record in self.recordings.get_all():
            if record.status == RecordingStatus.UPLOADED and record.id not in self._in_flight:
                if self.recordings.delete_by_id(record.id):
                    removed += 1
        if removed:
            logger.info("Cleared uploaded local copies: count=%d", removed)
        return removed

    async def run_event_pass(self) -> Optional[DispatchResult]:
        """Run one status event dispatch cycle.

        Returns:
            DispatchResult, or None if a dispatch cycle is already running
        """
        if self._pass_running[CycleKind.EVENTS]:
            return None
        self._pass_running[CycleKind.EVENTS] = True
        try:
            return await self.dispatcher.dispatch(
                self.credentials.current(), self.connectivity.is_online
            )
        finally:
            self._pass_running[CycleKind.EVENTS] = False

    async def run_cycle(self, trigger: SyncTrigger) -> Optional[SyncReport]:
        """Run uploads, cleanup and event delivery in that order.

        Returns:
            SyncReport, or None when a cycle was already in progress
        """
        if self._cycle_running:
            logger.debug("Sync cycle already running, trigger ignored: trigger=%s", trigger.value)
            return None

        manual = trigger == SyncTrigger.MANUAL
        self._cycle_running = True
        logger.info("Sync cycle started: trigger=%s", trigger.value)
        try:
            if manual:
                if self.connectivity.is_online:
                    self._notify_progress("Syncing uploads…")
                else:
                    self._notify_progress("Offline: unable to sync uploads.")

            report = SyncReport(trigger=trigger)
            report.uploads = await self.run_upload_pass(report_progress=manual) or []
            report.cleaned = self.cleanup_uploaded()

            if manual and self.connectivity.is_online:
                self._notify_progress("Sending status updates…")
            events = await self.run_event_pass()
            report.events = events if events is not None else DispatchResult(skipped_reason="busy")
        finally:
            self._cycle_running = False

        logger.info(
            "Sync cycle finished: trigger=%s, uploaded=%d, failed=%d, cleaned=%d, events_completed=%d",
            trigger.value, report.uploaded, report.failed, report.cleaned, report.events.completed,
        )
        if manual:
            self._notify_progress(report.summary())
        return report
