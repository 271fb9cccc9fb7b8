"""Tests for connectivity-triggered and manual sync cycles."""

import asyncio

import pytest

from conftest import make_recording
from fieldsync.models import RecordingStatus, StatusEvent
from fieldsync.providers import ConnectivityMonitor
from fieldsync.store import RecordingStore
from fieldsync.sync import (
    RecordingUploader,
    StatusEventDispatcher,
    SyncController,
    SyncTrigger,
    UploadResult,
)


@pytest.fixture
def controller(recording_store, event_store, api, credential_provider, connectivity):
    return SyncController(
        recording_store,
        RecordingUploader(recording_store, api),
        StatusEventDispatcher(event_store, api),
        credential_provider,
        connectivity,
    )


class GatedUploader:
    """Uploader whose uploads block until the test opens the gate."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.started = asyncio.Event()
        self.calls = 0

    async def upload(self, record, credentials):
        self.calls += 1
        self.started.set()
        await self.gate.wait()
        return UploadResult(recording_id=record.id, success=True, remote_key="k")


def _queue_event(event_store, appointment_id="WO-1"):
    return event_store.queue(
        StatusEvent(appointment_id=appointment_id, event_type="START", status_value="On Site")
    )


class TestSyncCycle:
    """Full cycles: uploads, cleanup, then events."""

    def test_cycle_uploads_cleans_and_sends_events(
        self, controller, recording_store, event_store, remote
    ):
        pending = make_recording()
        failed = make_recording(appointment_id="WO-2", status=RecordingStatus.FAILED)
        recording_store.create(pending)
        recording_store.create(failed)
        _queue_event(event_store)

        report = asyncio.run(controller.run_cycle(SyncTrigger.MANUAL))

        assert report.uploaded == 2
        assert report.failed == 0
        assert report.cleaned == 2
        assert report.events.succeeded == 1
        assert recording_store.get_all() == []
        assert event_store.get_pending() == []
        assert len(remote.objects) == 2

    def test_uploads_happen_before_events(self, controller, recording_store, event_store, remote):
        recording_store.create(make_recording())
        _queue_event(event_store)

        asyncio.run(controller.run_cycle(SyncTrigger.CONNECTIVITY))

        paths = [request.url.path for request in remote.requests]
        assert paths.index("/sfStatusEvents") > paths.index("/getUploadUrl")

    def test_failed_upload_keeps_local_copy(self, controller, recording_store, remote):
        record = make_recording()
        recording_store.create(record)
        remote.fail_put_times = 1

        report = asyncio.run(controller.run_cycle(SyncTrigger.MANUAL))

        assert report.failed == 1
        assert report.cleaned == 0
        assert recording_store.get(record.id).status == RecordingStatus.FAILED

    def test_offline_cycle_only_cleans(self, controller, recording_store, event_store, remote,
                                       connectivity):
        recording_store.create(make_recording())
        recording_store.create(make_recording(status=RecordingStatus.UPLOADED, remote_key="K"))
        _queue_event(event_store)
        connectivity.set_online(False)

        report = asyncio.run(controller.run_cycle(SyncTrigger.MANUAL))

        assert report.uploads == []
        assert report.cleaned == 1
        assert report.events.skipped_reason == "offline"
        assert remote.requests == []

    def test_stale_uploading_record_is_resumed(self, tmp_path, api, credential_provider,
                                               connectivity, event_store):
        """A record stuck uploading with no live upload behind it is picked up."""
        store = RecordingStore(tmp_path / "stale.db")
        record = make_recording()
        store.create(record)
        record.status = RecordingStatus.UPLOADING
        store.update(record)
        controller = SyncController(
            store,
            RecordingUploader(store, api),
            StatusEventDispatcher(event_store, api),
            credential_provider,
            connectivity,
        )

        results = asyncio.run(controller.run_upload_pass())

        assert [r.recording_id for r in results] == [record.id]
        assert store.get(record.id).status == RecordingStatus.UPLOADED
        store.close()

    def test_manual_progress_messages(self, controller, recording_store):
        recording_store.create(make_recording())
        recording_store.create(make_recording(appointment_id="WO-2"))
        messages = []
        controller.on_progress(messages.append)

        asyncio.run(controller.run_cycle(SyncTrigger.MANUAL))

        assert messages[0] == "Syncing uploads…"
        assert messages[1:3] == ["Uploading 1 of 2…", "Uploading 2 of 2…"]
        assert messages[3] == "Sending status updates…"
        assert messages[-1].startswith("Sync complete: 2 uploaded, 0 failed")

    def test_connectivity_cycle_reports_no_progress(self, controller, recording_store):
        recording_store.create(make_recording())
        messages = []
        controller.on_progress(messages.append)

        asyncio.run(controller.run_cycle(SyncTrigger.CONNECTIVITY))

        assert messages == []

    def test_offline_manual_message(self, controller, connectivity):
        connectivity.set_online(False)
        messages = []
        controller.on_progress(messages.append)

        asyncio.run(controller.run_cycle(SyncTrigger.MANUAL))

        assert messages[0] == "Offline: unable to sync uploads."


class TestNoOverlap:
    """Triggers arriving during a running cycle are dropped."""

    def test_second_cycle_is_skipped(self, recording_store, event_store, api,
                                     credential_provider, connectivity):
        recording_store.create(make_recording())
        uploader = GatedUploader()
        controller = SyncController(
            recording_store,
            uploader,
            StatusEventDispatcher(event_store, api),
            credential_provider,
            connectivity,
        )

        async def scenario():
            first = asyncio.create_task(controller.run_cycle(SyncTrigger.CONNECTIVITY))
            await uploader.started.wait()
            assert controller.is_syncing
            second = await controller.run_cycle(SyncTrigger.MANUAL)
            uploader.gate.set()
            return await first, second

        first, second = asyncio.run(scenario())

        assert second is None
        assert first is not None
        assert uploader.calls == 1

    def test_record_in_flight_is_not_uploaded_twice(self, recording_store, event_store, api,
                                                    credential_provider, connectivity):
        record = make_recording()
        recording_store.create(record)
        uploader = GatedUploader()
        controller = SyncController(
            recording_store,
            uploader,
            StatusEventDispatcher(event_store, api),
            credential_provider,
            connectivity,
        )

        async def scenario():
            first = asyncio.create_task(controller.upload_one(record))
            await uploader.started.wait()
            assert controller.is_uploading(record.id)
            second = await controller.upload_one(record)
            uploader.gate.set()
            return await first, second

        first, second = asyncio.run(scenario())

        assert first.success is True
        assert second is None
        assert uploader.calls == 1
        assert not controller.is_uploading(record.id)

    def test_upload_one_offline_is_skipped(self, controller, recording_store, connectivity):
        record = make_recording()
        recording_store.create(record)
        connectivity.set_online(False)

        result = asyncio.run(controller.upload_one(record))

        assert result.skipped is True
        assert recording_store.get(record.id).status == RecordingStatus.PENDING


class TestConnectivityTrigger:
    """Regaining connectivity schedules a cycle on the running loop."""

    def test_going_online_runs_a_cycle(self, recording_store, event_store, api,
                                       credential_provider):
        connectivity = ConnectivityMonitor(online=False)
        controller = SyncController(
            recording_store,
            RecordingUploader(recording_store, api),
            StatusEventDispatcher(event_store, api),
            credential_provider,
            connectivity,
        )
        recording_store.create(make_recording())
        _queue_event(event_store)
        controller.attach()

        async def scenario():
            connectivity.set_online(True)
            await controller.wait_idle()

        asyncio.run(scenario())

        assert recording_store.get_all() == []
        assert event_store.get_pending() == []

    def test_going_offline_schedules_nothing(self, controller, recording_store, connectivity,
                                             remote):
        recording_store.create(make_recording())
        controller.attach()

        async def scenario():
            connectivity.set_online(False)
            await controller.wait_idle()

        asyncio.run(scenario())

        assert remote.requests == []

    def test_detached_controller_ignores_transitions(self, recording_store, event_store, api,
                                                     credential_provider, remote):
        connectivity = ConnectivityMonitor(online=False)
        controller = SyncController(
            recording_store,
            RecordingUploader(recording_store, api),
            StatusEventDispatcher(event_store, api),
            credential_provider,
            connectivity,
        )
        recording_store.create(make_recording())
        controller.attach()
        controller.detach()

        async def scenario():
            connectivity.set_online(True)
            await controller.wait_idle()

        asyncio.run(scenario())

        assert remote.requests == []


class TestCleanup:
    """Deleting local copies of uploaded recordings."""

    def test_only_uploaded_records_removed(self, controller, recording_store):
        uploaded = make_recording(status=RecordingStatus.UPLOADED, remote_key="K")
        pending = make_recording()
        failed = make_recording(status=RecordingStatus.FAILED)
        for record in (uploaded, pending, failed):
            recording_store.create(record)

        assert controller.cleanup_uploaded() == 1
        assert {r.id for r in recording_store.get_all()} == {pending.id, failed.id}


class DeletingUploader(RecordingUploader):
    """Runs a side effect while the first upload of a pass is in flight."""

    def __init__(self, store, api, side_effect):
        super().__init__(store, api)
        self.side_effect = side_effect
        self.uploaded_ids = []

    async def upload(self, record, credentials):
        if not self.uploaded_ids:
            self.side_effect()
        self.uploaded_ids.append(record.id)
        return await super().upload(record, credentials)


class TestPassSeesLatestState:
    """Records changed while an earlier upload runs are re-read before upload."""

    def _controller(self, store, uploader, event_store, api, credential_provider, connectivity):
        return SyncController(
            store,
            uploader,
            StatusEventDispatcher(event_store, api),
            credential_provider,
            connectivity,
        )

    def test_record_deleted_mid_pass_is_not_uploaded(
        self, recording_store, event_store, api, remote, credential_provider, connectivity
    ):
        first = make_recording(appointment_id="WO-A", created_at="2026-03-10T09:00:00+00:00")
        second = make_recording(appointment_id="WO-B", created_at="2026-03-10T10:00:00+00:00")
        recording_store.create(first)
        recording_store.create(second)
        uploader = DeletingUploader(
            recording_store, api, lambda: recording_store.delete_by_id(second.id)
        )
        controller = self._controller(
            recording_store, uploader, event_store, api, credential_provider, connectivity
        )

        report = asyncio.run(controller.run_cycle(SyncTrigger.MANUAL))

        assert uploader.uploaded_ids == [first.id]
        assert [r.recording_id for r in report.uploads] == [first.id]
        assert remote.upload_targets_issued == 1
        assert list(remote.objects) == ["recordings/WO-A/1.m4a"]
        assert recording_store.get(second.id) is None

    def test_record_uploaded_elsewhere_mid_pass_is_skipped(
        self, recording_store, event_store, api, remote, credential_provider, connectivity
    ):
        first = make_recording(appointment_id="WO-A", created_at="2026-03-10T09:00:00+00:00")
        second = make_recording(appointment_id="WO-B", created_at="2026-03-10T10:00:00+00:00")
        recording_store.create(first)
        recording_store.create(second)

        def mark_second_uploaded():
            record = recording_store.get(second.id)
            record.status = RecordingStatus.UPLOADED
            record.remote_key = "recordings/WO-B/elsewhere.m4a"
            recording_store.update(record)

        uploader = DeletingUploader(recording_store, api, mark_second_uploaded)
        controller = self._controller(
            recording_store, uploader, event_store, api, credential_provider, connectivity
        )

        results = asyncio.run(controller.run_upload_pass())

        assert [r.recording_id for r in results] == [first.id]
        assert "recordings/WO-B/2.m4a" not in remote.objects
        assert remote.upload_targets_issued == 1


class TestUploadFailureDoesNotAbortCycle:
    """A broken upload target still lets cleanup and event delivery run."""

    def test_malformed_upload_url(self, controller, recording_store, event_store, remote):
        record = make_recording()
        recording_store.create(record)
        _queue_event(event_store)
        remote.upload_url_override = "https://stor\x00age.test/x"

        report = asyncio.run(controller.run_cycle(SyncTrigger.CONNECTIVITY))

        assert report.failed == 1
        assert recording_store.get(record.id).status == RecordingStatus.FAILED
        assert report.events.succeeded == 1
        assert event_store.get_pending() == []
