"""Durable per-device stores for recordings and outbound status events."""

from fieldsync.store.events import StatusEventStore
from fieldsync.store.recordings import RecordingStore

__all__ = ["RecordingStore", "StatusEventStore"]
