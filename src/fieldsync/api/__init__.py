"""Client for the remote recordings and status API."""

from fieldsync.api.client import RemoteAPI
from fieldsync.api.schemas import (
    EventOutcome,
    PlaybackTarget,
    RemoteRecording,
    StatusEventBatchResult,
    UploadTarget,
)

__all__ = [
    "EventOutcome",
    "PlaybackTarget",
    "RemoteAPI",
    "RemoteRecording",
    "StatusEventBatchResult",
    "UploadTarget",
]
