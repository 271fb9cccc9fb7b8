"""Sync components: uploads, status event delivery, unified view and cycle control."""

from fieldsync.sync.controller import CycleKind, SyncController, SyncReport, SyncTrigger
from fieldsync.sync.dispatcher import (
    DispatchResult,
    FailureClassifier,
    StatusEventDispatcher,
    reduce_latest_outcomes,
)
from fieldsync.sync.uploader import RecordingUploader, UploadResult
from fieldsync.sync.view import UnifiedViewBuilder, ViewFilters, ViewResult, merge_rows

__all__ = [
    "CycleKind",
    "DispatchResult",
    "FailureClassifier",
    "RecordingUploader",
    "StatusEventDispatcher",
    "SyncController",
    "SyncReport",
    "SyncTrigger",
    "UnifiedViewBuilder",
    "UploadResult",
    "ViewFilters",
    "ViewResult",
    "merge_rows",
    "reduce_latest_outcomes",
]
