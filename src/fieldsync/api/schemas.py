"""Response schemas of the remote recordings and status API."""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

_WIRE_CONFIG = ConfigDict(populate_by_name=True, extra="ignore")


class UploadTarget(BaseModel):
    """Time-limited write location for one artifact."""

    model_config = _WIRE_CONFIG

    upload_url: Optional[str] = Field(default=None, alias="uploadUrl")
    s3_key: Optional[str] = Field(default=None, alias="s3Key")
    file_key: Optional[str] = Field(default=None, alias="fileKey")

    @property
    def key(self) -> Optional[str]:
        """Storage key the bytes will land under."""
        return self.s3_key or self.file_key


class PlaybackTarget(BaseModel):
    """Time-limited read location for an uploaded artifact."""

    model_config = _WIRE_CONFIG

    playback_url: Optional[str] = Field(default=None, alias="playbackUrl")


class RemoteRecording(BaseModel):
    """One entry of the remote recordings index."""

    model_config = _WIRE_CONFIG

    recording_id: Optional[str] = Field(default=None, alias="recordingId")
    s3_key: Optional[str] = Field(default=None, alias="s3Key")
    created_at: str = Field(default="", alias="createdAt")
    appointment_id: str = Field(default="", alias="appointmentId")
    status: str = "uploaded"
    duration_seconds: Optional[float] = Field(default=None, alias="durationSeconds")
    device_id: Optional[str] = Field(default=None, alias="deviceId")
    transcription_status: str = Field(default="", alias="transcriptionStatus")

    @property
    def row_id(self) -> str:
        return self.recording_id or self.s3_key or self.created_at


class RecordingIndex(BaseModel):
    """Result of an index query."""

    model_config = _WIRE_CONFIG

    items: list[RemoteRecording] = Field(default_factory=list)


class EventOutcome(BaseModel):
    """Remote verdict for one delivered status event.

    The remote reports errors in several shapes (a flat ``errorCode``, a
    nested ``error`` object, or a list of error objects); they are flattened
    into ``status_code`` / ``error_code`` / ``message``.
    """

    model_config = _WIRE_CONFIG

    appointment_id: str = Field(alias="appointmentId")
    event_type: str = Field(alias="eventType")
    occurred_at: Optional[str] = Field(default=None, alias="occurredAt")
    success: bool = False
    status_code: Optional[int] = Field(default=None, alias="statusCode")
    error_code: Optional[str] = Field(default=None, alias="errorCode")
    message: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _flatten_error(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        error = data.pop("error", None)
        if isinstance(error, list):
            error = error[0] if error else None
        if isinstance(error, dict):
            if data.get("errorCode") is None:
                data["errorCode"] = error.get("errorCode") or error.get("code")
            if data.get("statusCode") is None:
                data["statusCode"] = error.get("statusCode")
            if data.get("message") is None:
                data["message"] = error.get("message")
        elif isinstance(error, str) and data.get("message") is None:
            data["message"] = error
        return data

    @property
    def key(self) -> tuple[str, str]:
        return (self.appointment_id, self.event_type)


class StatusEventBatchResult(BaseModel):
    """Response of the batch status event call."""

    model_config = _WIRE_CONFIG

    processed: int = 0
    success_count: int = Field(default=0, alias="successCount")
    failed_count: int = Field(default=0, alias="failedCount")
    results: list[EventOutcome] = Field(default_factory=list)
