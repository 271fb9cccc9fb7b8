"""Domain records shared by the stores, the sync components and the view."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


class RecordingStatus(str, Enum):
    """Lifecycle of a locally captured recording."""

    PENDING = "pending"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"


class EventStatus(str, Enum):
    """Lifecycle of a queued status event.

    COMPLETED covers both confirmed delivery and deliberate abandonment
    after a permanent remote failure.
    """

    PENDING = "pending"
    COMPLETED = "completed"


class RowSource(str, Enum):
    """Which backing store a unified row came from."""

    LOCAL = "local"
    REMOTE = "remote"


def new_id() -> str:
    """Generate an opaque unique identifier."""
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    """Current time as an ISO-8601 UTC string."""
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: str | datetime | None) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are taken as UTC. Returns None for empty or unparsable input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class OwnerInfo:
    """Snapshot of the signed-in identity at the time a record was created."""

    sub: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None

    def to_dict(self) -> dict[str, Optional[str]]:
        return {"sub": self.sub, "email": self.email, "name": self.name}

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> Optional["OwnerInfo"]:
        if not data:
            return None
        return cls(sub=data.get("sub"), email=data.get("email"), name=data.get("name"))


@dataclass
class Recording:
    """A captured audio artifact tagged to an appointment.

    Owned by the local record store until it is uploaded and cleaned up.
    """

    appointment_id: str
    artifact: bytes
    device_id: str
    id: str = field(default_factory=new_id)
    created_at: str = field(default_factory=utc_now_iso)
    status: RecordingStatus = RecordingStatus.PENDING
    content_type: str = "audio/mp4"
    duration_seconds: Optional[float] = None
    remote_key: Optional[str] = None
    last_error: Optional[str] = None
    owner: Optional[OwnerInfo] = None

    @property
    def is_retryable(self) -> bool:
        """Whether the upload pass should pick this record up."""
        return self.status in (RecordingStatus.PENDING, RecordingStatus.FAILED)

    @property
    def created(self) -> Optional[datetime]:
        return parse_timestamp(self.created_at)


@dataclass
class StatusEvent:
    """An outbound status change destined for the remote authority."""

    appointment_id: str
    event_type: str
    status_value: str
    occurred_at: str = field(default_factory=utc_now_iso)
    id: str = field(default_factory=new_id)
    status: EventStatus = EventStatus.PENDING
    created_at: Optional[str] = None
    completed_at: Optional[str] = None
    owner: Optional[OwnerInfo] = None

    def __post_init__(self) -> None:
        if not self.created_at:
            self.created_at = self.occurred_at

    @property
    def key(self) -> tuple[str, str]:
        """Composite key used to match remote outcomes."""
        return (self.appointment_id, self.event_type)

    def to_payload(self) -> dict[str, Any]:
        """Wire shape sent in the batch request."""
        owner = self.owner or OwnerInfo()
        return {
            "appointmentId": self.appointment_id,
            "eventType": self.event_type,
            "statusValue": self.status_value,
            "occurredAt": self.occurred_at,
            "userSub": owner.sub,
            "userEmail": owner.email,
            "userName": owner.name,
        }


@dataclass
class UnifiedRow:
    """One entry of the merged local + remote recordings list.

    Never persisted. ``local`` is set for local rows and ``remote`` for
    remote rows, so follow-up actions can be routed to the right store.
    """

    id: str
    source: RowSource
    created_at: str
    appointment_id: str
    status: str
    duration_seconds: Optional[float] = None
    device_id: Optional[str] = None
    remote_key: Optional[str] = None
    transcription_status: str = ""
    local: Optional[Recording] = None
    remote: Optional[Any] = None

    @property
    def has_artifact(self) -> bool:
        """Local rows carry their bytes; remote rows need a playback URL."""
        return self.local is not None

    @property
    def created(self) -> Optional[datetime]:
        return parse_timestamp(self.created_at)


def format_duration(seconds: Optional[float]) -> str:
    """Render a duration as ``m:ss``."""
    if seconds is None:
        return "0:00"
    try:
        total = int(float(seconds))
    except (TypeError, ValueError):
        return "0:00"
    if total < 0:
        return "0:00"
    minutes, secs = divmod(total, 60)
    return f"{minutes}:{secs:02d}"
