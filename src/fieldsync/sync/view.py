"""Merged, filterable view over local and remote recordings."""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional

import httpx

from fieldsync.api.client import RemoteAPI
from fieldsync.api.schemas import RemoteRecording
from fieldsync.errors import RemoteAPIError
from fieldsync.models import Recording, RecordingStatus, RowSource, UnifiedRow
from fieldsync.providers import Credentials
from fieldsync.store.recordings import RecordingStore

logger = logging.getLogger(__name__)

DEVICE_ANY = "any"
DEVICE_THIS = "this"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class ViewFilters:
    """Active filters of the recordings list.

    Date bounds are inclusive at day granularity. An empty status matches
    every status. ``device`` is either ``"this"`` or ``"any"``.
    """

    date_from: Optional[date] = None
    date_to: Optional[date] = None
    status: str = ""
    device: str = DEVICE_ANY

    def __post_init__(self) -> None:
        if self.device not in (DEVICE_ANY, DEVICE_THIS):
            raise ValueError(f"device filter must be '{DEVICE_ANY}' or '{DEVICE_THIS}'")

    @classmethod
    def last_days(cls, days: int, today: Optional[date] = None) -> "ViewFilters":
        """Filters covering the last ``days`` days up to and including today.

        Days are UTC days, the same calendar ``matches`` compares against.
        """
        today = today or datetime.now(timezone.utc).date()
        return cls(date_from=today - timedelta(days=days), date_to=today)

    def to_query(self, device_id: str) -> dict[str, Any]:
        """Query parameters for the remote index."""
        params: dict[str, Any] = {}
        if self.date_from:
            params["from"] = self.date_from.isoformat()
        if self.date_to:
            params["to"] = self.date_to.isoformat()
        if self.status:
            params["status"] = self.status
        if self.device == DEVICE_THIS:
            params["deviceId"] = device_id
        return params

    def matches(self, record: Recording, device_id: str) -> bool:
        """Apply the filters to a local record."""
        if self.date_from or self.date_to:
            created = record.created
            if created is None:
                return False
            day = created.astimezone(timezone.utc).date()
            if self.date_from and day < self.date_from:
                return False
            if self.date_to and day > self.date_to:
                return False
        if self.status and RecordingStatus(record.status).value != self.status:
            return False
        if self.device == DEVICE_THIS and record.device_id != device_id:
            return False
        return True


@dataclass
class ViewResult:
    """Rows of one view build, plus the remote query error if any."""

    rows: list[UnifiedRow] = field(default_factory=list)
    remote_error: Optional[str] = None


def _local_row(record: Recording) -> UnifiedRow:
    return UnifiedRow(
        id=record.id,
        source=RowSource.LOCAL,
        created_at=record.created_at,
        appointment_id=record.appointment_id,
        status=RecordingStatus(record.status).value,
        duration_seconds=record.duration_seconds,
        device_id=record.device_id,
        remote_key=record.remote_key,
        local=record,
    )


def _remote_row(item: RemoteRecording) -> UnifiedRow:
    return UnifiedRow(
        id=item.row_id,
        source=RowSource.REMOTE,
        created_at=item.created_at,
        appointment_id=item.appointment_id,
        status=item.status or RecordingStatus.UPLOADED.value,
        duration_seconds=item.duration_seconds,
        device_id=item.device_id,
        remote_key=item.s3_key,
        transcription_status=item.transcription_status,
        remote=item,
    )


def merge_rows(
    local: Iterable[Recording],
    remote: Iterable[RemoteRecording],
    filters: ViewFilters,
    device_id: str,
) -> list[UnifiedRow]:
    """Merge local records and remote index entries into one list.

    A local record that is uploaded and whose key the remote index already
    knows is dropped in favour of the remote entry. Filters apply to local
    records only; remote entries were filtered by the server. The result is
    sorted newest first.
    """
    remote = list(remote)
    remote_keys = {item.s3_key for item in remote if item.s3_key}

    rows: list[UnifiedRow] = []
    for record in local:
        if record.status == RecordingStatus.UPLOADED and record.remote_key in remote_keys:
            continue
        if filters.matches(record, device_id):
            rows.append(_local_row(record))

    rows.extend(_remote_row(item) for item in remote)
    rows.sort(key=lambda row: row.created or _EPOCH, reverse=True)
    return rows


class UnifiedViewBuilder:
    """Builds the unified recordings list from the local store and remote index.

    Example:
        builder = UnifiedViewBuilder(store, api, device_id)
        result = await builder.build(ViewFilters.last_days(3), credentials, online=True)
        for row in result.rows:
            print(row.source.value, row.appointment_id)
    """

    def __init__(self, store: RecordingStore, api: RemoteAPI, device_id: str) -> None:
        self.store = store
        self.api = api
        self.device_id = device_id

    async def fetch_remote(
        self,
        filters: ViewFilters,
        credentials: Optional[Credentials],
        online: bool,
    ) -> tuple[list[RemoteRecording], Optional[str]]:
        """Query the remote index; offline or signed out yields no entries."""
        if not online or credentials is None:
            return [], None
        try:
            items = await self.api.list_recordings(
                credentials.token, filters.to_query(self.device_id)
            )
        except (RemoteAPIError, httpx.HTTPError, ValueError) as e:
            logger.warning("Remote index query failed: %s", e)
            return [], str(e) or e.__class__.__name__
        return items, None

    async def build(
        self,
        filters: ViewFilters,
        credentials: Optional[Credentials],
        online: bool,
    ) -> ViewResult:
        """Build a fresh unified list."""
        remote, error = await self.fetch_remote(filters, credentials, online)
        rows = merge_rows(self.store.get_all(), remote, filters, self.device_id)
        return ViewResult(rows=rows, remote_error=error)
