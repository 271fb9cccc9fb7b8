"""Batch delivery of queued status events to the remote authority."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

import httpx

from fieldsync.api.client import RemoteAPI
from fieldsync.api.schemas import EventOutcome
from fieldsync.config.settings import DEFAULT_FAILURE_SIGNATURES, FailureSignature
from fieldsync.errors import RemoteAPIError
from fieldsync.logging import log_event_dropped
from fieldsync.models import parse_timestamp
from fieldsync.providers import Credentials
from fieldsync.store.events import StatusEventStore

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class DispatchResult:
    """Aggregate counts of one dispatch cycle."""

    processed: int = 0
    succeeded: int = 0
    dropped: int = 0
    kept_pending: int = 0
    skipped_reason: Optional[str] = None
    error: Optional[str] = None

    @property
    def completed(self) -> int:
        return self.succeeded + self.dropped


class FailureClassifier:
    """Decides whether a failed outcome can never succeed.

    Only outcomes matching a configured signature are permanent. Everything
    else, unknown error shapes included, is transient and retried.
    """

    def __init__(self, signatures: Optional[Iterable[FailureSignature]] = None) -> None:
        self.signatures = list(DEFAULT_FAILURE_SIGNATURES if signatures is None else signatures)

    def is_permanent(self, outcome: EventOutcome) -> bool:
        if outcome.success:
            return False
        return any(
            signature.matches(outcome.status_code, outcome.error_code)
            for signature in self.signatures
        )


def reduce_latest_outcomes(
    outcomes: Iterable[EventOutcome],
) -> dict[tuple[str, str], EventOutcome]:
    """Keep the latest outcome per (appointment id, event type).

    Outcomes are compared by occurrence timestamp; on a tie the first one
    seen wins. Missing or unparsable timestamps sort earliest.
    """
    latest: dict[tuple[str, str], EventOutcome] = {}
    for outcome in outcomes:
        current = latest.get(outcome.key)
        if current is None:
            latest[outcome.key] = outcome
            continue
        candidate_at = parse_timestamp(outcome.occurred_at) or _EPOCH
        current_at = parse_timestamp(current.occurred_at) or _EPOCH
        if candidate_at > current_at:
            latest[outcome.key] = outcome
    return latest


class StatusEventDispatcher:
    """Sends all pending status events in one batch and settles each one.

    An event is completed only after the remote has answered for it, either
    with success or with a permanent failure. Events without an outcome, with
    a transient failure, or caught in a request that failed before a response
    was parsed stay pending for the next cycle.

    The dispatcher is not reentrant; the caller guarantees one cycle at a time.
    """

    def __init__(
        self,
        store: StatusEventStore,
        api: RemoteAPI,
        classifier: Optional[FailureClassifier] = None,
    ) -> None:
        self.store = store
        self.api = api
        self.classifier = classifier or FailureClassifier()
        self._log = logger

    async def dispatch(self, credentials: Optional[Credentials], online: bool) -> DispatchResult:
        """Run one delivery cycle.

        Args:
            credentials: Current credentials, or None when signed out
            online: Last known network reachability

        Returns:
            DispatchResult with per-category counts
        """
        pending = self.store.get_pending()
        if not pending:
            return DispatchResult(skipped_reason="empty")
        if not online:
            return DispatchResult(kept_pending=len(pending), skipped_reason="offline")
        if credentials is None:
            return DispatchResult(kept_pending=len(pending), skipped_reason="unauthenticated")

        self._log.info("Sending status events: count=%d", len(pending))
        try:
            response = await self.api.send_status_events(
                credentials.token, [event.to_payload() for event in pending]
            )
        except (RemoteAPIError, httpx.HTTPError, ValueError) as e:
            self._log.warning("Status event batch failed, keeping all pending: %s", e)
            return DispatchResult(
                processed=len(pending),
                kept_pending=len(pending),
                error=str(e) or e.__class__.__name__,
            )

        latest = reduce_latest_outcomes(response.results)
        result = DispatchResult(processed=len(pending))

        for event in pending:
            outcome = latest.get(event.key)
            if outcome is None:
                result.kept_pending += 1
            elif outcome.success:
                self.store.mark_completed(event.id)
                result.succeeded += 1
            elif self.classifier.is_permanent(outcome):
                self.store.mark_completed(event.id)
                result.dropped += 1
                log_event_dropped(
                    self._log,
                    event.id,
                    event.appointment_id,
                    event.event_type,
                    outcome.status_code,
                    outcome.error_code,
                )
            else:
                result.kept_pending += 1
                self._log.info(
                    "Status event kept for retry: event_id=%s, status_code=%s, error_code=%s",
                    event.id, outcome.status_code, outcome.error_code,
                )

        self._log.info(
            "Status event cycle finished: processed=%d, succeeded=%d, dropped=%d, pending=%d",
            result.processed, result.succeeded, result.dropped, result.kept_pending,
        )
        return result
