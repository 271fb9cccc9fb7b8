"""Contracts for the collaborators the sync engine consumes.

Audio capture, sign-in and platform network notifications live outside the
engine. They reach it only through the small types below.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from fieldsync.models import OwnerInfo

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Credentials:
    """Bearer token plus the identity it belongs to."""

    token: str
    identity: OwnerInfo


class CredentialProvider(Protocol):
    """Supplies the current credentials, or None when signed out."""

    def current(self) -> Optional[Credentials]:
        ...


class StaticCredentialProvider:
    """In-memory credential holder updated by the sign-in flow.

    Example:
        provider = StaticCredentialProvider()
        provider.set(Credentials("token", OwnerInfo(sub="u1")))
        provider.clear()  # on sign-out
    """

    def __init__(self, credentials: Optional[Credentials] = None) -> None:
        self._credentials = credentials

    def current(self) -> Optional[Credentials]:
        return self._credentials

    def set(self, credentials: Credentials) -> None:
        self._credentials = credentials

    def clear(self) -> None:
        self._credentials = None


@dataclass(frozen=True)
class CapturedAudio:
    """A finished capture handed over by the recorder.

    Attributes:
        data: Encoded audio bytes
        content_type: MIME type hint from the encoder, if known
        duration_seconds: Duration reported by the recorder, if known
    """

    data: bytes
    content_type: Optional[str] = None
    duration_seconds: Optional[float] = None


class ConnectivityMonitor:
    """Holds the last known network reachability and notifies on transitions.

    Platform glue calls ``set_online`` from its own network callbacks; the
    engine subscribes and never polls.

    Example:
        monitor = ConnectivityMonitor(online=False)
        monitor.subscribe(lambda online: print("online" if online else "offline"))
        monitor.set_online(True)
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self._listeners: list[Callable[[bool], None]] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, callback: Callable[[bool], None]) -> None:
        """Register callback for reachability transitions.

        Args:
            callback: Function called with the new reachability flag
        """
        self._listeners.append(callback)

    def unsubscribe(self, callback: Callable[[bool], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def set_online(self, online: bool) -> None:
        """Record a reachability report; listeners fire only on change."""
        if online == self._online:
            return
        self._online = online
        for callback in list(self._listeners):
            try:
                callback(online)
            except Exception as e:
                logger.error("Connectivity listener failed: %s", e)
