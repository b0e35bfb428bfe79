"""Calendar provider interface consumed by the reconciliation engine."""

from datetime import datetime
from typing import Optional, Protocol

from calmirror.models import ChangePage, SourceEvent


class ProviderError(Exception):
    """Base class for provider failures the engine reacts to explicitly."""


class SyncTokenExpiredError(ProviderError):
    """The stored sync token can no longer be used; a full resync is required."""


class CalendarProvider(Protocol):
    """
    Blocking calendar operations needed by the engine.

    Page and sync tokens are opaque and must be round-tripped unmodified.
    "Not found" is never raised: reads return None and deletes return True.
    """

    def list_changes(
        self,
        calendar_id: str,
        page_token: Optional[str] = None,
        sync_token: Optional[str] = None,
    ) -> ChangePage:
        """One page of changes since sync_token, tombstones included."""
        ...

    def list_window(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[SourceEvent]:
        """All occurrences in a time window, recurring series expanded."""
        ...

    def get_event(self, calendar_id: str, event_id: str) -> Optional[SourceEvent]: ...

    def list_instances(
        self,
        calendar_id: str,
        master_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[SourceEvent]:
        """Concrete occurrences of one recurring series, cancelled ones included."""
        ...

    def list_events(self, calendar_id: str) -> list[SourceEvent]:
        """Every live event currently in a calendar, without expansion."""
        ...

    def create_event(self, calendar_id: str, payload: dict) -> dict: ...

    def update_event(self, calendar_id: str, event_id: str, payload: dict) -> Optional[dict]:
        """Replace an event; None when it no longer exists."""
        ...

    def delete_event(self, calendar_id: str, event_id: str) -> bool: ...
