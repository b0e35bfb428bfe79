"""Google Calendar API wrapper."""

import logging
from datetime import datetime, timezone
from typing import Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from calmirror.config import get_settings
from calmirror.models import ChangePage, SourceEvent
from calmirror.sync.provider import SyncTokenExpiredError

logger = logging.getLogger(__name__)


def _rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def to_source_event(raw: dict) -> SourceEvent:
    """Convert a Google event resource into the internal event record."""
    extended = raw.get("extendedProperties") or {}
    return SourceEvent(
        id=raw["id"],
        etag=raw.get("etag") or "",
        status=raw.get("status") or "confirmed",
        summary=raw.get("summary") or "",
        description=raw.get("description") or "",
        location=raw.get("location") or "",
        start=raw.get("start") or {},
        end=raw.get("end") or {},
        reminders=raw.get("reminders"),
        transparency=raw.get("transparency"),
        recurrence=raw.get("recurrence"),
        recurring_event_id=raw.get("recurringEventId"),
        private_properties=extended.get("private") or {},
    )


class GoogleCalendarClient:
    """Wrapper around Google Calendar API."""

    def __init__(self, credentials: Credentials, page_size: Optional[int] = None):
        """Initialize with (refreshable) OAuth credentials."""
        self.credentials = credentials
        self.service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
        self.settings = get_settings()
        self.page_size = page_size or self.settings.page_size

    def _collect(self, request_factory, params: dict) -> list[SourceEvent]:
        """Follow nextPageToken until exhausted."""
        events: list[SourceEvent] = []
        page_token = None

        while True:
            if page_token:
                params["pageToken"] = page_token

            result = request_factory(**params).execute()
            events.extend(to_source_event(item) for item in result.get("items", []))

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        return events

    def list_changes(
        self,
        calendar_id: str,
        page_token: Optional[str] = None,
        sync_token: Optional[str] = None,
    ) -> ChangePage:
        """
        Fetch one page of the incremental change feed.

        Without a sync token this is the unbounded full feed, which ends
        with a nextSyncToken usable for later incremental reads.
        """
        params = {
            "calendarId": calendar_id,
            "maxResults": self.page_size,
            "showDeleted": True,
            "singleEvents": False,
        }
        if sync_token:
            params["syncToken"] = sync_token
        if page_token:
            params["pageToken"] = page_token

        try:
            result = self.service.events().list(**params).execute()
        except HttpError as e:
            if e.resp.status == 410:
                logger.info(f"Sync token expired for calendar {calendar_id}")
                raise SyncTokenExpiredError(calendar_id) from e
            raise

        return ChangePage(
            items=[to_source_event(item) for item in result.get("items", [])],
            next_page_token=result.get("nextPageToken"),
            next_sync_token=result.get("nextSyncToken"),
        )

    def list_window(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[SourceEvent]:
        """List concrete occurrences between time_min and time_max."""
        return self._collect(
            self.service.events().list,
            {
                "calendarId": calendar_id,
                "maxResults": self.page_size,
                "singleEvents": True,
                "showDeleted": False,
                "timeMin": _rfc3339(time_min),
                "timeMax": _rfc3339(time_max),
            },
        )

    def list_instances(
        self,
        calendar_id: str,
        master_id: str,
        time_min: datetime,
        time_max: datetime,
    ) -> list[SourceEvent]:
        """List occurrences of a recurring series, cancelled ones included."""
        try:
            return self._collect(
                self.service.events().instances,
                {
                    "calendarId": calendar_id,
                    "eventId": master_id,
                    "maxResults": self.page_size,
                    "showDeleted": True,
                    "timeMin": _rfc3339(time_min),
                    "timeMax": _rfc3339(time_max),
                },
            )
        except HttpError as e:
            if e.resp.status in (404, 410):
                # Series deleted between the change feed read and now
                return []
            raise

    def list_events(self, calendar_id: str) -> list[SourceEvent]:
        """List every live event of a calendar, recurring series unexpanded."""
        return self._collect(
            self.service.events().list,
            {
                "calendarId": calendar_id,
                "maxResults": self.page_size,
                "singleEvents": False,
                "showDeleted": False,
            },
        )

    def get_event(self, calendar_id: str, event_id: str) -> Optional[SourceEvent]:
        """Get a single event."""
        try:
            raw = self.service.events().get(
                calendarId=calendar_id,
                eventId=event_id,
            ).execute()
        except HttpError as e:
            if e.resp.status in (404, 410):
                return None
            raise
        return to_source_event(raw)

    def create_event(self, calendar_id: str, payload: dict) -> dict:
        """Create an event on a calendar."""
        return self.service.events().insert(
            calendarId=calendar_id,
            body=payload,
            sendUpdates="none",
        ).execute()

    def update_event(self, calendar_id: str, event_id: str, payload: dict) -> Optional[dict]:
        """Replace an event; returns None if it no longer exists."""
        try:
            return self.service.events().update(
                calendarId=calendar_id,
                eventId=event_id,
                body=payload,
                sendUpdates="none",
            ).execute()
        except HttpError as e:
            if e.resp.status in (404, 410):
                return None
            raise

    def delete_event(self, calendar_id: str, event_id: str) -> bool:
        """Delete an event."""
        try:
            self.service.events().delete(
                calendarId=calendar_id,
                eventId=event_id,
                sendUpdates="none",
            ).execute()
            return True
        except HttpError as e:
            if e.resp.status == 404:
                # Already deleted
                return True
            if e.resp.status == 410:
                # Event was deleted (gone)
                return True
            raise
