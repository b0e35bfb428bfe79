"""Tests for the Google Calendar client wrapper."""

from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from calmirror.sync import google_calendar as module
from calmirror.sync.google_calendar import GoogleCalendarClient, to_source_event
from calmirror.sync.provider import SyncTokenExpiredError


class FakeHttpError(Exception):
    def __init__(self, status: int):
        self.resp = SimpleNamespace(status=status)


def _raising(status: int):
    def _raise():
        raise FakeHttpError(status)

    return SimpleNamespace(execute=_raise)


class PagedEvents:
    """events() resource returning two pages for list and instances."""

    def __init__(self):
        self.calls = []

    def _paged(self, method: str, **kwargs):
        self.calls.append((method, dict(kwargs)))
        if kwargs.get("pageToken") == "page-2":
            return SimpleNamespace(
                execute=lambda: {"items": [{"id": "e2", "summary": "B"}], "nextSyncToken": "sync-2"}
            )
        return SimpleNamespace(
            execute=lambda: {"items": [{"id": "e1", "summary": "A"}], "nextPageToken": "page-2"}
        )

    def list(self, **kwargs):
        return self._paged("list", **kwargs)

    def instances(self, **kwargs):
        return self._paged("instances", **kwargs)

    def insert(self, **kwargs):
        self.calls.append(("insert", dict(kwargs)))
        return SimpleNamespace(execute=lambda: {"id": "new-id", **kwargs["body"]})

    def update(self, **kwargs):
        self.calls.append(("update", dict(kwargs)))
        return SimpleNamespace(execute=lambda: {"id": kwargs["eventId"], **kwargs["body"]})


class FailingEvents:
    def __init__(self, status: int):
        self.status = status

    def list(self, **_kwargs):
        return _raising(self.status)

    def instances(self, **_kwargs):
        return _raising(self.status)

    def get(self, **_kwargs):
        return _raising(self.status)

    def update(self, **_kwargs):
        return _raising(self.status)

    def delete(self, **_kwargs):
        return _raising(self.status)


def _client(events) -> GoogleCalendarClient:
    client = object.__new__(GoogleCalendarClient)
    client.page_size = 50
    client.service = SimpleNamespace(events=lambda: events)
    return client


def test_to_source_event_converts_google_resource():
    event = to_source_event({
        "id": "inst_1",
        "etag": '"3"',
        "status": "confirmed",
        "summary": "Convex Optimization",
        "start": {"dateTime": "2026-03-02T10:00:00Z"},
        "end": {"dateTime": "2026-03-02T11:00:00Z"},
        "recurringEventId": "master",
        "originalStartTime": {"dateTime": "2026-03-02T10:00:00Z"},
        "extendedProperties": {"private": {"calmirrorSourceId": "x"}},
        "htmlLink": "https://calendar.google.com/event?eid=abc",
    })

    assert event.id == "inst_1"
    assert event.recurring_event_id == "master"
    assert event.private_properties == {"calmirrorSourceId": "x"}
    assert event.description == ""
    assert event.is_instance_or_single
    assert not event.is_cancelled


def test_to_source_event_flags_recurring_master():
    master = to_source_event({"id": "m", "recurrence": ["RRULE:FREQ=WEEKLY"]})
    cancelled = to_source_event({"id": "c", "status": "cancelled"})

    assert master.is_recurring_master
    assert cancelled.is_cancelled


def test_list_changes_returns_single_page_with_tokens():
    events = PagedEvents()
    client = _client(events)

    first = client.list_changes("cal-1", sync_token="sync-1")
    second = client.list_changes("cal-1", page_token=first.next_page_token, sync_token="sync-1")

    assert [e.id for e in first.items] == ["e1"]
    assert first.next_page_token == "page-2"
    assert first.next_sync_token is None
    assert [e.id for e in second.items] == ["e2"]
    assert second.next_sync_token == "sync-2"
    params = events.calls[0][1]
    assert params["syncToken"] == "sync-1"
    assert params["showDeleted"] is True
    assert params["singleEvents"] is False
    assert "timeMin" not in params


def test_list_window_follows_pagination_and_expands_series():
    events = PagedEvents()
    client = _client(events)
    start = datetime(2026, 3, 1, tzinfo=timezone.utc)

    result = client.list_window("cal-1", start, datetime(2026, 4, 1))

    assert [e.id for e in result] == ["e1", "e2"]
    params = events.calls[0][1]
    assert params["singleEvents"] is True
    assert params["timeMin"] == "2026-03-01T00:00:00+00:00"
    # Naive datetimes are taken as UTC
    assert params["timeMax"] == "2026-04-01T00:00:00+00:00"
    assert events.calls[1][1]["pageToken"] == "page-2"


def test_list_instances_and_list_events_paginate():
    events = PagedEvents()
    client = _client(events)
    start = datetime(2026, 3, 1, tzinfo=timezone.utc)

    instances = client.list_instances("cal-1", "master", start, start)
    listed = client.list_events("cal-1")

    assert [e.id for e in instances] == ["e1", "e2"]
    assert events.calls[0][0] == "instances"
    assert events.calls[0][1]["eventId"] == "master"
    assert [e.id for e in listed] == ["e1", "e2"]
    assert events.calls[2][1]["singleEvents"] is False


def test_create_and_update_do_not_notify_attendees():
    events = PagedEvents()
    client = _client(events)

    created = client.create_event("dst", {"summary": "A"})
    updated = client.update_event("dst", "t1", {"summary": "B"})

    assert created["id"] == "new-id"
    assert updated == {"id": "t1", "summary": "B"}
    assert all(call[1]["sendUpdates"] == "none" for call in events.calls)


def test_gone_sync_token_raises_expired(monkeypatch):
    monkeypatch.setattr(module, "HttpError", FakeHttpError)
    client = _client(FailingEvents(410))

    with pytest.raises(SyncTokenExpiredError):
        client.list_changes("cal", sync_token="stale")


@pytest.mark.parametrize("status", [404, 410])
def test_missing_events_map_to_safe_results(monkeypatch, status):
    monkeypatch.setattr(module, "HttpError", FakeHttpError)
    client = _client(FailingEvents(status))
    now = datetime.now(timezone.utc)

    assert client.get_event("cal", "evt") is None
    assert client.update_event("cal", "evt", {}) is None
    assert client.delete_event("cal", "evt") is True
    assert client.list_instances("cal", "master", now, now) == []


def test_other_http_errors_propagate(monkeypatch):
    monkeypatch.setattr(module, "HttpError", FakeHttpError)
    client = _client(FailingEvents(500))

    with pytest.raises(FakeHttpError):
        client.list_changes("cal")
    with pytest.raises(FakeHttpError):
        client.get_event("cal", "evt")
    with pytest.raises(FakeHttpError):
        client.delete_event("cal", "evt")
    with pytest.raises(FakeHttpError):
        client.update_event("cal", "evt", {})
