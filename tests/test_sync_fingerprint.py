"""Tests for event fingerprints and target payloads."""

from calmirror.models import SourceEvent, Subscription
from calmirror.sync.fingerprint import (
    build_target_payload,
    canonicalize,
    fingerprint,
    mirrored_fields,
    provenance_keys,
)


def _event(**overrides) -> SourceEvent:
    fields = {
        "id": "s1",
        "etag": '"e1"',
        "summary": "Convex Optimization A",
        "location": "Room 101",
        "start": {"dateTime": "2026-03-02T10:00:00+00:00", "timeZone": "UTC"},
        "end": {"dateTime": "2026-03-02T11:00:00+00:00", "timeZone": "UTC"},
    }
    fields.update(overrides)
    return SourceEvent(**fields)


def test_fingerprint_ignores_key_order():
    a = _event(start={"dateTime": "2026-03-02T10:00:00+00:00", "timeZone": "UTC"})
    b = _event(start={"timeZone": "UTC", "dateTime": "2026-03-02T10:00:00+00:00"})
    assert fingerprint(a) == fingerprint(b)


def test_fingerprint_ignores_etag_and_provenance():
    a = _event()
    b = _event(etag='"e2"', private_properties={"calmirrorSourceId": "s1"})
    assert fingerprint(a) == fingerprint(b)


def test_fingerprint_changes_with_each_mirrored_field():
    base = fingerprint(_event())
    variants = [
        _event(summary="Convex Optimization B"),
        _event(description="Bring laptops"),
        _event(location="Room 102"),
        _event(start={"dateTime": "2026-03-02T10:30:00+00:00", "timeZone": "UTC"}),
        _event(end={"dateTime": "2026-03-02T11:30:00+00:00", "timeZone": "UTC"}),
        _event(reminders={"useDefault": False, "overrides": [{"method": "popup", "minutes": 5}]}),
        _event(transparency="transparent"),
    ]
    digests = {fingerprint(v) for v in variants}
    assert base not in digests
    assert len(digests) == len(variants)


def test_default_reminders_and_transparency_are_equivalent():
    assert fingerprint(_event(reminders=None)) == fingerprint(_event(reminders={"useDefault": True}))
    assert fingerprint(_event(transparency=None)) == fingerprint(_event(transparency="opaque"))


def test_canonicalize_sorts_nested_keys():
    assert list(canonicalize({"b": {"y": 1, "x": 2}, "a": [{"d": 1, "c": 2}]})) == ["a", "b"]
    assert list(canonicalize({"b": {"y": 1, "x": 2}})["b"]) == ["x", "y"]


def test_target_payload_has_mirrored_fields_and_provenance():
    subscription = Subscription(
        id="sub1",
        profile_key="student",
        source_calendar_id="src",
        target_calendar_id="dst",
        filter_pattern="convex",
    )
    event = _event(recurrence=None, description="")

    payload = build_target_payload(event, subscription, "calmirror")

    sub_key, source_key = provenance_keys("calmirror")
    assert payload["extendedProperties"]["private"] == {sub_key: "sub1", source_key: "s1"}
    assert {k: v for k, v in payload.items() if k != "extendedProperties"} == mirrored_fields(event)
    assert "id" not in payload
    assert "recurrence" not in payload
