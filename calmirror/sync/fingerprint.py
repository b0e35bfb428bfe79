"""Content fingerprints for mirrored events."""

import hashlib
import json
from typing import Any

from calmirror.models import SourceEvent, Subscription


def _normalize_reminders(reminders: dict | None) -> dict:
    if not reminders or reminders.get("useDefault"):
        return {"useDefault": True}
    return reminders


def mirrored_fields(event: SourceEvent) -> dict:
    """
    Project an event onto the fields copied to the target calendar.

    The etag is deliberately absent: it changes on provider-side touches
    that never reach the target copy.
    """
    return {
        "summary": event.summary,
        "description": event.description,
        "location": event.location,
        "start": event.start,
        "end": event.end,
        "reminders": _normalize_reminders(event.reminders),
        "transparency": event.transparency or "opaque",
    }


def canonicalize(value: Any) -> Any:
    """Recursively sort mapping keys so equal payloads serialize identically."""
    if isinstance(value, dict):
        return {key: canonicalize(value[key]) for key in sorted(value)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    return value


def fingerprint(event: SourceEvent) -> str:
    """SHA-256 over the canonical JSON of the mirrored projection."""
    encoded = json.dumps(
        canonicalize(mirrored_fields(event)),
        separators=(",", ":"),
        ensure_ascii=False,
    ).encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


def provenance_keys(tag: str) -> tuple[str, str]:
    """Names of the private extended properties stamped on target copies."""
    return f"{tag}SubscriptionId", f"{tag}SourceId"


def build_target_payload(event: SourceEvent, subscription: Subscription, tag: str) -> dict:
    """Request body for creating or updating the target copy of an event."""
    subscription_key, source_key = provenance_keys(tag)
    payload = mirrored_fields(event)
    payload["extendedProperties"] = {
        "private": {
            subscription_key: subscription.id,
            source_key: event.id,
        }
    }
    return payload


def is_mirrored_copy(event: SourceEvent, tag: str) -> bool:
    """True when the event is a copy written by this service."""
    _, source_key = provenance_keys(tag)
    return source_key in event.private_properties
