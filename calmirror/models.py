"""Internal records shared by the sync engine, stores and API."""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field

# Bumped whenever SourceEvent gains or changes a field the engine relies on.
EVENT_RECORD_VERSION = 1


class KeywordsRule(BaseModel):
    """OR-combined, already normalized substrings."""
    kind: Literal["keywords"] = "keywords"
    keywords: list[str]


class RegexRule(BaseModel):
    """Single case-insensitive regular expression."""
    kind: Literal["regex"] = "regex"
    pattern: str


FilterRule = Annotated[Union[KeywordsRule, RegexRule], Field(discriminator="kind")]


class Subscription(BaseModel):
    """A source -> target mirroring route for one profile."""
    id: str
    profile_key: str
    source_calendar_id: str
    target_calendar_id: str
    filter_kind: str = "keywords"
    filter_pattern: str
    is_enabled: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SourceEvent(BaseModel):
    """
    Provider event converted at the adapter boundary.

    Only fields the engine needs are kept; everything else the provider
    returns is dropped so upstream field drift cannot leak into mappings.
    """
    version: int = EVENT_RECORD_VERSION
    id: str
    etag: str = ""
    status: str = "confirmed"
    summary: str = ""
    description: str = ""
    location: str = ""
    start: dict = Field(default_factory=dict)
    end: dict = Field(default_factory=dict)
    reminders: Optional[dict] = None
    transparency: Optional[str] = None
    recurrence: Optional[list[str]] = None
    recurring_event_id: Optional[str] = None
    private_properties: dict[str, str] = Field(default_factory=dict)

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"

    @property
    def is_recurring_master(self) -> bool:
        """Has a recurrence rule and is not itself an expanded occurrence."""
        return bool(self.recurrence) and self.recurring_event_id is None

    @property
    def is_instance_or_single(self) -> bool:
        return not self.is_recurring_master


class ChangePage(BaseModel):
    """One page of the incremental change feed."""
    items: list[SourceEvent] = Field(default_factory=list)
    next_page_token: Optional[str] = None
    next_sync_token: Optional[str] = None


class Mapping(BaseModel):
    """Durable link between a source occurrence and its target copy."""
    subscription_id: str
    source_id: str
    target_id: str
    etag: str
    fingerprint: str
    master_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class SubscriptionState(BaseModel):
    """Change feed cursor and last run outcome for a subscription."""
    subscription_id: str
    sync_token: Optional[str] = None
    last_run_at: Optional[datetime] = None
    last_status: Optional[str] = None
    last_error: Optional[str] = None
    last_full_sync: Optional[datetime] = None
    consecutive_failures: int = 0


class PassCounts(BaseModel):
    created: int = 0
    updated: int = 0
    removed: int = 0


class RunSummary(BaseModel):
    """Outcome of one reconciliation run for a subscription."""
    subscription_id: str
    full_scan: bool = False
    cursor_reset: bool = False
    passes: dict[str, PassCounts] = Field(default_factory=dict)

    def counts(self, pass_name: str) -> PassCounts:
        if pass_name not in self.passes:
            self.passes[pass_name] = PassCounts()
        return self.passes[pass_name]

    @property
    def created(self) -> int:
        return sum(p.created for p in self.passes.values())

    @property
    def updated(self) -> int:
        return sum(p.updated for p in self.passes.values())

    @property
    def removed(self) -> int:
        return sum(p.removed for p in self.passes.values())

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated or self.removed)
