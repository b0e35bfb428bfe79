"""Core reconciliation engine."""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import aiosqlite

from calmirror.config import Settings, get_settings
from calmirror.models import PassCounts, RunSummary, SourceEvent, Subscription
from calmirror.sync.fingerprint import build_target_payload, fingerprint, is_mirrored_copy
from calmirror.sync.matcher import compile_matcher, parse_rule
from calmirror.sync.provider import CalendarProvider, SyncTokenExpiredError
from calmirror.sync.store import MappingStore, SubscriptionStateStore

logger = logging.getLogger(__name__)

DELTA = "delta"
BACKFILL = "backfill"
PRUNE = "prune"
DEDUP = "dedup"

Matcher = Callable[[SourceEvent], bool]


class ReconciliationEngine:
    """
    Converges a subscription's target calendar onto the matching source events.

    A run executes four passes in order, each safe to repeat:

    1. delta    - apply the incremental change feed and advance the cursor
    2. backfill - mirror matching occurrences inside the backfill window
    3. prune    - drop mappings whose source is gone, cancelled or no longer matching
    4. dedup    - delete target events that no mapping accounts for

    Remote writes always happen before the matching mapping write, so the
    only partial-failure outcome is an unmapped target copy, which the next
    dedup pass removes.
    """

    def __init__(
        self,
        db: aiosqlite.Connection,
        provider: CalendarProvider,
        settings: Optional[Settings] = None,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self.db = db
        self.provider = provider
        self.settings = settings or get_settings()
        self.mappings = MappingStore(db)
        self.state = SubscriptionStateStore(db)
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def _call(self, func, *args, **kwargs):
        """Run a blocking provider call off the event loop."""
        return await asyncio.to_thread(func, *args, **kwargs)

    def backfill_window(self) -> tuple[datetime, datetime]:
        now = self._now()
        return (
            now - timedelta(days=self.settings.backfill_past_days),
            now + timedelta(days=self.settings.backfill_future_days),
        )

    async def run(self, subscription: Subscription) -> RunSummary:
        """Run all four passes for one subscription."""
        summary = RunSummary(subscription_id=subscription.id)

        try:
            matcher = compile_matcher(
                parse_rule(subscription.filter_kind, subscription.filter_pattern)
            )
            await self._delta_pass(subscription, matcher, summary)
            await self._backfill_pass(subscription, matcher, summary.counts(BACKFILL))
            await self._prune_pass(subscription, matcher, summary.counts(PRUNE))
            await self._dedup_pass(subscription, matcher, summary.counts(DEDUP))
        except SyncTokenExpiredError:
            logger.warning(
                f"Sync token expired for subscription {subscription.id}, "
                "full resync on next run"
            )
            await self.state.reset_sync_token(subscription.id)
            await self.state.record_success(subscription.id)
            summary.cursor_reset = True
            return summary
        except Exception as e:
            logger.error(f"Reconciliation failed for subscription {subscription.id}: {e}")
            await self.state.record_failure(subscription.id, str(e) or type(e).__name__)
            raise

        await self.state.record_success(subscription.id)
        logger.info(
            f"Reconciled subscription {subscription.id}: "
            f"{summary.created} created, {summary.updated} updated, {summary.removed} removed"
        )
        return summary

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    async def _delta_pass(
        self,
        subscription: Subscription,
        matcher: Matcher,
        summary: RunSummary,
    ) -> None:
        counts = summary.counts(DELTA)
        state = await self.state.get(subscription.id)
        sync_token = state.sync_token
        summary.full_scan = sync_token is None
        page_token = None

        while True:
            page = await self._call(
                self.provider.list_changes,
                subscription.source_calendar_id,
                page_token=page_token,
                sync_token=sync_token,
            )

            for event in page.items:
                await self._apply_change(subscription, matcher, event, counts)

            if page.next_page_token:
                page_token = page.next_page_token
                continue

            # Terminal page: the feed has moved past every item seen above.
            if page.next_sync_token:
                await self.state.save_sync_token(
                    subscription.id,
                    page.next_sync_token,
                    full_sync=summary.full_scan,
                )
            else:
                logger.warning(
                    f"Change feed for subscription {subscription.id} ended without a sync token"
                )
            break

    async def _apply_change(
        self,
        subscription: Subscription,
        matcher: Matcher,
        event: SourceEvent,
        counts: PassCounts,
    ) -> None:
        if event.is_cancelled:
            if await self._remove(subscription, event.id):
                counts.removed += 1
            # A cancelled series takes its mirrored occurrences with it.
            for mapping in await self.mappings.list_by_master(subscription.id, event.id):
                if await self._remove(subscription, mapping.source_id):
                    counts.removed += 1
            return

        if event.is_recurring_master:
            await self._fan_out_master(subscription, matcher, event, counts)
            return

        if self._is_own_copy(event):
            return

        if matcher(event):
            self._count(await self._upsert(subscription, event), counts)
        elif await self._remove(subscription, event.id):
            counts.removed += 1

    async def _fan_out_master(
        self,
        subscription: Subscription,
        matcher: Matcher,
        master: SourceEvent,
        counts: PassCounts,
    ) -> None:
        """Re-derive every occurrence of a changed series inside the backfill window."""
        time_min, time_max = self.backfill_window()
        instances = await self._call(
            self.provider.list_instances,
            subscription.source_calendar_id,
            master.id,
            time_min,
            time_max,
        )
        logger.debug(
            f"Series {master.id} changed, re-syncing {len(instances)} occurrence(s)"
        )

        for instance in instances:
            if instance.is_cancelled or not matcher(instance):
                if await self._remove(subscription, instance.id):
                    counts.removed += 1
            else:
                self._count(await self._upsert(subscription, instance, force=True), counts)

        # Masters are never mirrored themselves; clear any legacy row.
        if await self._remove(subscription, master.id):
            counts.removed += 1

    async def _backfill_pass(
        self,
        subscription: Subscription,
        matcher: Matcher,
        counts: PassCounts,
    ) -> None:
        time_min, time_max = self.backfill_window()
        events = await self._call(
            self.provider.list_window,
            subscription.source_calendar_id,
            time_min,
            time_max,
        )

        for event in events:
            if event.is_cancelled or not event.is_instance_or_single:
                continue
            if self._is_own_copy(event):
                continue
            if matcher(event):
                self._count(await self._upsert(subscription, event), counts)

    async def _prune_pass(
        self,
        subscription: Subscription,
        matcher: Matcher,
        counts: PassCounts,
    ) -> None:
        for mapping in await self.mappings.list_by_subscription(subscription.id):
            source = await self._call(
                self.provider.get_event,
                subscription.source_calendar_id,
                mapping.source_id,
            )

            if source is None:
                reason = "source gone"
            elif source.is_cancelled:
                reason = "source cancelled"
            elif source.is_recurring_master:
                reason = "recurring master"
            elif not matcher(source):
                reason = "no longer matches"
            else:
                continue

            logger.debug(f"Pruning {mapping.source_id} for subscription {subscription.id}: {reason}")
            if await self._remove(subscription, mapping.source_id):
                counts.removed += 1

    async def _dedup_pass(
        self,
        subscription: Subscription,
        matcher: Matcher,
        counts: PassCounts,
    ) -> None:
        mapped = {m.target_id for m in await self.mappings.list_by_subscription(subscription.id)}
        # Never touch copies owned by another subscription sharing this target.
        foreign = await self.mappings.target_ids_for_calendar(
            subscription.target_calendar_id,
            exclude_subscription_id=subscription.id,
        )

        target_events = await self._call(
            self.provider.list_events,
            subscription.target_calendar_id,
        )
        # Mirroring into the source calendar: only our own copies are candidates.
        same_calendar = subscription.source_calendar_id == subscription.target_calendar_id

        for event in target_events:
            if event.id in mapped or event.id in foreign:
                continue
            if same_calendar and not self._is_own_copy(event):
                continue
            if self.settings.dedup_only_matching and not matcher(event):
                continue

            await self._call(
                self.provider.delete_event,
                subscription.target_calendar_id,
                event.id,
            )
            counts.removed += 1
            logger.info(
                f"Deleted orphan {event.id} from target calendar of subscription {subscription.id}"
            )

    # ------------------------------------------------------------------
    # Single-occurrence operations
    # ------------------------------------------------------------------

    def _is_own_copy(self, event: SourceEvent) -> bool:
        return is_mirrored_copy(event, self.settings.calendar_sync_tag)

    @staticmethod
    def _count(outcome: Optional[str], counts: PassCounts) -> None:
        if outcome == "created":
            counts.created += 1
        elif outcome == "updated":
            counts.updated += 1

    async def _upsert(
        self,
        subscription: Subscription,
        event: SourceEvent,
        force: bool = False,
    ) -> Optional[str]:
        """
        Create or refresh the target copy of one occurrence.

        Returns "created", "updated" or None when the copy is already current.
        """
        digest = fingerprint(event)
        existing = await self.mappings.get(subscription.id, event.id)
        payload = build_target_payload(event, subscription, self.settings.calendar_sync_tag)
        target_calendar_id = subscription.target_calendar_id

        if existing is not None:
            if not force and existing.fingerprint == digest and existing.etag == event.etag:
                return None

            result = await self._call(
                self.provider.update_event,
                target_calendar_id,
                existing.target_id,
                payload,
            )
            if result is not None:
                await self.mappings.upsert(
                    subscription.id, event.id, result.get("id") or existing.target_id,
                    event.etag, digest, master_id=event.recurring_event_id,
                )
                logger.debug(f"Updated target {existing.target_id} from source {event.id}")
                return "updated"

            logger.warning(
                f"Target copy {existing.target_id} of {event.id} is gone, creating replacement"
            )

        created = await self._call(self.provider.create_event, target_calendar_id, payload)
        await self.mappings.upsert(
            subscription.id, event.id, created["id"],
            event.etag, digest, master_id=event.recurring_event_id,
        )
        logger.debug(f"Created target {created['id']} from source {event.id}")
        return "created"

    async def _remove(self, subscription: Subscription, source_id: str) -> bool:
        """Delete the target copy and mapping of a source id; False if unmapped."""
        mapping = await self.mappings.get(subscription.id, source_id)
        if mapping is None:
            return False

        await self._call(
            self.provider.delete_event,
            subscription.target_calendar_id,
            mapping.target_id,
        )
        await self.mappings.delete(subscription.id, source_id)
        logger.debug(f"Removed target {mapping.target_id} for source {source_id}")
        return True

    async def purge(self, subscription: Subscription) -> int:
        """Delete every mirrored copy of a subscription along with its mapping."""
        removed = 0
        for mapping in await self.mappings.list_by_subscription(subscription.id):
            if await self._remove(subscription, mapping.source_id):
                removed += 1
        logger.info(f"Purged {removed} mirrored event(s) for subscription {subscription.id}")
        return removed
