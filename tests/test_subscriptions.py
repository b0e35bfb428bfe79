"""Tests for subscription management operations."""

import json
import sqlite3

import pytest

from calmirror.subscriptions import SubscriptionNotFoundError, SubscriptionStore
from calmirror.sync.matcher import InvalidFilterRuleError
from calmirror.sync.store import MappingStore, SubscriptionStateStore

from factories import SOURCE, TARGET, create_subscription


async def _log_actions(db, subscription_id: str = "sub1") -> list[tuple]:
    cursor = await db.execute(
        "SELECT action, details FROM sync_log WHERE subscription_id = ? ORDER BY id",
        (subscription_id,),
    )
    return [(row["action"], json.loads(row["details"])) for row in await cursor.fetchall()]


@pytest.mark.asyncio
async def test_create_registers_subscription_with_empty_cursor(test_db):
    sub = await create_subscription(test_db)

    assert sub.id == "sub1"
    assert sub.source_calendar_id == SOURCE
    assert sub.target_calendar_id == TARGET
    assert sub.is_enabled is True
    state = await SubscriptionStateStore(test_db).get("sub1")
    assert state.sync_token is None


@pytest.mark.asyncio
async def test_create_generates_id_when_missing(test_db):
    sub = await SubscriptionStore(test_db).create("student", SOURCE, TARGET, "convex")
    assert len(sub.id) == 36


@pytest.mark.asyncio
async def test_create_rejects_invalid_regex(test_db):
    with pytest.raises(InvalidFilterRuleError):
        await create_subscription(test_db, filter_pattern="[a-", filter_kind="regex")
    assert await SubscriptionStore(test_db).list_all() == []


@pytest.mark.asyncio
async def test_duplicate_enabled_route_is_rejected(test_db):
    await create_subscription(test_db)
    with pytest.raises(sqlite3.IntegrityError):
        await create_subscription(test_db, subscription_id="sub2")


@pytest.mark.asyncio
async def test_list_enabled_skips_disabled(test_db):
    store = SubscriptionStore(test_db)
    await create_subscription(test_db)
    await create_subscription(test_db, subscription_id="sub2", source="other@group")

    await store.set_enabled("sub2", False)

    assert [s.id for s in await store.list_enabled()] == ["sub1"]
    assert {s.id for s in await store.list_all()} == {"sub1", "sub2"}


@pytest.mark.asyncio
async def test_require_unknown_subscription_raises(test_db):
    with pytest.raises(SubscriptionNotFoundError):
        await SubscriptionStore(test_db).require("nope")


@pytest.mark.asyncio
async def test_update_filter_replaces_rule_and_clears_cursor(test_db):
    await create_subscription(test_db)
    states = SubscriptionStateStore(test_db)
    await states.save_sync_token("sub1", "tok-1")
    await MappingStore(test_db).upsert("sub1", "s1", "t1", "e", "fp")

    sub = await SubscriptionStore(test_db).update_filter("sub1", "linear algebra")

    assert sub.filter_pattern == "linear algebra"
    assert (await states.get("sub1")).sync_token is None
    # Mappings survive unless explicitly wiped
    assert await MappingStore(test_db).get("sub1", "s1") is not None
    assert await _log_actions(test_db) == [
        ("filter_update", {
            "filter_kind": "keywords",
            "filter_pattern": "linear algebra",
            "mappings_wiped": 0,
        }),
    ]


@pytest.mark.asyncio
async def test_update_filter_append_joins_keywords(test_db):
    await create_subscription(test_db, filter_pattern="convex optimization")

    sub = await SubscriptionStore(test_db).update_filter("sub1", "linear algebra", append=True)

    assert sub.filter_pattern == "convex optimization,linear algebra"


@pytest.mark.asyncio
async def test_update_filter_append_joins_regex_alternatives(test_db):
    await create_subscription(test_db, filter_pattern="^MATH 1", filter_kind="regex")

    sub = await SubscriptionStore(test_db).update_filter("sub1", "^PHYS 2", append=True)

    assert sub.filter_kind == "regex"
    assert sub.filter_pattern == "^MATH 1|^PHYS 2"


@pytest.mark.asyncio
async def test_update_filter_can_switch_kind_and_wipe(test_db):
    await create_subscription(test_db)
    await MappingStore(test_db).upsert("sub1", "s1", "t1", "e", "fp")

    sub = await SubscriptionStore(test_db).update_filter(
        "sub1", r"^MATH \d+", filter_kind="regex", wipe_mappings=True
    )

    assert sub.filter_kind == "regex"
    assert await MappingStore(test_db).list_by_subscription("sub1") == []


@pytest.mark.asyncio
async def test_update_filter_rejects_invalid_rule_without_changes(test_db):
    await create_subscription(test_db)
    states = SubscriptionStateStore(test_db)
    await states.save_sync_token("sub1", "tok-1")

    with pytest.raises(InvalidFilterRuleError):
        await SubscriptionStore(test_db).update_filter("sub1", "(", filter_kind="regex")

    sub = await SubscriptionStore(test_db).require("sub1")
    assert sub.filter_pattern == "convex optimization"
    assert (await states.get("sub1")).sync_token == "tok-1"


@pytest.mark.asyncio
async def test_force_resync_wipes_mappings_and_state(test_db):
    await create_subscription(test_db)
    states = SubscriptionStateStore(test_db)
    await states.save_sync_token("sub1", "tok-1")
    await states.record_success("sub1")
    await MappingStore(test_db).upsert("sub1", "s1", "t1", "e", "fp")
    await MappingStore(test_db).upsert("sub1", "s2", "t2", "e", "fp")

    wiped = await SubscriptionStore(test_db).force_resync("sub1")

    state = await states.get("sub1")
    assert wiped == 2
    assert state.sync_token is None
    assert state.last_status is None
    assert await _log_actions(test_db) == [("force_resync", {"mappings_wiped": 2})]
