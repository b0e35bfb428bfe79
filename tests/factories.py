"""Shared builders for test records."""

SOURCE = "courses@group.calendar.google.com"
TARGET = "student@example.com"


async def create_subscription(
    db,
    filter_pattern: str = "convex optimization",
    filter_kind: str = "keywords",
    subscription_id: str = "sub1",
    profile_key: str = "student",
    source: str = SOURCE,
    target: str = TARGET,
):
    from calmirror.subscriptions import SubscriptionStore

    return await SubscriptionStore(db).create(
        profile_key,
        source,
        target,
        filter_pattern,
        filter_kind=filter_kind,
        subscription_id=subscription_id,
    )
