from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from familyos.models.domain.calendar_domain import ChannelRegistration, SubscriptionStatus
from familyos.services.calendar.subscription_service import SubscriptionLifecycleManager


@pytest.fixture
def manager(subscription_repo, households, provider):
    return SubscriptionLifecycleManager(subscription_repo, households, provider)


async def seed_channel(subscription_repo, calendar_ref, channel_id, expires_in, sync_token=None):
    return await subscription_repo.create(
        calendar_ref,
        ChannelRegistration(
            channel_id=channel_id,
            resource_id=f"res-{channel_id}",
            expiration=datetime.now(UTC) + expires_in,
        ),
        sync_token,
    )


@pytest.mark.asyncio
async def test_register_opens_channel(manager, provider):
    result = await manager.register("cal-a")

    assert result.ok is True
    assert result.created is True
    assert provider.registered == [("user-a", "alex@example.com")]
    assert result.subscription.sync_token is None


@pytest.mark.asyncio
async def test_register_is_idempotent(manager, provider):
    first = await manager.register("cal-a")
    second = await manager.register("cal-a")

    assert second.ok is True
    assert second.created is False
    assert second.subscription.channel_id == first.subscription.channel_id
    assert len(provider.registered) == 1


@pytest.mark.asyncio
async def test_register_unknown_calendar_reports_error(manager):
    result = await manager.register("cal-missing")

    assert result.ok is False
    assert result.error == "Calendar not found"


@pytest.mark.asyncio
async def test_renew_preserves_sync_token_and_expires_old(manager, subscription_repo, provider):
    old = await seed_channel(
        subscription_repo, "cal-a", "old-chan", timedelta(hours=12), sync_token="tok-41"
    )

    result = await manager.renew("old-chan")

    assert result.ok is True
    assert result.subscription.sync_token == "tok-41"
    assert result.subscription.channel_id != "old-chan"
    assert old.status == SubscriptionStatus.EXPIRED
    assert provider.unregistered == [("user-a", "old-chan", "res-old-chan")]
    active = await manager.get_active("cal-a")
    assert active.channel_id == result.subscription.channel_id


@pytest.mark.asyncio
async def test_renew_survives_provider_stop_failure(manager, subscription_repo, provider):
    await seed_channel(subscription_repo, "cal-a", "old-chan", timedelta(hours=12))
    provider.unregister_error = RuntimeError("channel already gone")

    result = await manager.renew("old-chan")

    assert result.ok is True


@pytest.mark.asyncio
async def test_renew_unknown_channel(manager):
    result = await manager.renew("nope")

    assert result.ok is False
    assert result.error == "Subscription not found"


@pytest.mark.asyncio
async def test_renew_expiring_sweep_isolates_failures(manager, subscription_repo, provider):
    await seed_channel(subscription_repo, "cal-a", "a-chan", timedelta(hours=6))
    await seed_channel(subscription_repo, "cal-b", "b-chan", timedelta(hours=30))
    await seed_channel(subscription_repo, "cal-a", "far-chan", timedelta(days=6))
    provider.register_errors["sam@example.com"] = RuntimeError("Calendar access denied")

    sweep = await manager.renew_expiring(timedelta(days=2))

    assert sweep.processed == 2
    assert sweep.succeeded == 1
    assert sweep.failed == 1
    assert sweep.errors == [{"ref": "cal-b", "error": "Calendar access denied"}]


@pytest.mark.asyncio
async def test_list_expiring_within_window(manager, subscription_repo):
    await seed_channel(subscription_repo, "cal-a", "soon", timedelta(hours=6))
    await seed_channel(subscription_repo, "cal-b", "later", timedelta(days=5))

    expiring = await manager.list_expiring_within(timedelta(days=1))

    assert [s.channel_id for s in expiring] == ["soon"]


@pytest.mark.asyncio
async def test_register_all_missing(manager, subscription_repo, provider):
    await seed_channel(subscription_repo, "cal-a", "a-chan", timedelta(days=5))

    sweep = await manager.register_all_missing()

    assert sweep.succeeded == 1
    assert provider.registered == [("user-b", "sam@example.com")]


@pytest.mark.asyncio
async def test_teardown_expires_every_active_channel(manager, subscription_repo, provider):
    await seed_channel(subscription_repo, "cal-a", "one", timedelta(days=5))
    await seed_channel(subscription_repo, "cal-a", "two", timedelta(days=6))
    provider.unregister_error = RuntimeError("provider down")

    stopped = await manager.teardown("cal-a")

    assert stopped == 2
    assert await manager.get_active("cal-a") is None


@pytest.mark.asyncio
async def test_teardown_expires_channels_when_calendar_lookup_fails(
    manager, subscription_repo, households, monkeypatch
):
    await seed_channel(subscription_repo, "cal-a", "one", timedelta(days=5))
    await seed_channel(subscription_repo, "cal-a", "two", timedelta(days=6))
    monkeypatch.setattr(
        households, "get_calendar", AsyncMock(side_effect=RuntimeError("db unavailable"))
    )

    stopped = await manager.teardown("cal-a")

    assert stopped == 2
    assert all(row.status == SubscriptionStatus.EXPIRED for row in subscription_repo.rows)


@pytest.mark.asyncio
async def test_calendar_locks_are_released(manager):
    await manager.register("cal-a")
    await manager.teardown("cal-a")

    assert len(manager._locks) == 0


@pytest.mark.asyncio
async def test_record_sync_token(manager, subscription_repo):
    subscription = await seed_channel(subscription_repo, "cal-a", "chan", timedelta(days=5))

    await manager.record_sync_token(subscription, "tok-2")

    stored = await manager.find_by_channel_id("chan")
    assert stored.sync_token == "tok-2"
