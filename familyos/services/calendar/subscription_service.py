"""
Subscription lifecycle for Google push channels.

One active channel per connected calendar. Channels are opened on connect,
replaced on renewal (carrying the sync token across) and expired on
disconnect. Nothing here raises to the caller; every operation returns a
result value and logs the failure.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from familyos.infrastructure.observability.logging import get_logger
from familyos.models.domain.calendar_domain import CalendarRef, ChannelSubscription
from familyos.models.domain.job_domain import SweepResult
from familyos.repositories.household_repository import HouseholdRepository
from familyos.repositories.subscription_repository import SubscriptionRepository
from familyos.services.calendar.provider import CalendarProvider
from familyos.services.infrastructure.keyed_locks import KeyedLocks

logger = get_logger(__name__)

DEFAULT_RENEWAL_WINDOW = timedelta(days=2)


class SubscriptionError(Exception):
    """Raised inside the lifecycle manager; converted to a RegistrationResult at the boundary."""

    def __init__(self, message: str, calendar_ref: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.calendar_ref = calendar_ref
        self.recoverable = recoverable


@dataclass(slots=True)
class RegistrationResult:
    ok: bool
    calendar_ref: str
    subscription: ChannelSubscription | None = None
    created: bool = False
    error: str | None = None


class SubscriptionLifecycleManager:
    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        households: HouseholdRepository,
        provider: CalendarProvider,
    ):
        self.subscriptions = subscriptions
        self.households = households
        self.provider = provider
        # Serializes register/renew per calendar within this process
        self._locks = KeyedLocks()

    async def register(self, calendar_ref: str) -> RegistrationResult:
        """
        Open a push channel for a calendar.

        Idempotent: when an active channel already exists it is returned
        unchanged and no provider call is made.
        """
        async with self._locks.hold(calendar_ref):
            try:
                existing = await self.subscriptions.get_active_for_calendar(calendar_ref)
                if existing:
                    logger.info(
                        "Calendar already has an active channel",
                        calendar_ref=calendar_ref,
                        channel_id=existing.channel_id,
                    )
                    return RegistrationResult(ok=True, calendar_ref=calendar_ref, subscription=existing)

                calendar = await self._load_calendar(calendar_ref)
                subscription = await self._open_channel(calendar, sync_token=None)

                logger.info(
                    "Calendar channel registered",
                    calendar_ref=calendar_ref,
                    channel_id=subscription.channel_id,
                    expiration=subscription.expiration.isoformat(),
                )
                return RegistrationResult(
                    ok=True, calendar_ref=calendar_ref, subscription=subscription, created=True
                )

            except Exception as e:
                logger.error(
                    "Calendar channel registration failed",
                    calendar_ref=calendar_ref,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return RegistrationResult(ok=False, calendar_ref=calendar_ref, error=str(e))

    async def renew(self, channel_id: str) -> RegistrationResult:
        """
        Replace a channel with a fresh one, preserving its sync token.

        The new row is written before the old one is expired, so for a brief
        moment both are active; readers take the most recent active row.
        """
        old = await self._safe_lookup(channel_id)
        if old is None:
            logger.warning("Renewal requested for unknown channel", channel_id=channel_id)
            return RegistrationResult(ok=False, calendar_ref="", error="Subscription not found")

        calendar_ref = old.calendar_ref
        async with self._locks.hold(calendar_ref):
            try:
                if not old.is_active():
                    # Already superseded, e.g. by a redundant sweep
                    current = await self.subscriptions.get_active_for_calendar(calendar_ref)
                    if current:
                        return RegistrationResult(
                            ok=True, calendar_ref=calendar_ref, subscription=current
                        )

                calendar = await self._load_calendar(calendar_ref)
                new = await self._open_channel(calendar, sync_token=old.sync_token)
                await self.subscriptions.mark_expired(old.id)

                logger.info(
                    "Calendar channel renewed",
                    calendar_ref=calendar_ref,
                    old_channel_id=old.channel_id,
                    new_channel_id=new.channel_id,
                    sync_token_preserved=new.sync_token == old.sync_token,
                )

            except Exception as e:
                logger.error(
                    "Calendar channel renewal failed",
                    calendar_ref=calendar_ref,
                    channel_id=channel_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                return RegistrationResult(ok=False, calendar_ref=calendar_ref, error=str(e))

        # Old channel lapses on its own if this fails
        await self._stop_quietly(calendar.user_id, old)
        return RegistrationResult(ok=True, calendar_ref=calendar_ref, subscription=new, created=True)

    async def list_expiring_within(
        self, window: timedelta = DEFAULT_RENEWAL_WINDOW, now: datetime | None = None
    ) -> list[ChannelSubscription]:
        now = now or datetime.now(UTC)
        return await self.subscriptions.list_active_expiring_before(now + window)

    async def teardown(self, calendar_ref: str) -> int:
        """
        Stop every active channel for a calendar (on disconnect).

        Rows are marked expired whether or not the provider call succeeds.
        """
        stopped = 0
        async with self._locks.hold(calendar_ref):
            try:
                active = await self.subscriptions.list_active_for_calendar(calendar_ref)
                if not active:
                    return 0

                try:
                    calendar = await self.households.get_calendar(calendar_ref)
                except Exception as e:
                    logger.warning(
                        "Calendar lookup failed, expiring channels without provider stop",
                        calendar_ref=calendar_ref,
                        error=str(e),
                    )
                    calendar = None

                for subscription in active:
                    if calendar:
                        await self._stop_quietly(calendar.user_id, subscription)
                    await self.subscriptions.mark_expired(subscription.id)
                    stopped += 1

            except Exception as e:
                logger.error(
                    "Calendar channel teardown failed",
                    calendar_ref=calendar_ref,
                    stopped=stopped,
                    error=str(e),
                )
                return stopped

        logger.info("Calendar channels torn down", calendar_ref=calendar_ref, count=stopped)
        return stopped

    async def renew_expiring(self, window: timedelta = DEFAULT_RENEWAL_WINDOW) -> SweepResult:
        """Renewal sweep. A failing calendar never aborts the batch."""
        result = SweepResult(name="channel_renewal")
        for subscription in await self.list_expiring_within(window):
            outcome = await self.renew(subscription.channel_id)
            if outcome.ok:
                result.record_success()
            else:
                result.record_failure(subscription.calendar_ref, outcome.error or "unknown")

        logger.info("Channel renewal sweep completed", **result.to_dict())
        return result

    async def register_all_missing(self) -> SweepResult:
        """Open channels for included calendars that have none."""
        result = SweepResult(name="channel_registration")
        for calendar in await self.households.list_calendars_without_active_channel():
            outcome = await self.register(calendar.id)
            if outcome.ok:
                result.record_success()
            else:
                result.record_failure(calendar.id, outcome.error or "unknown")

        logger.info("Missing channel registration completed", **result.to_dict())
        return result

    async def get_active(self, calendar_ref: str) -> ChannelSubscription | None:
        return await self.subscriptions.get_active_for_calendar(calendar_ref)

    async def find_by_channel_id(self, channel_id: str) -> ChannelSubscription | None:
        return await self.subscriptions.get_by_channel_id(channel_id)

    async def record_sync_token(self, subscription: ChannelSubscription, sync_token: str) -> None:
        await self.subscriptions.update_sync_token(subscription.id, sync_token)
        subscription.sync_token = sync_token

    async def record_notification(self, subscription: ChannelSubscription, at: datetime) -> None:
        await self.subscriptions.touch_notification(subscription.id, at)
        subscription.last_notification_at = at

    async def _load_calendar(self, calendar_ref: str) -> CalendarRef:
        calendar = await self.households.get_calendar(calendar_ref)
        if calendar is None:
            raise SubscriptionError("Calendar not found", calendar_ref=calendar_ref, recoverable=False)
        return calendar

    async def _open_channel(
        self, calendar: CalendarRef, sync_token: str | None
    ) -> ChannelSubscription:
        registration = await self.provider.register_channel(
            calendar.user_id, calendar.google_calendar_id
        )
        return await self.subscriptions.create(calendar.id, registration, sync_token)

    async def _safe_lookup(self, channel_id: str) -> ChannelSubscription | None:
        try:
            return await self.subscriptions.get_by_channel_id(channel_id)
        except Exception as e:
            logger.error("Channel lookup failed", channel_id=channel_id, error=str(e))
            return None

    async def _stop_quietly(self, user_id: str, subscription: ChannelSubscription) -> None:
        try:
            await self.provider.unregister_channel(
                user_id, subscription.channel_id, subscription.resource_id
            )
        except Exception as e:
            logger.warning(
                "Failed to stop provider channel, it will lapse on its own",
                channel_id=subscription.channel_id,
                error=str(e),
            )
