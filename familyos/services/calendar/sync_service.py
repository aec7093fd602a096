"""
Incremental calendar sync.

A push notification names a channel; the engine fetches the delta since the
channel's sync token, stores the new token, and hands analysis of the
household to the background runner. Deleted events are told apart from the
rest by status only. The provider cannot distinguish a new event from an
edited one without a local cache, so both are reported as changed.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from familyos.infrastructure.observability.logging import get_logger
from familyos.models.domain.calendar_domain import CalendarEvent, CalendarRef
from familyos.models.domain.insight_domain import AnalysisResult
from familyos.repositories.household_repository import HouseholdRepository
from familyos.services.calendar.google_client import SyncTokenExpiredError
from familyos.services.calendar.provider import CalendarProvider
from familyos.services.calendar.subscription_service import SubscriptionLifecycleManager
from familyos.services.infrastructure.background_runner import BackgroundTaskRunner

logger = get_logger(__name__)

RELEVANCE_LOOKBACK = timedelta(days=7)

# resourceState values sent by Google
STATE_SYNC = "sync"
STATE_EXISTS = "exists"
STATE_NOT_EXISTS = "not_exists"

AnalyzeFn = Callable[[str], Awaitable[AnalysisResult]]


@dataclass(slots=True)
class DeltaSync:
    """Outcome of one provider fetch."""

    events: list[CalendarEvent]
    next_sync_token: str | None
    full_sync: bool


@dataclass(slots=True)
class SyncResult:
    success: bool = False
    events_processed: int = 0
    changed_events: int = 0
    deleted_events: int = 0
    analysis_triggered: bool = False
    skipped_reason: str | None = None
    error: str | None = None
    changed_ids: list[str] = field(default_factory=list)


def categorize_changes(events: list[CalendarEvent]) -> tuple[list[CalendarEvent], list[CalendarEvent]]:
    """Split a delta into (changed, deleted). New events land in changed."""
    changed: list[CalendarEvent] = []
    deleted: list[CalendarEvent] = []
    for event in events:
        if event.is_removed():
            deleted.append(event)
        else:
            changed.append(event)
    return changed, deleted


def is_relevant_change(event: CalendarEvent, now: datetime | None = None) -> bool:
    """Only events starting no more than a week ago can affect upcoming detection."""
    if event.start_time is None:
        return False
    now = now or datetime.now(UTC)
    return event.start_time >= now - RELEVANCE_LOOKBACK


class IncrementalSyncEngine:
    def __init__(
        self,
        subscriptions: SubscriptionLifecycleManager,
        households: HouseholdRepository,
        provider: CalendarProvider,
        runner: BackgroundTaskRunner,
        analyze: AnalyzeFn,
    ):
        self.subscriptions = subscriptions
        self.households = households
        self.provider = provider
        self.runner = runner
        self.analyze = analyze

    async def sync(self, calendar: CalendarRef, sync_token: str | None) -> DeltaSync:
        """
        Fetch changes since `sync_token` (None requests a full sync).

        A token rejected by the provider is retried once as a full sync.
        """
        try:
            delta = await self.provider.fetch_delta(
                calendar.user_id, calendar.google_calendar_id, sync_token
            )
            return DeltaSync(delta.events, delta.next_sync_token, full_sync=sync_token is None)

        except SyncTokenExpiredError:
            if sync_token is None:
                raise
            logger.warning("Sync token expired, falling back to full sync", calendar_ref=calendar.id)
            delta = await self.provider.fetch_delta(
                calendar.user_id, calendar.google_calendar_id, None
            )
            return DeltaSync(delta.events, delta.next_sync_token, full_sync=True)

    async def process_notification(
        self,
        channel_id: str,
        resource_state: str,
        *,
        message_number: str | None = None,
    ) -> SyncResult:
        """
        Handle one push notification. Never raises.

        Only `exists` triggers a fetch; `sync` is the handshake sent when a
        channel opens and `not_exists` carries nothing to fetch.
        """
        result = SyncResult()

        if resource_state != STATE_EXISTS:
            logger.info(
                "Calendar notification acknowledged without sync",
                channel_id=channel_id,
                resource_state=resource_state,
                message_number=message_number,
            )
            result.success = True
            result.skipped_reason = f"state:{resource_state}"
            return result

        try:
            subscription = await self.subscriptions.find_by_channel_id(channel_id)
            if subscription is None:
                logger.warning("Notification for unknown channel", channel_id=channel_id)
                result.error = "Channel not found"
                return result

            if not subscription.is_active():
                logger.info("Notification for inactive channel ignored", channel_id=channel_id)
                result.success = True
                result.skipped_reason = "inactive_channel"
                return result

            now = datetime.now(UTC)
            await self.subscriptions.record_notification(subscription, now)

            calendar = await self.households.get_calendar(subscription.calendar_ref)
            if calendar is None:
                result.error = "Calendar not found"
                return result

            delta = await self.sync(calendar, subscription.sync_token)

            # Token goes back first so a crash below never replays this delta
            if delta.next_sync_token:
                await self.subscriptions.record_sync_token(subscription, delta.next_sync_token)
            else:
                logger.warning("Provider returned no sync token", channel_id=channel_id)
            await self.households.mark_calendar_synced(calendar.id, now)

            changed, deleted = categorize_changes(delta.events)
            result.events_processed = len(delta.events)
            result.changed_events = len(changed)
            result.deleted_events = len(deleted)
            result.changed_ids = [event.id for event in changed]

            if any(is_relevant_change(event, now) for event in changed):
                result.analysis_triggered = self._dispatch_analysis(calendar.household_id)

            result.success = True
            logger.info(
                "Calendar notification processed",
                channel_id=channel_id,
                calendar_ref=calendar.id,
                full_sync=delta.full_sync,
                events_processed=result.events_processed,
                changed_events=result.changed_events,
                deleted_events=result.deleted_events,
                analysis_triggered=result.analysis_triggered,
            )
            return result

        except Exception as e:
            logger.error(
                "Calendar notification processing failed",
                channel_id=channel_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            result.error = str(e)
            return result

    async def force_full_sync(self, calendar_ref: str) -> SyncResult:
        """Resync a calendar from scratch and analyse its household inline."""
        result = SyncResult()
        try:
            calendar = await self.households.get_calendar(calendar_ref)
            if calendar is None:
                result.error = "Calendar not found"
                return result

            now = datetime.now(UTC)
            delta = await self.sync(calendar, None)
            result.events_processed = len(delta.events)
            result.changed_events = len(delta.events)

            subscription = await self.subscriptions.get_active(calendar.id)
            if subscription and delta.next_sync_token:
                await self.subscriptions.record_sync_token(subscription, delta.next_sync_token)
            await self.households.mark_calendar_synced(calendar.id, now)

            await self.analyze(calendar.household_id)
            result.analysis_triggered = True
            result.success = True
            return result

        except Exception as e:
            logger.error("Forced full sync failed", calendar_ref=calendar_ref, error=str(e))
            result.error = str(e)
            return result

    def _dispatch_analysis(self, household_id: str) -> bool:
        submitted = self.runner.submit(
            f"analyze:{household_id}", lambda: self.analyze(household_id)
        )
        if submitted:
            logger.info("Household analysis queued", household_id=household_id)
        return submitted
