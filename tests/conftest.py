from dataclasses import replace
from datetime import UTC, datetime, timedelta
from itertools import count
from typing import Any

import pytest

from familyos.auth.verify import auth_dependency
from familyos.container import ServiceContainer
from familyos.models.domain.agent_domain import (
    TERMINAL_ACTION_STATUSES,
    ActionStatus,
    Memory,
    Outcome,
    PendingAction,
    TrustRecord,
)
from familyos.models.domain.calendar_domain import (
    CalendarEvent,
    CalendarRef,
    ChannelRegistration,
    ChannelSubscription,
    EventDelta,
    SubscriptionStatus,
)
from familyos.models.domain.insight_domain import (
    OPEN_INSIGHT_STATUSES,
    Child,
    HouseholdContext,
    Insight,
    InsightStatus,
    ParentIdentity,
)
from familyos.services.infrastructure.background_runner import BackgroundTaskRunner
from familyos.services.notifications.sms_sender import DeliveryResult

HOUSEHOLD_ID = "hh-1"
PARENT_A = ParentIdentity(id="fm-a", name="Alex", user_id="user-a")
PARENT_B = ParentIdentity(id="fm-b", name="Sam", user_id="user-b")
CALENDAR_A = CalendarRef(
    id="cal-a",
    google_calendar_id="alex@example.com",
    user_id="user-a",
    family_member_id="fm-a",
    household_id=HOUSEHOLD_ID,
    owner_name="Alex",
)
CALENDAR_B = CalendarRef(
    id="cal-b",
    google_calendar_id="sam@example.com",
    user_id="user-b",
    family_member_id="fm-b",
    household_id=HOUSEHOLD_ID,
    owner_name="Sam",
)


# ============================================
# Repositories
# ============================================


class FakeSubscriptionRepository:
    def __init__(self):
        self.rows: list[ChannelSubscription] = []
        self._ids = count(1)

    async def get_active_for_calendar(self, calendar_ref: str) -> ChannelSubscription | None:
        active = await self.list_active_for_calendar(calendar_ref)
        return active[0] if active else None

    async def list_active_for_calendar(self, calendar_ref: str) -> list[ChannelSubscription]:
        return [
            row for row in reversed(self.rows) if row.calendar_ref == calendar_ref and row.is_active()
        ]

    async def get_by_channel_id(self, channel_id: str) -> ChannelSubscription | None:
        return next((row for row in self.rows if row.channel_id == channel_id), None)

    async def create(
        self, calendar_ref: str, registration: ChannelRegistration, sync_token: str | None
    ) -> ChannelSubscription:
        subscription = ChannelSubscription(
            id=f"sub-{next(self._ids)}",
            calendar_ref=calendar_ref,
            channel_id=registration.channel_id,
            resource_id=registration.resource_id,
            sync_token=sync_token,
            expiration=registration.expiration,
        )
        self.rows.append(subscription)
        return subscription

    async def mark_expired(self, subscription_id: str) -> None:
        for row in self.rows:
            if row.id == subscription_id and row.is_active():
                row.status = SubscriptionStatus.EXPIRED

    async def list_active_expiring_before(self, cutoff: datetime) -> list[ChannelSubscription]:
        rows = [row for row in self.rows if row.is_active() and row.expiration <= cutoff]
        return sorted(rows, key=lambda row: row.expiration)

    async def update_sync_token(self, subscription_id: str, sync_token: str | None) -> None:
        for row in self.rows:
            if row.id == subscription_id:
                row.sync_token = sync_token

    async def touch_notification(self, subscription_id: str, at: datetime) -> None:
        for row in self.rows:
            if row.id == subscription_id:
                row.last_notification_at = at


class FakeHouseholdRepository:
    def __init__(self, subscriptions: FakeSubscriptionRepository | None = None):
        self.subscriptions = subscriptions
        self.calendars: dict[str, CalendarRef] = {}
        self.contexts: dict[str, HouseholdContext] = {}
        self.phones: dict[str, str] = {}
        self.synced: dict[str, datetime] = {}

    def add_calendar(self, calendar: CalendarRef) -> None:
        self.calendars[calendar.id] = calendar

    async def get_calendar(self, calendar_ref: str) -> CalendarRef | None:
        return self.calendars.get(calendar_ref)

    async def list_included_calendars(self, household_id: str) -> list[CalendarRef]:
        return [c for c in self.calendars.values() if c.household_id == household_id]

    async def list_calendars_without_active_channel(self) -> list[CalendarRef]:
        missing = []
        for calendar in self.calendars.values():
            if self.subscriptions and await self.subscriptions.get_active_for_calendar(calendar.id):
                continue
            missing.append(calendar)
        return missing

    async def mark_calendar_synced(self, calendar_ref: str, at: datetime) -> None:
        self.synced[calendar_ref] = at

    async def get_household_context(self, household_id: str) -> HouseholdContext | None:
        return self.contexts.get(household_id)

    async def list_households_with_calendars(self) -> list[str]:
        return sorted({c.household_id for c in self.calendars.values()})

    async def get_verified_phone(self, user_id: str) -> str | None:
        return self.phones.get(user_id)


class FakeInsightRepository:
    def __init__(self):
        self.rows: list[Insight] = []
        self._ids = count(1)
        self.fail_create = False

    async def find_recent_open(self, household_id, insight_type, title, since):
        matches = [
            row
            for row in self.rows
            if row.household_id == household_id
            and row.type == insight_type
            and row.title == title
            and row.created_at >= since
            and row.status in OPEN_INSIGHT_STATUSES
        ]
        return matches[-1] if matches else None

    async def create(self, household_id, detected, message):
        if self.fail_create:
            raise RuntimeError("insert failed")
        insight = Insight(
            id=f"ins-{next(self._ids)}",
            household_id=household_id,
            type=detected.type,
            severity=detected.severity,
            title=detected.title,
            description=detected.description,
            message=message,
            template_data=dict(detected.template_data),
            event_ids=list(detected.event_ids),
            target_user_id=detected.target_user_id,
            status=InsightStatus.PENDING,
            created_at=datetime.now(UTC),
        )
        self.rows.append(insight)
        return insight

    async def mark_sent(self, insight_id, at):
        for row in self.rows:
            if row.id == insight_id and row.status == InsightStatus.PENDING:
                row.status = InsightStatus.SENT
                row.sent_at = at

    async def latest_open_for_user(self, household_id, user_id):
        matches = [
            row
            for row in self.rows
            if row.household_id == household_id
            and row.target_user_id == user_id
            and row.status in OPEN_INSIGHT_STATUSES
        ]
        return matches[-1] if matches else None

    async def resolve(self, insight_id, resolution, resolved_by, at):
        for row in self.rows:
            if row.id == insight_id and row.status in OPEN_INSIGHT_STATUSES:
                row.status = InsightStatus.RESOLVED
                row.resolution = resolution
                row.resolved_by = resolved_by
                row.resolved_at = at
                return True
        return False


class FakeTrustRepository:
    def __init__(self):
        self.records: dict[tuple[str, str], TrustRecord] = {}

    async def get(self, household_id, action_type):
        record = self.records.get((household_id, action_type))
        return replace(record) if record else None

    async def list_for_household(self, household_id):
        return [
            replace(record)
            for (hh, _), record in sorted(self.records.items())
            if hh == household_id
        ]

    async def increment(self, household_id, action_type, outcome, at):
        record = self.records.setdefault(
            (household_id, action_type), TrustRecord(household_id, action_type)
        )
        if outcome == Outcome.SUCCESS:
            record.success_count += 1
        elif outcome == Outcome.FAILURE:
            record.failure_count += 1
        else:
            record.reject_count += 1
        record.last_used_at = at

    async def set_auto_approve(self, household_id, action_type, enabled):
        record = self.records.setdefault(
            (household_id, action_type), TrustRecord(household_id, action_type)
        )
        record.auto_approve = enabled

    async def delete(self, household_id, action_type):
        return self.records.pop((household_id, action_type), None) is not None


class FakePendingActionRepository:
    def __init__(self):
        self.rows: dict[str, PendingAction] = {}
        self._ids = count(1)

    async def create(self, *, household_id, user_id, payload, risk_level, reason, expires_at):
        now = datetime.now(UTC)
        action = PendingAction(
            id=f"act-{next(self._ids)}",
            household_id=household_id,
            user_id=user_id,
            action_type=payload.action_type,
            payload=payload,
            status=ActionStatus.PENDING,
            risk_level=risk_level,
            reason=reason,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        self.rows[action.id] = action
        return replace(action)

    async def get(self, action_id):
        action = self.rows.get(action_id)
        return replace(action) if action else None

    async def transition(self, action_id, from_status, to_status, *, at, reason=None, outcome=None):
        action = self.rows.get(action_id)
        if action is None or action.status != from_status:
            return None
        action.status = to_status
        action.updated_at = at
        if reason is not None:
            action.reason = reason
        if outcome is not None:
            action.outcome = outcome
        if to_status in (ActionStatus.EXECUTED, ActionStatus.FAILED):
            action.executed_at = at
        return replace(action)

    async def expire_stale(self, now):
        expired = 0
        for action in self.rows.values():
            if action.status == ActionStatus.PENDING and action.expires_at < now:
                action.status = ActionStatus.EXPIRED
                action.updated_at = now
                expired += 1
        return expired

    async def delete_terminal_before(self, cutoff):
        doomed = [
            action_id
            for action_id, action in self.rows.items()
            if action.status in TERMINAL_ACTION_STATUSES and action.updated_at < cutoff
        ]
        for action_id in doomed:
            del self.rows[action_id]
        return len(doomed)

    async def list_for_household(self, household_id, *, status=None, include_expired=False, now):
        rows = [
            action
            for action in self.rows.values()
            if action.household_id == household_id
            and (status is None or action.status == status)
            and (
                include_expired
                or action.status != ActionStatus.PENDING
                or action.expires_at > now
            )
        ]
        return [replace(a) for a in sorted(rows, key=lambda a: a.created_at, reverse=True)]

    async def list_pending_for_user(self, user_id, now):
        rows = [
            action
            for action in self.rows.values()
            if action.user_id == user_id
            and action.status == ActionStatus.PENDING
            and action.expires_at > now
        ]
        return [replace(a) for a in sorted(rows, key=lambda a: a.created_at, reverse=True)]

    async def history(self, household_id, *, since, action_type=None, limit=100):
        rows = [
            action
            for action in self.rows.values()
            if action.household_id == household_id
            and action.created_at >= since
            and (not action_type or action.action_type == action_type)
        ]
        rows.sort(key=lambda a: a.created_at, reverse=True)
        return [replace(a) for a in rows[:limit]]


class FakeMemoryRepository:
    def __init__(self):
        self.rows: dict[tuple[str, str, str], Memory] = {}
        self._ids = count(1)
        self.fail_upsert = False

    async def upsert(
        self, *, household_id, memory_type, key, value, confidence, source, expires_at, at
    ):
        if self.fail_upsert:
            raise RuntimeError("memory store unavailable")
        existing = self.rows.get((household_id, memory_type, key))
        if existing:
            existing.value = value
            existing.confidence = confidence
            existing.source = source
            existing.expires_at = expires_at
            existing.updated_at = at
            return replace(existing)
        memory = Memory(
            id=f"mem-{next(self._ids)}",
            household_id=household_id,
            type=memory_type,
            key=key,
            value=value,
            confidence=confidence,
            source=source,
            expires_at=expires_at,
            created_at=at,
            updated_at=at,
        )
        self.rows[(household_id, memory_type, key)] = memory
        return replace(memory)

    async def query(
        self,
        household_id,
        *,
        now,
        memory_type=None,
        key=None,
        min_confidence=None,
        created_since=None,
        include_expired=False,
        limit=None,
    ):
        rows = [
            m
            for m in self.rows.values()
            if m.household_id == household_id
            and (memory_type is None or m.type == memory_type)
            and (key is None or m.key == key)
            and (min_confidence is None or m.confidence >= min_confidence)
            and (created_since is None or m.created_at >= created_since)
            and (include_expired or m.expires_at is None or m.expires_at > now)
        ]
        rows.sort(key=lambda m: (m.confidence, m.updated_at), reverse=True)
        if limit is not None:
            rows = rows[:limit]
        return [replace(m) for m in rows]

    async def delete(self, household_id, memory_type, key):
        return self.rows.pop((household_id, memory_type, key), None) is not None

    async def delete_all(self, household_id, memory_type=None):
        doomed = [
            k
            for k, m in self.rows.items()
            if m.household_id == household_id and (memory_type is None or m.type == memory_type)
        ]
        for k in doomed:
            del self.rows[k]
        return len(doomed)

    async def update_confidence(self, household_id, memory_type, key, confidence, at):
        memory = self.rows.get((household_id, memory_type, key))
        if memory:
            memory.confidence = confidence
            memory.updated_at = at

    async def delete_expired(self, now):
        doomed = [
            k for k, m in self.rows.items() if m.expires_at is not None and m.expires_at < now
        ]
        for k in doomed:
            del self.rows[k]
        return len(doomed)


# ============================================
# External collaborators
# ============================================


def google_event(
    event_id: str,
    summary: str,
    start: datetime,
    end: datetime | None = None,
    status: str = "confirmed",
) -> CalendarEvent:
    end = end or start + timedelta(hours=1)
    return CalendarEvent(
        {
            "id": event_id,
            "summary": summary,
            "status": status,
            "start": {"dateTime": start.isoformat(), "timeZone": "UTC"},
            "end": {"dateTime": end.isoformat(), "timeZone": "UTC"},
        }
    )


class FakeProvider:
    def __init__(self):
        self._channels = count(1)
        self.registered: list[tuple[str, str]] = []
        self.unregistered: list[tuple[str, str, str]] = []
        self.register_errors: dict[str, Exception] = {}
        self.unregister_error: Exception | None = None

        # FIFO of EventDelta or Exception answered by fetch_delta
        self.delta_responses: list[EventDelta | Exception] = []
        self.delta_calls: list[tuple[str, str | None]] = []

        self.events: dict[str, list[CalendarEvent]] = {}
        self.list_errors: dict[str, Exception] = {}
        self.list_calls: list[tuple[str, datetime, datetime]] = []

        self.created: list[dict[str, Any]] = []
        self.updated: list[dict[str, Any]] = []
        self.deleted: list[tuple[str, str]] = []

    async def register_channel(self, user_id, calendar_id):
        if calendar_id in self.register_errors:
            raise self.register_errors[calendar_id]
        n = next(self._channels)
        self.registered.append((user_id, calendar_id))
        return ChannelRegistration(
            channel_id=f"chan-{n}",
            resource_id=f"res-{n}",
            expiration=datetime.now(UTC) + timedelta(days=7),
        )

    async def unregister_channel(self, user_id, channel_id, resource_id):
        if self.unregister_error:
            raise self.unregister_error
        self.unregistered.append((user_id, channel_id, resource_id))

    async def fetch_delta(self, user_id, calendar_id, sync_token):
        self.delta_calls.append((calendar_id, sync_token))
        response = (
            self.delta_responses.pop(0)
            if self.delta_responses
            else EventDelta(events=[], next_sync_token="token-empty")
        )
        if isinstance(response, Exception):
            raise response
        return response

    async def list_events(self, user_id, calendar_id, time_min, time_max):
        self.list_calls.append((calendar_id, time_min, time_max))
        if calendar_id in self.list_errors:
            raise self.list_errors[calendar_id]
        return list(self.events.get(calendar_id, []))

    async def create_event(self, user_id, calendar_id, *, summary, start, end, **extra):
        self.created.append(
            {"user_id": user_id, "calendar_id": calendar_id, "summary": summary, "start": start, "end": end}
        )
        return google_event(f"evt-{len(self.created)}", summary, start, end)

    async def update_event(self, user_id, calendar_id, event_id, **fields):
        self.updated.append({"event_id": event_id, "calendar_id": calendar_id, **fields})
        start = fields.get("start_time") or datetime(2026, 1, 1, tzinfo=UTC)
        return google_event(event_id, fields.get("summary") or "Updated", start, fields.get("end_time"))

    async def delete_event(self, user_id, calendar_id, event_id):
        self.deleted.append((calendar_id, event_id))


class FakeSender:
    def __init__(self):
        self.sent: list[tuple[str, str]] = []
        self.fail_with: str | None = None

    async def send(self, recipient: str, body: str) -> DeliveryResult:
        if self.fail_with:
            return DeliveryResult(success=False, error=self.fail_with)
        self.sent.append((recipient, body))
        return DeliveryResult(success=True, message_id=f"SM{len(self.sent)}")


# ============================================
# Fixtures
# ============================================


@pytest.fixture
def make_event():
    return google_event


@pytest.fixture
def subscription_repo():
    return FakeSubscriptionRepository()


@pytest.fixture
def households(subscription_repo):
    repo = FakeHouseholdRepository(subscription_repo)
    repo.contexts[HOUSEHOLD_ID] = HouseholdContext(
        household_id=HOUSEHOLD_ID,
        parent_a=PARENT_A,
        parent_b=PARENT_B,
        children=(Child(id="kid-1", name="Maya"),),
        timezone="UTC",
    )
    repo.add_calendar(CALENDAR_A)
    repo.add_calendar(CALENDAR_B)
    repo.phones = {"user-a": "+15550000001", "user-b": "+15550000002"}
    return repo


@pytest.fixture
def insight_repo():
    return FakeInsightRepository()


@pytest.fixture
def trust_repo():
    return FakeTrustRepository()


@pytest.fixture
def action_repo():
    return FakePendingActionRepository()


@pytest.fixture
def memory_repo():
    return FakeMemoryRepository()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def runner():
    return BackgroundTaskRunner(workers=1, queue_size=10, drain_timeout=1.0)


@pytest.fixture
def container(
    subscription_repo,
    households,
    insight_repo,
    trust_repo,
    action_repo,
    memory_repo,
    provider,
    sender,
    runner,
):
    return ServiceContainer(
        subscription_repository=subscription_repo,
        households=households,
        insights=insight_repo,
        trust_repository=trust_repo,
        action_repository=action_repo,
        memory_repository=memory_repo,
        provider=provider,
        sender=sender,
        runner=runner,
    )


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-a", "household_id": HOUSEHOLD_ID}

    return _override


@pytest.fixture
def api_app(container, auth_override):
    """The FastAPI app wired to in-memory services, lifespan not run."""
    from familyos.main import app

    app.state.container = container
    app.dependency_overrides[auth_dependency] = auth_override
    yield app
    app.dependency_overrides.clear()
    for attr in ("container", "rate_limiter", "runner"):
        if hasattr(app.state, attr):
            delattr(app.state, attr)
