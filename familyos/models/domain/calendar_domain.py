# familyos/models/domain/calendar_domain.py
"""
Calendar Domain Models
Provider events, subscription channels and the normalized event shape the
pattern detectors consume.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime, time, timedelta
from enum import StrEnum
from zoneinfo import ZoneInfo

# Owner marker for events on a shared family calendar
OWNER_BOTH = "both"


class CalendarEvent:
    """Domain model for a provider calendar event as returned by Google."""

    def __init__(self, data: dict):
        self.id = data.get("id")
        self.summary = data.get("summary", "")
        self.description = data.get("description", "")
        self.start_time = self._parse_datetime(data.get("start", {}))
        self.end_time = self._parse_datetime(data.get("end", {}))
        self.timezone = data.get("start", {}).get("timeZone", "UTC")
        self.status = data.get("status", "confirmed")
        self.location = data.get("location", "")
        self.updated = self._parse_datetime_iso(data.get("updated"))
        self.raw_data = data

    def _parse_datetime(self, dt_data: dict) -> datetime | None:
        """Parse datetime from Google Calendar format."""
        if not dt_data:
            return None

        # All-day events (date only)
        if "date" in dt_data:
            return datetime.strptime(dt_data["date"], "%Y-%m-%d").replace(tzinfo=UTC)

        if "dateTime" in dt_data:
            try:
                return datetime.fromisoformat(dt_data["dateTime"].replace("Z", "+00:00"))
            except ValueError:
                return None

        return None

    def _parse_datetime_iso(self, dt_str: str | None) -> datetime | None:
        if not dt_str:
            return None
        try:
            return datetime.fromisoformat(dt_str.replace("Z", "+00:00"))
        except ValueError:
            return None

    def is_all_day(self) -> bool:
        """Check if this is an all-day event."""
        return "date" in self.raw_data.get("start", {})

    def is_removed(self) -> bool:
        """Deleted events come back from a delta sync with status 'cancelled'."""
        return self.status == "cancelled"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "summary": self.summary,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status,
            "is_all_day": self.is_all_day(),
            "is_removed": self.is_removed(),
        }


@dataclass(slots=True, frozen=True)
class HouseholdEvent:
    """Normalized event fed to the pattern detectors."""

    id: str
    summary: str
    start: datetime
    end: datetime
    calendar_id: str
    owner_id: str  # family member id, or OWNER_BOTH
    owner_name: str

    @classmethod
    def from_provider_event(
        cls,
        event: CalendarEvent,
        *,
        calendar_id: str,
        owner_id: str,
        owner_name: str,
        tz: ZoneInfo,
    ) -> "HouseholdEvent | None":
        """
        Convert a provider event, or return None when it has no start.

        All-day events span the whole local day; events with no end are
        treated as one hour long.
        """
        if event.start_time is None:
            return None

        if event.is_all_day():
            local_day = event.start_time.date()
            start = datetime.combine(local_day, time.min, tzinfo=tz)
            end_day = event.end_time.date() - timedelta(days=1) if event.end_time else local_day
            end = datetime.combine(max(end_day, local_day), time(23, 59, 59), tzinfo=tz)
        else:
            start = event.start_time
            end = event.end_time or start + timedelta(hours=1)

        return cls(
            id=event.id,
            summary=event.summary or "Untitled Event",
            start=start,
            end=end,
            calendar_id=calendar_id,
            owner_id=owner_id,
            owner_name=owner_name,
        )


@dataclass(slots=True, frozen=True)
class CalendarRef:
    """A connected calendar plus the household member who owns it."""

    id: str  # connected calendar id, the calendar reference used throughout
    google_calendar_id: str
    user_id: str
    family_member_id: str
    household_id: str
    owner_name: str = ""


@dataclass(slots=True, frozen=True)
class ChannelRegistration:
    """What the provider hands back when a push channel is opened."""

    channel_id: str
    resource_id: str
    expiration: datetime


@dataclass(slots=True)
class EventDelta:
    """Result of one incremental (or full) fetch from the provider."""

    events: list[CalendarEvent]
    next_sync_token: str | None


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    EXPIRED = "expired"


@dataclass(slots=True)
class ChannelSubscription:
    """One provider push channel bound to one calendar."""

    id: str
    calendar_ref: str
    channel_id: str
    resource_id: str
    sync_token: str | None
    expiration: datetime
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    last_notification_at: datetime | None = None

    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE
