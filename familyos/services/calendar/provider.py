"""
Calendar provider collaborator.

The subscription, sync and analysis services talk to the provider only
through the CalendarProvider protocol, keyed by user id. The Google
implementation resolves the user's access token and delegates to
GoogleCalendarService.
"""

from datetime import UTC, datetime
from typing import Protocol

from familyos.db.helpers import fetch_one
from familyos.models.domain.calendar_domain import (
    CalendarEvent,
    ChannelRegistration,
    EventDelta,
)
from familyos.services.calendar.google_client import GoogleCalendarError, GoogleCalendarService


class CalendarProvider(Protocol):
    async def register_channel(self, user_id: str, calendar_id: str) -> ChannelRegistration: ...

    async def unregister_channel(self, user_id: str, channel_id: str, resource_id: str) -> None: ...

    async def fetch_delta(
        self, user_id: str, calendar_id: str, sync_token: str | None
    ) -> EventDelta: ...

    async def list_events(
        self, user_id: str, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> list[CalendarEvent]: ...

    async def create_event(
        self,
        user_id: str,
        calendar_id: str,
        *,
        summary: str,
        start: datetime,
        end: datetime,
        description: str = "",
        location: str = "",
        timezone: str = "UTC",
    ) -> CalendarEvent: ...

    async def update_event(
        self, user_id: str, calendar_id: str, event_id: str, **fields
    ) -> CalendarEvent: ...

    async def delete_event(self, user_id: str, calendar_id: str, event_id: str) -> None: ...


class AccessTokenResolver(Protocol):
    async def get_access_token(self, user_id: str) -> str: ...


class StoredTokenResolver:
    """
    Reads the current Google access token from oauth_tokens.

    Token refresh is owned by the authentication side of the product; an
    expired or missing token surfaces as a 401-style GoogleCalendarError.
    """

    async def get_access_token(self, user_id: str) -> str:
        row = await fetch_one(
            """
            SELECT access_token, expires_at
            FROM oauth_tokens
            WHERE user_id = %s AND provider = 'google'
            """,
            (user_id,),
        )
        if not row or not row.get("access_token"):
            raise GoogleCalendarError(
                "No Google Calendar connection for user", error_code="401", status_code=401
            )

        expires_at = row.get("expires_at")
        if expires_at and expires_at <= datetime.now(UTC):
            raise GoogleCalendarError(
                "Calendar authorization expired. Please reconnect.",
                error_code="401",
                status_code=401,
            )
        return row["access_token"]


class GoogleCalendarProvider:
    def __init__(
        self,
        service: GoogleCalendarService,
        tokens: AccessTokenResolver,
        webhook_url: str,
        channel_token: str | None = None,
    ):
        self.service = service
        self.tokens = tokens
        self.webhook_url = webhook_url
        self.channel_token = channel_token

    async def register_channel(self, user_id: str, calendar_id: str) -> ChannelRegistration:
        token = await self.tokens.get_access_token(user_id)
        return await self.service.watch_events(
            token, self.webhook_url, calendar_id, channel_token=self.channel_token
        )

    async def unregister_channel(self, user_id: str, channel_id: str, resource_id: str) -> None:
        token = await self.tokens.get_access_token(user_id)
        await self.service.stop_channel(token, channel_id, resource_id)

    async def fetch_delta(
        self, user_id: str, calendar_id: str, sync_token: str | None
    ) -> EventDelta:
        token = await self.tokens.get_access_token(user_id)
        return await self.service.list_events_delta(token, calendar_id, sync_token)

    async def list_events(
        self, user_id: str, calendar_id: str, time_min: datetime, time_max: datetime
    ) -> list[CalendarEvent]:
        token = await self.tokens.get_access_token(user_id)
        return await self.service.list_events(token, calendar_id, time_min, time_max)

    async def create_event(
        self,
        user_id: str,
        calendar_id: str,
        *,
        summary: str,
        start: datetime,
        end: datetime,
        description: str = "",
        location: str = "",
        timezone: str = "UTC",
    ) -> CalendarEvent:
        token = await self.tokens.get_access_token(user_id)
        return await self.service.create_event(
            token,
            summary,
            start,
            end,
            calendar_id=calendar_id,
            description=description,
            location=location,
            timezone_str=timezone,
        )

    async def update_event(
        self, user_id: str, calendar_id: str, event_id: str, **fields
    ) -> CalendarEvent:
        token = await self.tokens.get_access_token(user_id)
        return await self.service.update_event(token, event_id, calendar_id, **fields)

    async def delete_event(self, user_id: str, calendar_id: str, event_id: str) -> None:
        token = await self.tokens.get_access_token(user_id)
        await self.service.delete_event(token, event_id, calendar_id)
