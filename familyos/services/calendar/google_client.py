"""
Google Calendar API client.
Low-level HTTP access for push channels, delta sync and event writes.
"""

import asyncio
import uuid
from datetime import UTC, datetime
from typing import Any

import httpx

from familyos.infrastructure.observability.logging import get_logger
from familyos.models.domain.calendar_domain import (
    CalendarEvent,
    ChannelRegistration,
    EventDelta,
)

logger = get_logger(__name__)

# Google Calendar API configuration
CALENDAR_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
CALENDAR_PRIMARY = "primary"  # User's primary calendar

# Request timeouts and retry configuration
REQUEST_TIMEOUT = 30  # seconds
MAX_RETRIES = 3
BACKOFF_FACTOR = 2
RETRY_STATUS_CODES = {429, 500, 502, 503, 504}

DELTA_PAGE_SIZE = 250
MAX_DELTA_PAGES = 40


class GoogleCalendarError(Exception):
    """Custom exception for Google Calendar API errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
        response_data: dict | None = None,
    ):
        super().__init__(message)
        self.error_code = error_code
        self.status_code = status_code
        self.response_data = response_data or {}


class SyncTokenExpiredError(GoogleCalendarError):
    """The stored sync token is no longer valid (HTTP 410); a full sync is required."""


class GoogleCalendarService:
    """
    Service for Google Calendar API operations.

    Covers push channel management (watch/stop), incremental listing with
    sync tokens, windowed listing and event CRUD, with retry on 429/5xx.
    """

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client or self._create_client()

    def _create_client(self) -> httpx.AsyncClient:
        """Create async HTTP client for Calendar API."""
        timeout = httpx.Timeout(REQUEST_TIMEOUT)
        limits = httpx.Limits(max_keepalive_connections=20, max_connections=50)
        return httpx.AsyncClient(timeout=timeout, limits=limits)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def _request_with_retry(self, method: str, url: str, **kwargs) -> httpx.Response:
        """Execute an HTTP request with retry and backoff."""
        for attempt in range(1, MAX_RETRIES + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
                if response.status_code in RETRY_STATUS_CODES and attempt < MAX_RETRIES:
                    backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                    logger.debug(
                        "Calendar API retrying request",
                        attempt=attempt,
                        status_code=response.status_code,
                        backoff_seconds=backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                return response
            except httpx.RequestError as e:
                if attempt >= MAX_RETRIES:
                    raise
                backoff = BACKOFF_FACTOR * (2 ** (attempt - 1))
                logger.debug(
                    "Calendar API request error, retrying",
                    attempt=attempt,
                    error=str(e),
                    backoff_seconds=backoff,
                )
                await asyncio.sleep(backoff)
        raise RuntimeError("Calendar API retry loop exhausted")

    def _get_auth_headers(self, access_token: str) -> dict:
        return {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _handle_api_response(self, response: httpx.Response, operation: str) -> dict:
        """
        Handle and validate Calendar API response.

        Args:
            response: HTTP response from Calendar API
            operation: Operation name for logging

        Returns:
            dict: Parsed response data

        Raises:
            SyncTokenExpiredError: On HTTP 410
            GoogleCalendarError: If response contains other errors
        """
        logger.debug(
            f"Calendar API {operation} response",
            status_code=response.status_code,
            response_size=len(response.text) if response.text else 0,
        )

        if response.is_success:
            try:
                return response.json() if response.text else {}
            except ValueError as e:
                logger.error(f"Failed to parse Calendar API {operation} response", error=str(e))
                raise GoogleCalendarError(f"Invalid response format: {e}") from e

        if response.status_code == 410:
            logger.warning(f"Calendar API {operation} sync token expired")
            raise SyncTokenExpiredError(
                "Sync token is no longer valid, full sync required",
                error_code="410",
                status_code=410,
            )

        try:
            error_data = response.json() if response.text else {}
        except ValueError:
            logger.error(
                f"Calendar API {operation} failed with non-JSON response",
                status_code=response.status_code,
                response_text=response.text[:200] if response.text else "",
            )
            raise GoogleCalendarError(
                f"Calendar API error (HTTP {response.status_code})",
                status_code=response.status_code,
            ) from None

        error_info = error_data.get("error", {}) if isinstance(error_data, dict) else {}
        error_code = error_info.get("code", response.status_code)
        error_message = error_info.get("message", "Unknown Calendar API error")

        logger.error(
            f"Calendar API {operation} failed",
            status_code=response.status_code,
            error_code=error_code,
            error_message=error_message,
        )

        raise GoogleCalendarError(
            self._map_calendar_error(str(error_code), error_message),
            error_code=str(error_code),
            status_code=response.status_code,
            response_data=error_data,
        )

    def _map_calendar_error(self, error_code: str, error_message: str) -> str:
        """Map Calendar API error codes to user-friendly messages."""
        error_mappings = {
            "403": "Calendar access denied. Please check permissions.",
            "404": "Calendar or event not found.",
            "400": "Invalid calendar request format.",
            "401": "Calendar authorization expired. Please reconnect.",
            "429": "Too many calendar requests. Please try again later.",
            "500": "Google Calendar service temporarily unavailable.",
        }

        return error_mappings.get(error_code, f"Calendar error: {error_message}")

    # ------------------------------------------------------------------
    # Push channels
    # ------------------------------------------------------------------

    async def watch_events(
        self,
        access_token: str,
        webhook_url: str,
        calendar_id: str = CALENDAR_PRIMARY,
        channel_token: str | None = None,
    ) -> ChannelRegistration:
        """
        Open a push notification channel on a calendar's events.

        Returns:
            ChannelRegistration with the channel id we generated, Google's
            resource id and the channel expiration.
        """
        try:
            url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events/watch"
            body: dict[str, Any] = {
                "id": str(uuid.uuid4()),
                "type": "web_hook",
                "address": webhook_url,
            }
            if channel_token:
                body["token"] = channel_token

            logger.info("Opening calendar watch channel", calendar_id=calendar_id)

            response = await self._request_with_retry(
                "POST", url, headers=self._get_auth_headers(access_token), json=body
            )
            data = self._handle_api_response(response, "watch_events")

            registration = ChannelRegistration(
                channel_id=data.get("id", body["id"]),
                resource_id=data["resourceId"],
                expiration=_parse_expiration_ms(data.get("expiration")),
            )
            logger.info(
                "Calendar watch channel opened",
                calendar_id=calendar_id,
                channel_id=registration.channel_id,
                expiration=registration.expiration.isoformat(),
            )
            return registration

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error opening watch channel", calendar_id=calendar_id, error=str(e))
            raise GoogleCalendarError(f"Failed to open watch channel: {e}") from e

    async def stop_channel(self, access_token: str, channel_id: str, resource_id: str) -> bool:
        """Stop a push channel. Google answers 204 on success."""
        try:
            url = f"{CALENDAR_API_BASE_URL}/channels/stop"
            body = {"id": channel_id, "resourceId": resource_id}

            logger.info("Stopping calendar watch channel", channel_id=channel_id)

            response = await self._request_with_retry(
                "POST", url, headers=self._get_auth_headers(access_token), json=body
            )
            if response.status_code != 204:
                self._handle_api_response(response, "stop_channel")

            logger.info("Calendar watch channel stopped", channel_id=channel_id)
            return True

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error stopping channel", channel_id=channel_id, error=str(e))
            raise GoogleCalendarError(f"Failed to stop channel: {e}") from e

    # ------------------------------------------------------------------
    # Event listing
    # ------------------------------------------------------------------

    async def list_events_delta(
        self,
        access_token: str,
        calendar_id: str = CALENDAR_PRIMARY,
        sync_token: str | None = None,
    ) -> EventDelta:
        """
        Fetch every change since `sync_token`, or everything when it is None.

        Follows nextPageToken until the last page, which carries the
        nextSyncToken for the following call.

        Raises:
            SyncTokenExpiredError: If Google rejects the sync token (410)
            GoogleCalendarError: For any other API failure
        """
        try:
            url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events"
            headers = self._get_auth_headers(access_token)

            base_params: dict[str, Any] = {"maxResults": DELTA_PAGE_SIZE}
            if sync_token:
                base_params["syncToken"] = sync_token
            else:
                # Full sync: no time filter, otherwise no sync token is issued
                base_params["showDeleted"] = "true"
                base_params["singleEvents"] = "true"

            events: list[CalendarEvent] = []
            page_token: str | None = None
            next_sync_token: str | None = None

            for _ in range(MAX_DELTA_PAGES):
                params = dict(base_params)
                if page_token:
                    params["pageToken"] = page_token

                response = await self._request_with_retry("GET", url, headers=headers, params=params)
                data = self._handle_api_response(response, "list_events_delta")

                events.extend(CalendarEvent(item) for item in data.get("items", []))
                page_token = data.get("nextPageToken")
                if not page_token:
                    next_sync_token = data.get("nextSyncToken")
                    break
            else:
                logger.warning(
                    "Delta sync stopped at page limit", calendar_id=calendar_id, pages=MAX_DELTA_PAGES
                )

            logger.info(
                "Calendar delta fetched",
                calendar_id=calendar_id,
                incremental=sync_token is not None,
                event_count=len(events),
                has_next_sync_token=next_sync_token is not None,
            )
            return EventDelta(events=events, next_sync_token=next_sync_token)

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error fetching delta", calendar_id=calendar_id, error=str(e))
            raise GoogleCalendarError(f"Failed to fetch calendar changes: {e}") from e

    async def list_events(
        self,
        access_token: str,
        calendar_id: str = CALENDAR_PRIMARY,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        max_results: int = 250,
        single_events: bool = True,
    ) -> list[CalendarEvent]:
        """
        List events from a calendar within a time window.

        Args:
            access_token: Valid OAuth access token
            calendar_id: Calendar ID (default: primary)
            time_min: Start time filter (default: now)
            time_max: End time filter (optional)
            max_results: Maximum number of events to return
            single_events: Expand recurring events into individual instances
        """
        try:
            url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events"
            headers = self._get_auth_headers(access_token)

            params = {
                "maxResults": max_results,
                "singleEvents": single_events,
                "orderBy": "startTime" if single_events else "updated",
                "timeMin": (time_min or datetime.now(UTC)).isoformat(),
            }
            if time_max:
                params["timeMax"] = time_max.isoformat()

            logger.info(
                "Listing calendar events",
                calendar_id=calendar_id,
                time_min=params.get("timeMin"),
                time_max=params.get("timeMax"),
            )

            response = await self._request_with_retry("GET", url, headers=headers, params=params)
            data = self._handle_api_response(response, "list_events")

            events = [CalendarEvent(item) for item in data.get("items", [])]
            logger.info("Events listed successfully", calendar_id=calendar_id, event_count=len(events))
            return events

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error listing events", calendar_id=calendar_id, error=str(e))
            raise GoogleCalendarError(f"Failed to list events: {e}") from e

    # ------------------------------------------------------------------
    # Event writes
    # ------------------------------------------------------------------

    async def create_event(
        self,
        access_token: str,
        summary: str,
        start_time: datetime,
        end_time: datetime,
        calendar_id: str = CALENDAR_PRIMARY,
        description: str = "",
        location: str = "",
        timezone_str: str = "UTC",
    ) -> CalendarEvent:
        """Create a new calendar event."""
        try:
            url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events"
            event_data = {
                "summary": summary,
                "description": description,
                "location": location,
                "start": {"dateTime": start_time.isoformat(), "timeZone": timezone_str},
                "end": {"dateTime": end_time.isoformat(), "timeZone": timezone_str},
            }

            logger.info(
                "Creating calendar event",
                summary=summary,
                start_time=start_time.isoformat(),
                calendar_id=calendar_id,
            )

            response = await self._request_with_retry(
                "POST", url, headers=self._get_auth_headers(access_token), json=event_data
            )
            event = CalendarEvent(self._handle_api_response(response, "create_event"))
            logger.info("Event created successfully", event_id=event.id, summary=summary)
            return event

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error creating event", summary=summary, error=str(e))
            raise GoogleCalendarError(f"Failed to create event: {e}") from e

    async def update_event(
        self,
        access_token: str,
        event_id: str,
        calendar_id: str = CALENDAR_PRIMARY,
        summary: str | None = None,
        description: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        location: str | None = None,
    ) -> CalendarEvent:
        """Patch the given fields of an existing event."""
        try:
            url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events/{event_id}"

            update_data: dict[str, Any] = {}
            if summary is not None:
                update_data["summary"] = summary
            if description is not None:
                update_data["description"] = description
            if location is not None:
                update_data["location"] = location
            if start_time is not None:
                update_data["start"] = {"dateTime": start_time.isoformat()}
            if end_time is not None:
                update_data["end"] = {"dateTime": end_time.isoformat()}

            logger.info(
                "Updating calendar event",
                event_id=event_id,
                calendar_id=calendar_id,
                fields_updated=list(update_data.keys()),
            )

            response = await self._request_with_retry(
                "PATCH", url, headers=self._get_auth_headers(access_token), json=update_data
            )
            event = CalendarEvent(self._handle_api_response(response, "update_event"))
            logger.info("Event updated successfully", event_id=event_id)
            return event

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error updating event", event_id=event_id, error=str(e))
            raise GoogleCalendarError(f"Failed to update event: {e}") from e

    async def delete_event(
        self, access_token: str, event_id: str, calendar_id: str = CALENDAR_PRIMARY
    ) -> bool:
        """Delete a calendar event."""
        try:
            url = f"{CALENDAR_API_BASE_URL}/calendars/{calendar_id}/events/{event_id}"

            logger.info("Deleting calendar event", event_id=event_id, calendar_id=calendar_id)

            response = await self._request_with_retry(
                "DELETE", url, headers=self._get_auth_headers(access_token)
            )
            if response.status_code != 204:
                self._handle_api_response(response, "delete_event")

            logger.info("Event deleted successfully", event_id=event_id)
            return True

        except GoogleCalendarError:
            raise
        except Exception as e:
            logger.error("Unexpected error deleting event", event_id=event_id, error=str(e))
            raise GoogleCalendarError(f"Failed to delete event: {e}") from e


def _parse_expiration_ms(value: str | int | None) -> datetime:
    """Google reports channel expiration as epoch milliseconds (string)."""
    if value is None:
        raise GoogleCalendarError("Watch response is missing an expiration")
    return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
