"""
Action executors.

Maps action types to coroutines that perform them. The orchestrator takes a
zero-argument executor; `bind` closes a registered handler over the acting
user and the action's payload.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from familyos.infrastructure.observability.logging import get_logger
from familyos.models.domain.action_payloads import (
    ActionPayload,
    CreateEventPayload,
    DeleteEventPayload,
    NotifyPartnerPayload,
    RequestSwapPayload,
    SwapEventsPayload,
    UpdateEventPayload,
)
from familyos.repositories.household_repository import HouseholdRepository
from familyos.services.calendar.provider import CalendarProvider
from familyos.services.notifications.sms_sender import NotificationSender

logger = get_logger(__name__)


class ActionExecutionError(Exception):
    """Raised by a handler when the action cannot be carried out."""


@dataclass(slots=True, frozen=True)
class ExecutionContext:
    household_id: str
    user_id: str


ActionHandler = Callable[[ExecutionContext, Any], Awaitable[Any]]
Executor = Callable[[], Awaitable[Any]]


class ActionExecutorRegistry:
    def __init__(self):
        self._handlers: dict[str, ActionHandler] = {}

    def register(self, action_type: str, handler: ActionHandler) -> None:
        self._handlers[action_type] = handler

    def has(self, action_type: str) -> bool:
        return action_type in self._handlers

    def bind(
        self, household_id: str, user_id: str, payload: ActionPayload
    ) -> Executor | None:
        handler = self._handlers.get(payload.action_type)
        if handler is None:
            return None
        context = ExecutionContext(household_id=household_id, user_id=user_id)

        async def execute() -> Any:
            return await handler(context, payload)

        return execute


class CalendarActionHandlers:
    def __init__(self, provider: CalendarProvider):
        self.provider = provider

    async def create_event(self, context: ExecutionContext, payload: CreateEventPayload) -> dict:
        end = payload.end or payload.start + timedelta(minutes=payload.duration_minutes)
        event = await self.provider.create_event(
            context.user_id,
            payload.calendar_id,
            summary=payload.title,
            start=payload.start,
            end=end,
            description=payload.description,
            location=payload.location,
            timezone=payload.timezone,
        )
        return event.to_dict()

    async def update_event(self, context: ExecutionContext, payload: UpdateEventPayload) -> dict:
        event = await self.provider.update_event(
            context.user_id,
            payload.calendar_id,
            payload.event_id,
            summary=payload.title,
            description=payload.description,
            start_time=payload.start,
            end_time=payload.end,
            location=payload.location,
        )
        return event.to_dict()

    async def delete_event(self, context: ExecutionContext, payload: DeleteEventPayload) -> dict:
        await self.provider.delete_event(context.user_id, payload.calendar_id, payload.event_id)
        return {"deleted": True, "event_id": payload.event_id}


class NotificationActionHandlers:
    def __init__(self, households: HouseholdRepository, sender: NotificationSender):
        self.households = households
        self.sender = sender

    async def _text_partner(self, context: ExecutionContext, body: str) -> dict:
        household = await self.households.get_household_context(context.household_id)
        if household is None or household.parent_b is None:
            raise ActionExecutionError("No partner in household")

        partner = (
            household.parent_b
            if household.parent_a.user_id == context.user_id
            else household.parent_a
        )
        phone = await self.households.get_verified_phone(partner.user_id)
        if not phone:
            raise ActionExecutionError(f"{partner.name} has no verified phone number")

        delivery = await self.sender.send(phone, body)
        if not delivery.success:
            raise ActionExecutionError(delivery.error or "Notification failed")

        return {"sent": True, "message_id": delivery.message_id, "recipient": partner.name}

    async def notify_partner(
        self, context: ExecutionContext, payload: NotifyPartnerPayload
    ) -> dict:
        body = f"URGENT: {payload.message}" if payload.urgent else payload.message
        result = await self._text_partner(context, body)

        logger.info(
            "Partner notified",
            household_id=context.household_id,
            message_id=result["message_id"],
            urgent=payload.urgent,
        )
        return result

    async def swap_events(self, context: ExecutionContext, payload: SwapEventsPayload) -> dict:
        what = payload.event_description or "duties"
        result = await self._text_partner(
            context, f"Swap proposal: {what} - swap {payload.day1} <-> {payload.day2}"
        )

        logger.info(
            "Swap proposal sent",
            household_id=context.household_id,
            message_id=result["message_id"],
            day1=payload.day1,
            day2=payload.day2,
        )
        return {**result, "day1": payload.day1, "day2": payload.day2}

    async def request_swap(self, context: ExecutionContext, payload: RequestSwapPayload) -> dict:
        body = f"Can you cover event {payload.event_id}?"
        if payload.message:
            body = f"{body} {payload.message}"
        result = await self._text_partner(context, body)

        logger.info(
            "Swap request sent",
            household_id=context.household_id,
            message_id=result["message_id"],
            event_id=payload.event_id,
        )
        return {**result, "event_id": payload.event_id}


def build_default_registry(
    provider: CalendarProvider,
    households: HouseholdRepository,
    sender: NotificationSender,
) -> ActionExecutorRegistry:
    calendar = CalendarActionHandlers(provider)
    notifications = NotificationActionHandlers(households, sender)

    registry = ActionExecutorRegistry()
    registry.register("createEvent", calendar.create_event)
    registry.register("updateEvent", calendar.update_event)
    registry.register("deleteEvent", calendar.delete_event)
    registry.register("notifyPartner", notifications.notify_partner)
    registry.register("swapEvents", notifications.swap_events)
    registry.register("requestSwap", notifications.request_swap)
    return registry
