# familyos/models/domain/action_payloads.py
"""
Typed action payloads.

Every automation action type carries its own payload model. Known types form
a pydantic discriminated union on `action_type`; anything else is kept as an
UnknownActionPayload so it can still flow through the approval workflow.
"""

from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

Weekday = Literal["mon", "tue", "wed", "thu", "fri", "sat", "sun"]
Assignee = Literal["parent_a", "parent_b", "both"]


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class QueryWeekPayload(_Payload):
    action_type: Literal["queryWeek"] = "queryWeek"
    day: Weekday | None = None
    range: Literal["today", "tomorrow", "week"] | None = None


class GetConflictsPayload(_Payload):
    action_type: Literal["getConflicts"] = "getConflicts"


class CreateTaskPayload(_Payload):
    action_type: Literal["createTask"] = "createTask"
    title: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    assigned_to: Assignee = "both"
    priority: Literal["low", "normal", "high"] = "normal"
    child_name: str | None = None


class MarkDonePayload(_Payload):
    action_type: Literal["markDone"] = "markDone"
    task_id: str


class CreateEventPayload(_Payload):
    action_type: Literal["createEvent"] = "createEvent"
    title: str = Field(..., min_length=1, max_length=200)
    start: datetime
    end: datetime | None = None
    duration_minutes: int = Field(default=60, ge=1, le=24 * 60)
    calendar_id: str = "primary"
    description: str = ""
    location: str = ""
    timezone: str = "UTC"


class UpdateEventPayload(_Payload):
    action_type: Literal["updateEvent"] = "updateEvent"
    event_id: str
    calendar_id: str = "primary"
    title: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    description: str | None = None
    location: str | None = None


class DeleteEventPayload(_Payload):
    action_type: Literal["deleteEvent"] = "deleteEvent"
    event_id: str
    calendar_id: str = "primary"


class NotifyPartnerPayload(_Payload):
    action_type: Literal["notifyPartner"] = "notifyPartner"
    message: str = Field(..., min_length=1, max_length=1000)
    urgent: bool = False


class DraftEmailPayload(_Payload):
    action_type: Literal["draftEmail"] = "draftEmail"
    to: str = Field(..., pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    subject: str
    body: str


class SendEmailPayload(_Payload):
    action_type: Literal["sendEmail"] = "sendEmail"
    to: str = Field(..., pattern=r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
    subject: str
    body: str


class SwapEventsPayload(_Payload):
    action_type: Literal["swapEvents"] = "swapEvents"
    day1: Weekday
    day2: Weekday
    event_description: str | None = None


class RequestSwapPayload(_Payload):
    action_type: Literal["requestSwap"] = "requestSwap"
    event_id: str
    message: str | None = None


class UnknownActionPayload(_Payload):
    """Catch-all for action types with no registered payload model."""

    action_type: str
    data: dict[str, Any] = Field(default_factory=dict)


KnownActionPayload = Annotated[
    QueryWeekPayload
    | GetConflictsPayload
    | CreateTaskPayload
    | MarkDonePayload
    | CreateEventPayload
    | UpdateEventPayload
    | DeleteEventPayload
    | NotifyPartnerPayload
    | DraftEmailPayload
    | SendEmailPayload
    | SwapEventsPayload
    | RequestSwapPayload,
    Field(discriminator="action_type"),
]

ActionPayload = (
    QueryWeekPayload
    | GetConflictsPayload
    | CreateTaskPayload
    | MarkDonePayload
    | CreateEventPayload
    | UpdateEventPayload
    | DeleteEventPayload
    | NotifyPartnerPayload
    | DraftEmailPayload
    | SendEmailPayload
    | SwapEventsPayload
    | RequestSwapPayload
    | UnknownActionPayload
)

_known_adapter: TypeAdapter = TypeAdapter(KnownActionPayload)

KNOWN_ACTION_TYPES = frozenset(
    {
        "queryWeek",
        "getConflicts",
        "createTask",
        "markDone",
        "createEvent",
        "updateEvent",
        "deleteEvent",
        "notifyPartner",
        "draftEmail",
        "sendEmail",
        "swapEvents",
        "requestSwap",
    }
)


def parse_action_payload(action_type: str, data: dict[str, Any] | None) -> ActionPayload:
    """
    Build the typed payload for an action.

    Raises pydantic.ValidationError when a known action type gets a payload
    that does not fit its model.
    """
    data = dict(data or {})
    if action_type not in KNOWN_ACTION_TYPES:
        data.pop("action_type", None)
        return UnknownActionPayload(action_type=action_type, data=data)

    data["action_type"] = action_type
    return _known_adapter.validate_python(data)


def payload_to_json(payload: ActionPayload) -> dict[str, Any]:
    """Serialize a payload for storage (JSONB) or API output."""
    return payload.model_dump(mode="json")


def payload_from_json(action_type: str, stored: dict[str, Any] | None) -> ActionPayload:
    """Rehydrate a payload stored by payload_to_json."""
    stored = dict(stored or {})
    if action_type not in KNOWN_ACTION_TYPES:
        return UnknownActionPayload(
            action_type=action_type, data=stored.get("data", stored) or {}
        )
    return parse_action_payload(action_type, stored)
