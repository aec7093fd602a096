"""
SMS templates for insights.

One template per insight type renders the outbound message from the
insight's template data and parses free-text replies into an action keyword.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from familyos.models.domain.insight_domain import InsightType

UNKNOWN_ACTION = "unknown"


@dataclass(slots=True, frozen=True)
class ParsedReply:
    action: str
    valid: bool


@dataclass(slots=True, frozen=True)
class SmsTemplate:
    type: InsightType
    render: Callable[[Mapping[str, Any]], str]
    reply_options: tuple[str, ...]
    # normalized reply -> action
    replies: Mapping[str, str]

    def parse_reply(self, reply: str, data: Mapping[str, Any] | None = None) -> ParsedReply:
        normalized = " ".join(reply.strip().upper().split())
        action = self.replies.get(normalized)
        if action is not None:
            return ParsedReply(action=action, valid=True)
        return ParsedReply(action=UNKNOWN_ACTION, valid=False)


def _first_name(name: str | None) -> str:
    return (name or "").strip().split(" ")[0].upper() if name else ""


class _ConflictTemplate(SmsTemplate):
    """Accepts the partner's first name in place of PARTNER."""

    def parse_reply(self, reply: str, data: Mapping[str, Any] | None = None) -> ParsedReply:
        parsed = SmsTemplate.parse_reply(self, reply, data)
        if parsed.valid:
            return parsed
        partner = _first_name((data or {}).get("partnerName"))
        if partner and reply.strip().upper() == partner:
            return ParsedReply(action="assign_partner", valid=True)
        return parsed


def _render_conflict(data: Mapping[str, Any]) -> str:
    partner = _first_name(data.get("partnerName")) or "PARTNER"
    return (
        f"Heads up! You both have things at {data.get('time')} on {data.get('day')}. "
        f"Who's got it covered?\n\nReply ME, {partner}, or HELP"
    )


def _render_coverage_gap(data: Mapping[str, Any]) -> str:
    child = f"{data['childName']}'s" if data.get("childName") else "the kids'"
    return (
        f"Found a gap: no one's free for {child} pickup at {data.get('time')} on "
        f"{data.get('day')}. Need backup options?\n\nReply YES or GOT IT"
    )


def _render_load_imbalance(data: Mapping[str, Any]) -> str:
    other = data.get("partnerCount")
    versus = f" vs {data.get('partnerName')}'s {other}" if other is not None else ""
    return (
        f"Quick check: you've got {data.get('count')} things this week{versus}. "
        "Worth rebalancing?\n\nReply HELP to discuss or OK if it's fine"
    )


TEMPLATES: dict[InsightType, SmsTemplate] = {
    InsightType.CALENDAR_GAP: SmsTemplate(
        type=InsightType.CALENDAR_GAP,
        render=lambda d: (
            f'Spotted: "{d.get("eventName")}" is on {d.get("partnerName")}\'s calendar for '
            f"{d.get('day')}, but not yours. Want me to add it?\n\nReply YES or NO"
        ),
        reply_options=("YES", "NO"),
        replies={"YES": "add_to_calendar", "Y": "add_to_calendar", "NO": "dismiss", "N": "dismiss"},
    ),
    InsightType.CONFLICT: _ConflictTemplate(
        type=InsightType.CONFLICT,
        render=_render_conflict,
        reply_options=("ME", "PARTNER", "HELP"),
        replies={
            "ME": "assign_self",
            "I": "assign_self",
            "A": "assign_self",
            "HELP": "need_help",
            "PARTNER": "assign_partner",
            "B": "assign_partner",
        },
    ),
    InsightType.COVERAGE_GAP: SmsTemplate(
        type=InsightType.COVERAGE_GAP,
        render=_render_coverage_gap,
        reply_options=("YES", "GOT IT"),
        replies={
            "YES": "need_backup",
            "Y": "need_backup",
            "GOT IT": "will_handle",
            "HANDLE": "will_handle",
            "H": "will_handle",
            "NO": "will_handle",
        },
    ),
    InsightType.LOAD_IMBALANCE: SmsTemplate(
        type=InsightType.LOAD_IMBALANCE,
        render=_render_load_imbalance,
        reply_options=("HELP", "OK"),
        replies={
            "HELP": "discuss",
            "H": "discuss",
            "OK": "acknowledge",
            "K": "acknowledge",
            "FINE": "acknowledge",
            "GOOD": "acknowledge",
        },
    ),
    InsightType.PREP_REMINDER: SmsTemplate(
        type=InsightType.PREP_REMINDER,
        render=lambda d: (
            f'Quick heads up: "{d.get("eventName")}" is {d.get("day")}. '
            f"{d.get('action') or 'Everything packed and ready?'}\n\nReply DONE or REMIND ME"
        ),
        reply_options=("DONE", "REMIND ME"),
        replies={
            "DONE": "mark_done",
            "D": "mark_done",
            "YES": "mark_done",
            "YEP": "mark_done",
            "REMIND ME": "remind_later",
            "REMIND": "remind_later",
            "R": "remind_later",
            "LATER": "remind_later",
        },
    ),
    InsightType.PARTNER_UPDATE: SmsTemplate(
        type=InsightType.PARTNER_UPDATE,
        render=lambda d: f"✓ FYI: {d.get('partnerName')} {d.get('action')}",
        reply_options=(),
        replies={},
    ),
}


def get_template(insight_type: InsightType) -> SmsTemplate:
    try:
        return TEMPLATES[InsightType(insight_type)]
    except (KeyError, ValueError) as e:
        raise ValueError(f"Unknown template type: {insight_type}") from e


def render_message(insight_type: InsightType, data: Mapping[str, Any]) -> str:
    return get_template(insight_type).render(data)


def parse_reply(
    insight_type: InsightType, reply: str, data: Mapping[str, Any] | None = None
) -> ParsedReply:
    return get_template(insight_type).parse_reply(reply, data)
