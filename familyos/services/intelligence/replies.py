"""Resolve insights from free-text SMS replies."""

from dataclasses import dataclass
from datetime import UTC, datetime

from familyos.infrastructure.observability.logging import get_logger
from familyos.repositories.insight_repository import InsightRepository
from familyos.services.intelligence.templates import parse_reply

logger = get_logger(__name__)


@dataclass(slots=True)
class ReplyResolution:
    resolved: bool
    insight_id: str | None = None
    action: str | None = None
    error: str | None = None


async def resolve_insight_reply(
    insights: InsightRepository, household_id: str, reply_text: str, user_id: str
) -> ReplyResolution:
    """
    Apply a reply to the user's most recent open insight.

    Unrecognized replies leave the insight untouched.
    """
    insight = await insights.latest_open_for_user(household_id, user_id)
    if insight is None:
        return ReplyResolution(resolved=False, error="No open insight")

    parsed = parse_reply(insight.type, reply_text, insight.template_data)
    if not parsed.valid:
        logger.info(
            "Unrecognized insight reply",
            insight_id=insight.id,
            insight_type=str(insight.type),
        )
        return ReplyResolution(resolved=False, insight_id=insight.id, error="Unrecognized reply")

    resolved = await insights.resolve(insight.id, parsed.action, user_id, datetime.now(UTC))
    if not resolved:
        # Resolved by the other parent in the meantime
        return ReplyResolution(
            resolved=False, insight_id=insight.id, action=parsed.action, error="Already resolved"
        )

    logger.info(
        "Insight resolved from reply",
        insight_id=insight.id,
        insight_type=str(insight.type),
        resolution=parsed.action,
    )
    return ReplyResolution(resolved=True, insight_id=insight.id, action=parsed.action)
