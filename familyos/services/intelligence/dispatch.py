"""
Insight dedup and dispatch.

A detected insight is dropped when an open insight with the same
(household, type, title) was created in the dedup window. Otherwise it is
stored as pending, rendered and sent; a successful send marks it sent.
Send failures leave it pending and are reported, never raised.
"""

from datetime import UTC, datetime, timedelta

from familyos.infrastructure.observability.logging import get_logger
from familyos.models.domain.insight_domain import AnalysisResult, DetectedInsight
from familyos.repositories.household_repository import HouseholdRepository
from familyos.repositories.insight_repository import InsightRepository
from familyos.services.infrastructure.keyed_locks import KeyedLocks
from familyos.services.intelligence.templates import render_message
from familyos.services.notifications.sms_sender import NotificationSender

logger = get_logger(__name__)

DEFAULT_DEDUP_WINDOW = timedelta(hours=24)


class InsightDispatcher:
    def __init__(
        self,
        insights: InsightRepository,
        households: HouseholdRepository,
        sender: NotificationSender,
        dedup_window: timedelta = DEFAULT_DEDUP_WINDOW,
    ):
        self.insights = insights
        self.households = households
        self.sender = sender
        self.dedup_window = dedup_window
        # Check-then-insert must not interleave for one household
        self._locks = KeyedLocks()

    async def dispatch(
        self,
        household_id: str,
        detected: list[DetectedInsight],
        result: AnalysisResult | None = None,
        now: datetime | None = None,
    ) -> AnalysisResult:
        result = result or AnalysisResult(household_id=household_id)
        now = now or datetime.now(UTC)

        async with self._locks.hold(household_id):
            for insight in detected:
                await self._dispatch_one(household_id, insight, result, now)

        return result

    async def _dispatch_one(
        self, household_id: str, detected: DetectedInsight, result: AnalysisResult, now: datetime
    ) -> None:
        try:
            duplicate = await self.insights.find_recent_open(
                household_id, detected.type, detected.title, now - self.dedup_window
            )
            if duplicate:
                result.insights_skipped += 1
                logger.debug(
                    "Duplicate insight skipped",
                    household_id=household_id,
                    insight_type=str(detected.type),
                    existing_id=duplicate.id,
                )
                return

            message = render_message(detected.type, detected.template_data)
            insight = await self.insights.create(household_id, detected, message)
            result.insights_created += 1

        except Exception as e:
            logger.error(
                "Failed to store insight",
                household_id=household_id,
                insight_type=str(detected.type),
                error=str(e),
            )
            result.errors.append(f"Failed to store {detected.type} insight: {e}")
            return

        try:
            phone = await self.households.get_verified_phone(detected.target_user_id)
            if not phone:
                logger.info(
                    "Insight recipient has no verified phone, left pending",
                    insight_id=insight.id,
                    user_id=detected.target_user_id,
                )
                return

            delivery = await self.sender.send(phone, message)
            if delivery.success:
                await self.insights.mark_sent(insight.id, datetime.now(UTC))
                result.insights_sent += 1
                logger.info(
                    "Insight sent",
                    insight_id=insight.id,
                    insight_type=str(detected.type),
                    message_id=delivery.message_id,
                )
            else:
                result.errors.append(f"Failed to send insight {insight.id}: {delivery.error}")

        except Exception as e:
            logger.error("Insight dispatch failed", insight_id=insight.id, error=str(e))
            result.errors.append(f"Failed to send insight {insight.id}: {e}")
