"""
Household analysis: gather events, run the detectors, dispatch insights.

Used by the webhook path (through the background runner) and by the
scheduled intelligence sweep. Failures are isolated per calendar and per
household and reported in AnalysisResult.errors.
"""

from datetime import UTC, datetime, time, timedelta

from familyos.infrastructure.observability.logging import get_logger
from familyos.models.domain.calendar_domain import CalendarRef, HouseholdEvent
from familyos.models.domain.insight_domain import AnalysisResult, HouseholdContext
from familyos.models.domain.job_domain import SweepResult
from familyos.repositories.household_repository import HouseholdRepository
from familyos.services.calendar.provider import CalendarProvider
from familyos.services.intelligence.dispatch import InsightDispatcher
from familyos.services.intelligence.patterns import DETECTORS, Detector, detect_all

logger = get_logger(__name__)

ANALYSIS_WINDOW = timedelta(days=7)


class HouseholdAnalyzer:
    def __init__(
        self,
        households: HouseholdRepository,
        provider: CalendarProvider,
        dispatcher: InsightDispatcher,
        detectors: tuple[Detector, ...] = DETECTORS,
        window: timedelta = ANALYSIS_WINDOW,
    ):
        self.households = households
        self.provider = provider
        self.dispatcher = dispatcher
        self.detectors = detectors
        self.window = window

    async def analyze_household(
        self, household_id: str, now: datetime | None = None
    ) -> AnalysisResult:
        """Run every detector for one household. Never raises."""
        now = now or datetime.now(UTC)
        result = AnalysisResult(household_id=household_id)

        try:
            context = await self.households.get_household_context(household_id)
            if context is None:
                result.errors.append("Household has no primary parent")
                return result

            calendars = await self.households.list_included_calendars(household_id)
            events = await self._collect_events(calendars, context, now, result)

            detected = detect_all(events, context, now, self.detectors)
            result.insights_generated = len(detected)
            if detected:
                await self.dispatcher.dispatch(household_id, detected, result, now)

        except Exception as e:
            logger.error(
                "Household analysis failed",
                household_id=household_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            result.errors.append(f"Analysis failed: {e}")
            return result

        logger.info(
            "Household analyzed",
            household_id=household_id,
            insights_generated=result.insights_generated,
            insights_created=result.insights_created,
            insights_skipped=result.insights_skipped,
            insights_sent=result.insights_sent,
            error_count=len(result.errors),
        )
        return result

    async def analyze_all_households(self) -> SweepResult:
        sweep = SweepResult(name="intelligence")
        try:
            household_ids = await self.households.list_households_with_calendars()
        except Exception as e:
            logger.error("Failed to list households for analysis", error=str(e))
            sweep.record_failure("*", str(e))
            return sweep

        for household_id in household_ids:
            result = await self.analyze_household(household_id)
            if result.errors:
                sweep.record_failure(household_id, "; ".join(result.errors))
            else:
                sweep.record_success()

        logger.info("Intelligence sweep completed", **sweep.to_dict())
        return sweep

    def analysis_window(self, context: HouseholdContext, now: datetime) -> tuple[datetime, datetime]:
        """Start of today in household time through the end of the window."""
        tz = context.tz
        start = datetime.combine(now.astimezone(tz).date(), time.min, tzinfo=tz)
        return start, start + self.window

    async def _collect_events(
        self,
        calendars: list[CalendarRef],
        context: HouseholdContext,
        now: datetime,
        result: AnalysisResult,
    ) -> list[HouseholdEvent]:
        time_min, time_max = self.analysis_window(context, now)
        events: list[HouseholdEvent] = []

        for calendar in calendars:
            try:
                raw_events = await self.provider.list_events(
                    calendar.user_id, calendar.google_calendar_id, time_min, time_max
                )
            except Exception as e:
                logger.warning(
                    "Failed to fetch calendar for analysis",
                    household_id=context.household_id,
                    calendar_ref=calendar.id,
                    error=str(e),
                )
                result.errors.append(f"Calendar {calendar.id}: {e}")
                continue

            for raw in raw_events:
                if raw.is_removed():
                    continue
                event = HouseholdEvent.from_provider_event(
                    raw,
                    calendar_id=calendar.id,
                    owner_id=calendar.family_member_id,
                    owner_name=calendar.owner_name,
                    tz=context.tz,
                )
                if event is not None:
                    events.append(event)

        return events
