from datetime import UTC, datetime, timedelta

import pytest

from familyos.models.domain.insight_domain import InsightType
from familyos.services.intelligence.analyzer import HouseholdAnalyzer
from familyos.services.intelligence.dispatch import InsightDispatcher

# Monday
NOW = datetime(2026, 3, 9, 8, 0, tzinfo=UTC)


@pytest.fixture
def analyzer(households, provider, insight_repo, sender):
    dispatcher = InsightDispatcher(insight_repo, households, sender)
    return HouseholdAnalyzer(households, provider, dispatcher)


def seed_conflict(provider, make_event):
    provider.events["alex@example.com"] = [
        make_event("a1", "Board meeting", datetime(2026, 3, 9, 10, 0, tzinfo=UTC)),
        make_event("a2", "Cancelled lunch", datetime(2026, 3, 9, 12, 0, tzinfo=UTC), status="cancelled"),
    ]
    provider.events["sam@example.com"] = [
        make_event("b1", "Client call", datetime(2026, 3, 9, 10, 30, tzinfo=UTC)),
        make_event("b2", "Lunch with Jo", datetime(2026, 3, 9, 12, 0, tzinfo=UTC)),
    ]


@pytest.mark.asyncio
async def test_analyze_household_detects_and_dispatches(analyzer, provider, insight_repo, make_event):
    seed_conflict(provider, make_event)

    result = await analyzer.analyze_household("hh-1", now=NOW)

    assert result.errors == []
    assert result.insights_generated == 1
    assert result.insights_created == 1
    assert result.insights_sent == 1
    assert insight_repo.rows[0].type == InsightType.CONFLICT
    assert insight_repo.rows[0].event_ids == ["a1", "b1"]


@pytest.mark.asyncio
async def test_window_starts_at_local_midnight(analyzer, provider):
    await analyzer.analyze_household("hh-1", now=NOW)

    _, time_min, time_max = provider.list_calls[0]
    assert time_min == datetime(2026, 3, 9, 0, 0, tzinfo=UTC)
    assert time_max - time_min == timedelta(days=7)


@pytest.mark.asyncio
async def test_second_run_is_deduplicated(analyzer, provider, make_event):
    seed_conflict(provider, make_event)
    await analyzer.analyze_household("hh-1", now=NOW)

    again = await analyzer.analyze_household("hh-1", now=NOW)

    assert again.insights_generated == 1
    assert again.insights_skipped == 1
    assert again.insights_created == 0


@pytest.mark.asyncio
async def test_failing_calendar_is_isolated(analyzer, provider, make_event):
    provider.events["alex@example.com"] = [
        make_event("p1", "Swim lesson", datetime(2026, 3, 10, 9, 0, tzinfo=UTC))
    ]
    provider.list_errors["sam@example.com"] = RuntimeError("token revoked")

    result = await analyzer.analyze_household("hh-1", now=NOW)

    assert result.errors == ["Calendar cal-b: token revoked"]
    assert result.insights_created >= 1


@pytest.mark.asyncio
async def test_household_without_context(analyzer, households):
    households.contexts.clear()

    result = await analyzer.analyze_household("hh-1", now=NOW)

    assert result.errors == ["Household has no primary parent"]


@pytest.mark.asyncio
async def test_analyze_all_households(analyzer, provider):
    sweep = await analyzer.analyze_all_households()

    assert sweep.name == "intelligence"
    assert sweep.processed == 1
    assert sweep.succeeded == 1


@pytest.mark.asyncio
async def test_analyze_all_records_household_errors(analyzer, provider):
    provider.list_errors["alex@example.com"] = RuntimeError("boom")

    sweep = await analyzer.analyze_all_households()

    assert sweep.failed == 1
    assert sweep.errors[0]["ref"] == "hh-1"
