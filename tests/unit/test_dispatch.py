from datetime import timedelta

import pytest

from familyos.models.domain.insight_domain import (
    DetectedInsight,
    InsightStatus,
    InsightType,
    Severity,
)
from familyos.services.intelligence.dispatch import InsightDispatcher


@pytest.fixture
def dispatcher(insight_repo, households, sender):
    return InsightDispatcher(insight_repo, households, sender, timedelta(hours=24))


def conflict(target="user-a", title="Schedule overlap: Dentist vs Client call"):
    return DetectedInsight(
        type=InsightType.CONFLICT,
        severity=Severity.HIGH,
        title=title,
        description="Both parents have events at the same time",
        template_data={"time": "10:00 AM", "day": "today", "partnerName": "Sam"},
        event_ids=["a1", "b1"],
        target_user_id=target,
    )


@pytest.mark.asyncio
async def test_new_insight_is_stored_and_sent(dispatcher, insight_repo, sender):
    result = await dispatcher.dispatch("hh-1", [conflict()])

    assert result.insights_created == 1
    assert result.insights_sent == 1
    assert result.errors == []
    assert insight_repo.rows[0].status == InsightStatus.SENT
    assert insight_repo.rows[0].message.startswith("Heads up! You both have things at 10:00 AM")
    assert sender.sent[0][0] == "+15550000001"


@pytest.mark.asyncio
async def test_duplicate_inside_window_is_skipped(dispatcher, insight_repo, sender):
    await dispatcher.dispatch("hh-1", [conflict()])

    result = await dispatcher.dispatch("hh-1", [conflict(), conflict(title="Other overlap")])

    assert result.insights_skipped == 1
    assert result.insights_created == 1
    assert len(insight_repo.rows) == 2
    assert len(sender.sent) == 2


@pytest.mark.asyncio
async def test_resolved_insight_does_not_block_a_new_one(dispatcher, insight_repo):
    await dispatcher.dispatch("hh-1", [conflict()])
    insight_repo.rows[0].status = InsightStatus.RESOLVED

    result = await dispatcher.dispatch("hh-1", [conflict()])

    assert result.insights_created == 1


@pytest.mark.asyncio
async def test_recipient_without_phone_stays_pending(dispatcher, insight_repo, households, sender):
    households.phones.pop("user-b")

    result = await dispatcher.dispatch("hh-1", [conflict(target="user-b")])

    assert result.insights_created == 1
    assert result.insights_sent == 0
    assert result.errors == []
    assert insight_repo.rows[0].status == InsightStatus.PENDING
    assert sender.sent == []


@pytest.mark.asyncio
async def test_send_failure_is_reported(dispatcher, insight_repo, sender):
    sender.fail_with = "carrier rejected"

    result = await dispatcher.dispatch("hh-1", [conflict()])

    assert result.insights_created == 1
    assert result.insights_sent == 0
    assert result.errors == ["Failed to send insight ins-1: carrier rejected"]
    assert insight_repo.rows[0].status == InsightStatus.PENDING


@pytest.mark.asyncio
async def test_store_failure_is_reported(dispatcher, insight_repo):
    insight_repo.fail_create = True

    result = await dispatcher.dispatch("hh-1", [conflict()])

    assert result.insights_created == 0
    assert result.errors == ["Failed to store conflict insight: insert failed"]


@pytest.mark.asyncio
async def test_household_lock_is_dropped_after_dispatch(dispatcher):
    await dispatcher.dispatch("hh-1", [conflict()])

    assert len(dispatcher._locks) == 0
