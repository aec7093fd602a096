import pytest

from familyos.models.domain.agent_domain import Outcome
from familyos.services.agent.trust_service import TrustScoreStore

HH = "hh-1"


@pytest.fixture
def store(trust_repo):
    return TrustScoreStore(trust_repo)


@pytest.mark.asyncio
async def test_unknown_history_is_zeroed(store):
    trust = await store.get_trust(HH, "createEvent")

    assert trust.total == 0
    assert trust.success_rate == 0.0
    assert trust.can_auto_approve is False
    assert trust.auto_approve is False


@pytest.mark.asyncio
async def test_read_only_actions_auto_approve(store):
    decision = await store.should_auto_approve(HH, "queryWeek")

    assert decision.auto_approve is True
    assert decision.reason == "Read-only operation"


@pytest.mark.asyncio
async def test_low_risk_write_still_needs_approval_without_history(store):
    decision = await store.should_auto_approve(HH, "createTask")

    assert decision.auto_approve is False
    assert decision.reason == "low risk action requires approval"


@pytest.mark.asyncio
async def test_critical_actions_never_auto_approve(store):
    await store.set_auto_approve(HH, "sendEmail", True)
    for _ in range(20):
        await store.record_outcome(HH, "sendEmail", Outcome.SUCCESS)

    decision = await store.should_auto_approve(HH, "sendEmail")
    trust = await store.get_trust(HH, "sendEmail")

    assert decision.auto_approve is False
    assert decision.reason == "Critical actions require explicit approval"
    assert trust.can_auto_approve is False


@pytest.mark.asyncio
async def test_threshold_met_suggests_but_does_not_approve(store):
    for _ in range(3):
        trust = await store.record_outcome(HH, "createTask", Outcome.SUCCESS)

    decision = await store.should_auto_approve(HH, "createTask")

    assert trust.success_count == 3
    assert trust.can_auto_approve is True
    assert trust.last_used_at is not None
    assert decision.auto_approve is False
    assert decision.reason == (
        "Trust threshold met (3 successes, 100% success rate). Enable auto-approve?"
    )


@pytest.mark.asyncio
async def test_rejections_drag_success_rate_below_threshold(store):
    for _ in range(3):
        await store.record_outcome(HH, "createTask", Outcome.SUCCESS)
    trust = await store.record_outcome(HH, "createTask", Outcome.REJECTED)

    assert trust.reject_count == 1
    assert trust.success_rate == 0.75
    assert trust.can_auto_approve is False


@pytest.mark.asyncio
async def test_medium_risk_needs_five_successes_at_95_percent(store):
    for _ in range(5):
        await store.record_outcome(HH, "createEvent", Outcome.SUCCESS)
    assert (await store.get_trust(HH, "createEvent")).can_auto_approve is True

    await store.record_outcome(HH, "createEvent", Outcome.FAILURE)
    assert (await store.get_trust(HH, "createEvent")).can_auto_approve is False


@pytest.mark.asyncio
async def test_user_enabled_auto_approve(store):
    trust = await store.set_auto_approve(HH, "createEvent", True)
    decision = await store.should_auto_approve(HH, "createEvent")

    assert trust.auto_approve is True
    assert decision.auto_approve is True
    assert decision.reason == "User enabled auto-approve"


@pytest.mark.asyncio
async def test_suggestions_exclude_already_enabled(store):
    for action_type in ("createTask", "markDone"):
        for _ in range(3):
            await store.record_outcome(HH, action_type, Outcome.SUCCESS)
    await store.set_auto_approve(HH, "markDone", True)
    await store.record_outcome(HH, "createEvent", Outcome.SUCCESS)

    suggestions = await store.get_auto_approve_suggestions(HH)
    everything = await store.get_all_trust(HH)

    assert [t.action_type for t in suggestions] == ["createTask"]
    assert {t.action_type for t in everything} == {"createTask", "markDone", "createEvent"}


@pytest.mark.asyncio
async def test_reset_trust(store):
    await store.record_outcome(HH, "createTask", Outcome.SUCCESS)

    assert await store.reset_trust(HH, "createTask") is True
    assert await store.reset_trust(HH, "createTask") is False
    assert (await store.get_trust(HH, "createTask")).total == 0
