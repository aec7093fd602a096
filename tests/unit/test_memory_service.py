from datetime import UTC, datetime, timedelta

import pytest

from familyos.models.domain.agent_domain import MemorySource, MemoryType
from familyos.services.agent.memory_service import AgentMemory

HH = "hh-1"


@pytest.fixture
def memory(memory_repo):
    return AgentMemory(memory_repo)


@pytest.mark.asyncio
async def test_remember_upserts_by_type_and_key(memory, memory_repo):
    await memory.remember(HH, MemoryType.PREFERENCE, "pickup", {"who": "Alex"})
    updated = await memory.remember(HH, MemoryType.PREFERENCE, "pickup", {"who": "Sam"}, confidence=2.0)

    assert len(memory_repo.rows) == 1
    assert updated.value == {"who": "Sam"}
    assert updated.confidence == 1.0


@pytest.mark.asyncio
async def test_learn_preference_explicit_and_inferred(memory):
    explicit = await memory.learn_preference(HH, "quiet_hours", {"after": "21:00"})
    inferred = await memory.learn_preference(HH, "reminder_time", {"at": "07:30"}, explicit=False)

    assert explicit.confidence == 1.0
    assert explicit.source == MemorySource.USER_EXPLICIT
    assert inferred.confidence == 0.8
    assert inferred.source == MemorySource.INFERRED


@pytest.mark.asyncio
async def test_recall_orders_by_confidence(memory):
    await memory.remember(HH, MemoryType.PATTERN, "weak", {}, confidence=0.3)
    await memory.remember(HH, MemoryType.PATTERN, "strong", {}, confidence=0.9)

    recalled = await memory.recall(HH, memory_type=MemoryType.PATTERN)
    confident = await memory.recall(HH, memory_type=MemoryType.PATTERN, min_confidence=0.5)

    assert [m.key for m in recalled] == ["strong", "weak"]
    assert [m.key for m in confident] == ["strong"]


@pytest.mark.asyncio
async def test_adjust_confidence_forgets_below_threshold(memory):
    await memory.remember_pattern(HH, "soccer_tuesdays", {"description": "Soccer on Tuesdays"})

    raised = await memory.adjust_confidence(HH, MemoryType.PATTERN, "soccer_tuesdays", 0.2)
    dropped = await memory.adjust_confidence(HH, MemoryType.PATTERN, "soccer_tuesdays", -0.85)

    assert raised.confidence == pytest.approx(0.9)
    assert dropped is None
    assert await memory.recall_one(HH, MemoryType.PATTERN, "soccer_tuesdays") is None


@pytest.mark.asyncio
async def test_adjust_confidence_of_missing_memory(memory):
    assert await memory.adjust_confidence(HH, MemoryType.PATTERN, "nope", 0.1) is None


@pytest.mark.asyncio
async def test_expired_memories_hidden_and_cleaned(memory, memory_repo):
    context = await memory.store_context(HH, "last_topic", {"topic": "pickup"})
    assert context.source == MemorySource.CONVERSATION
    assert context.expires_at is not None

    memory_repo.rows[(HH, MemoryType.CONTEXT, "last_topic")].expires_at = datetime.now(
        UTC
    ) - timedelta(minutes=1)

    assert await memory.recall(HH, memory_type=MemoryType.CONTEXT) == []
    assert len(await memory.recall(HH, memory_type=MemoryType.CONTEXT, include_expired=True)) == 1
    assert await memory.cleanup_expired() == 1
    assert memory_repo.rows == {}


@pytest.mark.asyncio
async def test_record_feedback_shape(memory):
    feedback = await memory.record_feedback(HH, "createEvent", "succeeded", {"result": "ok"})

    assert feedback.type == MemoryType.FEEDBACK
    assert feedback.key.startswith("createEvent_")
    assert feedback.value == {"action_type": "createEvent", "outcome": "succeeded", "result": "ok"}
    assert feedback.source == MemorySource.ACTION_OUTCOME
    assert timedelta(days=29) < feedback.expires_at - feedback.created_at <= timedelta(days=30)


@pytest.mark.asyncio
async def test_memory_summary_filters(memory):
    await memory.remember(HH, MemoryType.PREFERENCE, "strong_pref", {}, confidence=0.6)
    await memory.remember(HH, MemoryType.PREFERENCE, "weak_pref", {}, confidence=0.4)
    await memory.remember_pattern(HH, "weekly_swim", {"description": "Swim on Thursdays"})
    await memory.remember_pattern(HH, "maybe", {}, confidence=0.5)
    await memory.record_feedback(HH, "createTask", "succeeded")

    summary = await memory.get_memory_summary(HH)

    assert [m.key for m in summary.preferences] == ["strong_pref"]
    assert [m.key for m in summary.patterns] == ["weekly_swim"]
    assert len(summary.recent_feedback) == 1


@pytest.mark.asyncio
async def test_forget_and_forget_all(memory):
    await memory.learn_preference(HH, "a", {})
    await memory.learn_preference(HH, "b", {})
    await memory.remember_pattern(HH, "c", {})

    assert await memory.forget(HH, MemoryType.PREFERENCE, "a") is True
    assert await memory.forget(HH, MemoryType.PREFERENCE, "a") is False
    assert await memory.forget_all(HH, MemoryType.PREFERENCE) == 1
    assert await memory.forget_all(HH) == 1
