"""
Agent memory: typed key/value facts about a household.

Preferences and patterns feed prompt context; feedback memories record how
the household reacted to automated actions. A memory whose confidence drops
below FORGET_THRESHOLD is deleted.
"""

from datetime import UTC, datetime, timedelta
from typing import Any

from familyos.infrastructure.observability.logging import get_logger
from familyos.models.domain.agent_domain import Memory, MemorySource, MemorySummary, MemoryType
from familyos.repositories.memory_repository import MemoryRepository

logger = get_logger(__name__)

FORGET_THRESHOLD = 0.1
FEEDBACK_TTL = timedelta(days=30)
CONTEXT_TTL = timedelta(hours=1)

SUMMARY_PREFERENCE_CONFIDENCE = 0.5
SUMMARY_PATTERN_CONFIDENCE = 0.7
SUMMARY_FEEDBACK_WINDOW = timedelta(days=7)
SUMMARY_FEEDBACK_LIMIT = 10


class AgentMemory:
    def __init__(self, repository: MemoryRepository):
        self.repository = repository

    async def remember(
        self,
        household_id: str,
        memory_type: MemoryType,
        key: str,
        value: dict[str, Any],
        *,
        confidence: float = 1.0,
        source: MemorySource = MemorySource.INFERRED,
        expires_in: timedelta | None = None,
    ) -> Memory:
        now = datetime.now(UTC)
        return await self.repository.upsert(
            household_id=household_id,
            memory_type=memory_type,
            key=key,
            value=value,
            confidence=_clamp(confidence),
            source=source,
            expires_at=now + expires_in if expires_in else None,
            at=now,
        )

    async def recall(
        self,
        household_id: str,
        *,
        memory_type: MemoryType | None = None,
        key: str | None = None,
        min_confidence: float = 0.0,
        include_expired: bool = False,
    ) -> list[Memory]:
        """Matching memories, most confident first, then most recently updated."""
        return await self.repository.query(
            household_id,
            now=datetime.now(UTC),
            memory_type=memory_type,
            key=key,
            min_confidence=min_confidence,
            include_expired=include_expired,
        )

    async def recall_one(self, household_id: str, memory_type: MemoryType, key: str) -> Memory | None:
        memories = await self.repository.query(
            household_id, now=datetime.now(UTC), memory_type=memory_type, key=key, limit=1
        )
        return memories[0] if memories else None

    async def forget(self, household_id: str, memory_type: MemoryType, key: str) -> bool:
        return await self.repository.delete(household_id, memory_type, key)

    async def forget_all(self, household_id: str, memory_type: MemoryType | None = None) -> int:
        return await self.repository.delete_all(household_id, memory_type)

    async def adjust_confidence(
        self, household_id: str, memory_type: MemoryType, key: str, delta: float
    ) -> Memory | None:
        existing = await self.recall_one(household_id, memory_type, key)
        if existing is None:
            return None

        confidence = _clamp(existing.confidence + delta)
        if confidence < FORGET_THRESHOLD:
            await self.forget(household_id, memory_type, key)
            logger.info(
                "Memory forgotten after confidence drop",
                household_id=household_id,
                memory_type=str(memory_type),
                key=key,
            )
            return None

        now = datetime.now(UTC)
        await self.repository.update_confidence(household_id, memory_type, key, confidence, now)
        existing.confidence = confidence
        existing.updated_at = now
        return existing

    async def cleanup_expired(self) -> int:
        deleted = await self.repository.delete_expired(datetime.now(UTC))
        logger.info("Expired memories cleaned up", count=deleted)
        return deleted

    async def get_memory_summary(self, household_id: str) -> MemorySummary:
        now = datetime.now(UTC)
        preferences = await self.repository.query(
            household_id,
            now=now,
            memory_type=MemoryType.PREFERENCE,
            min_confidence=SUMMARY_PREFERENCE_CONFIDENCE,
        )
        patterns = await self.repository.query(
            household_id,
            now=now,
            memory_type=MemoryType.PATTERN,
            min_confidence=SUMMARY_PATTERN_CONFIDENCE,
        )
        feedback = await self.repository.query(
            household_id,
            now=now,
            memory_type=MemoryType.FEEDBACK,
            created_since=now - SUMMARY_FEEDBACK_WINDOW,
            limit=SUMMARY_FEEDBACK_LIMIT,
        )
        return MemorySummary(preferences=preferences, patterns=patterns, recent_feedback=feedback)

    async def learn_preference(
        self, household_id: str, key: str, value: dict[str, Any], explicit: bool = True
    ) -> Memory:
        source = MemorySource.USER_EXPLICIT if explicit else MemorySource.INFERRED
        return await self.remember(
            household_id,
            MemoryType.PREFERENCE,
            key,
            value,
            confidence=1.0 if explicit else 0.8,
            source=source,
        )

    async def remember_pattern(
        self, household_id: str, key: str, value: dict[str, Any], confidence: float = 0.7
    ) -> Memory:
        return await self.remember(
            household_id, MemoryType.PATTERN, key, value, confidence=confidence
        )

    async def record_feedback(
        self,
        household_id: str,
        action_type: str,
        outcome: str,
        details: dict[str, Any] | None = None,
    ) -> Memory:
        """outcome is one of approved/rejected/succeeded/failed."""
        key = f"{action_type}_{int(datetime.now(UTC).timestamp() * 1000)}"
        value = {"action_type": action_type, "outcome": outcome, **(details or {})}
        return await self.remember(
            household_id,
            MemoryType.FEEDBACK,
            key,
            value,
            source=MemorySource.ACTION_OUTCOME,
            expires_in=FEEDBACK_TTL,
        )

    async def store_context(self, household_id: str, key: str, value: dict[str, Any]) -> Memory:
        return await self.remember(
            household_id,
            MemoryType.CONTEXT,
            key,
            value,
            source=MemorySource.CONVERSATION,
            expires_in=CONTEXT_TTL,
        )


def _clamp(confidence: float) -> float:
    return max(0.0, min(1.0, confidence))
