"""
Per-household trust scores for automation actions.

Counters live in action_trust and only change through atomic increments.
`can_auto_approve` is a suggestion computed from thresholds; the stored
`auto_approve` flag, set by a user, is what actually licenses automatic
execution.
"""

import math
from dataclasses import dataclass
from datetime import UTC, datetime

from familyos.infrastructure.observability.logging import get_logger
from familyos.models.domain.agent_domain import (
    ActionCategory,
    AutoApproveDecision,
    Outcome,
    RiskLevel,
    TrustRecord,
    TrustScore,
)
from familyos.repositories.trust_repository import TrustRepository
from familyos.services.agent.risk import classify

logger = get_logger(__name__)


@dataclass(slots=True, frozen=True)
class TrustThreshold:
    min_successes: float
    min_success_rate: float


AUTO_APPROVE_THRESHOLDS: dict[RiskLevel, TrustThreshold] = {
    RiskLevel.LOW: TrustThreshold(min_successes=3, min_success_rate=0.90),
    RiskLevel.MEDIUM: TrustThreshold(min_successes=5, min_success_rate=0.95),
    RiskLevel.HIGH: TrustThreshold(min_successes=10, min_success_rate=0.98),
    # Unreachable
    RiskLevel.CRITICAL: TrustThreshold(min_successes=math.inf, min_success_rate=1.0),
}


class TrustScoreStore:
    def __init__(self, repository: TrustRepository):
        self.repository = repository

    async def get_trust(self, household_id: str, action_type: str) -> TrustScore:
        record = await self.repository.get(household_id, action_type)
        return self._score(action_type, record)

    async def record_outcome(
        self, household_id: str, action_type: str, outcome: Outcome
    ) -> TrustScore:
        await self.repository.increment(household_id, action_type, Outcome(outcome), datetime.now(UTC))
        logger.info(
            "Action outcome recorded",
            household_id=household_id,
            action_type=action_type,
            outcome=str(outcome),
        )
        return await self.get_trust(household_id, action_type)

    async def should_auto_approve(self, household_id: str, action_type: str) -> AutoApproveDecision:
        classification = classify(action_type)

        if classification.risk_level == RiskLevel.CRITICAL:
            return AutoApproveDecision(False, "Critical actions require explicit approval")

        if (
            classification.risk_level == RiskLevel.LOW
            and classification.category == ActionCategory.READ
        ):
            return AutoApproveDecision(True, "Read-only operation")

        trust = await self.get_trust(household_id, action_type)

        if trust.auto_approve:
            return AutoApproveDecision(True, "User enabled auto-approve")

        if trust.can_auto_approve:
            return AutoApproveDecision(
                False,
                f"Trust threshold met ({trust.success_count} successes, "
                f"{trust.success_rate:.0%} success rate). Enable auto-approve?",
            )

        return AutoApproveDecision(False, f"{classification.risk_level} risk action requires approval")

    async def set_auto_approve(self, household_id: str, action_type: str, enabled: bool) -> TrustScore:
        await self.repository.set_auto_approve(household_id, action_type, enabled)
        logger.info(
            "Auto-approve updated",
            household_id=household_id,
            action_type=action_type,
            enabled=enabled,
        )
        return await self.get_trust(household_id, action_type)

    async def get_all_trust(self, household_id: str) -> list[TrustScore]:
        records = await self.repository.list_for_household(household_id)
        return [self._score(record.action_type, record) for record in records]

    async def get_auto_approve_suggestions(self, household_id: str) -> list[TrustScore]:
        return [
            trust
            for trust in await self.get_all_trust(household_id)
            if trust.can_auto_approve and not trust.auto_approve
        ]

    async def reset_trust(self, household_id: str, action_type: str) -> bool:
        deleted = await self.repository.delete(household_id, action_type)
        logger.info(
            "Trust reset", household_id=household_id, action_type=action_type, deleted=deleted
        )
        return deleted

    @staticmethod
    def _score(action_type: str, record: TrustRecord | None) -> TrustScore:
        record = record or TrustRecord(household_id="", action_type=action_type)
        score = TrustScore(
            action_type=action_type,
            success_count=record.success_count,
            failure_count=record.failure_count,
            reject_count=record.reject_count,
            auto_approve=record.auto_approve,
            can_auto_approve=False,
            last_used_at=record.last_used_at,
        )
        threshold = AUTO_APPROVE_THRESHOLDS[classify(action_type).risk_level]
        score.can_auto_approve = (
            score.success_count >= threshold.min_successes
            and score.success_rate >= threshold.min_success_rate
        )
        return score
