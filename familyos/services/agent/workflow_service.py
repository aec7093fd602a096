"""
Pending action workflow.

    pending --approve--> approved --executed/failed
    pending --reject---> rejected
    pending --(expires_at passed)--> expired

Every transition is a conditional update in the repository, so a redelivered
approval or a race with the expiry sweep resolves to a `noop` result rather
than an exception. Outcomes flow down to the trust store through the narrow
OutcomeRecorder interface.
"""

from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from familyos.infrastructure.observability.logging import get_logger
from familyos.models.domain.action_payloads import ActionPayload
from familyos.models.domain.agent_domain import (
    ActionStatus,
    Outcome,
    PendingAction,
    RiskLevel,
    TransitionResult,
)
from familyos.repositories.pending_action_repository import PendingActionRepository
from familyos.services.agent.risk import classify

logger = get_logger(__name__)

DEFAULT_EXPIRATION: dict[RiskLevel, timedelta] = {
    RiskLevel.LOW: timedelta(hours=1),
    RiskLevel.MEDIUM: timedelta(hours=24),
    RiskLevel.HIGH: timedelta(days=7),
    # Short on purpose: critical actions are re-evaluated rather than left lying around
    RiskLevel.CRITICAL: timedelta(hours=24),
}

DEFAULT_RETENTION_DAYS = 30
STATS_SCAN_LIMIT = 5000

NOT_FOUND = "Action not found"
ALREADY_PROCESSED = "Action already processed"
EXPIRED = "Action expired"


class OutcomeRecorder(Protocol):
    async def record_outcome(self, household_id: str, action_type: str, outcome: Outcome) -> Any: ...


class PendingActionWorkflow:
    def __init__(self, repository: PendingActionRepository, outcomes: OutcomeRecorder):
        self.repository = repository
        self.outcomes = outcomes

    async def create(
        self,
        household_id: str,
        user_id: str,
        payload: ActionPayload,
        *,
        reason: str | None = None,
        expires_in: timedelta | None = None,
    ) -> PendingAction:
        risk_level = classify(payload.action_type).risk_level
        expires_at = datetime.now(UTC) + (expires_in or DEFAULT_EXPIRATION[risk_level])

        action = await self.repository.create(
            household_id=household_id,
            user_id=user_id,
            payload=payload,
            risk_level=risk_level,
            reason=reason,
            expires_at=expires_at,
        )
        logger.info(
            "Pending action created",
            action_id=action.id,
            household_id=household_id,
            action_type=payload.action_type,
            risk_level=str(risk_level),
            expires_at=expires_at.isoformat(),
        )
        return action

    async def approve(self, action_id: str, now: datetime | None = None) -> TransitionResult:
        """
        pending -> approved.

        An action whose window has passed is moved to expired instead and
        the approval fails.
        """
        now = now or datetime.now(UTC)
        action, failure = await self._load_pending(action_id, now)
        if failure:
            return failure

        approved = await self.repository.transition(
            action_id, ActionStatus.PENDING, ActionStatus.APPROVED, at=now
        )
        if approved is None:
            return TransitionResult(ok=False, noop=True, error=ALREADY_PROCESSED)

        logger.info("Pending action approved", action_id=action_id, action_type=action.action_type)
        return TransitionResult(ok=True, action=approved)

    async def reject(
        self, action_id: str, reason: str | None = None, now: datetime | None = None
    ) -> TransitionResult:
        now = now or datetime.now(UTC)
        action, failure = await self._load_pending(action_id, now)
        if failure:
            return failure

        rejected = await self.repository.transition(
            action_id,
            ActionStatus.PENDING,
            ActionStatus.REJECTED,
            at=now,
            outcome={"rejection_reason": reason} if reason else None,
        )
        if rejected is None:
            return TransitionResult(ok=False, noop=True, error=ALREADY_PROCESSED)

        await self.outcomes.record_outcome(action.household_id, action.action_type, Outcome.REJECTED)
        logger.info("Pending action rejected", action_id=action_id, action_type=action.action_type)
        return TransitionResult(ok=True, action=rejected)

    async def mark_executed(
        self, action_id: str, outcome: dict[str, Any] | None = None
    ) -> TransitionResult:
        executed = await self.repository.transition(
            action_id,
            ActionStatus.APPROVED,
            ActionStatus.EXECUTED,
            at=datetime.now(UTC),
            outcome=outcome or {},
        )
        if executed is None:
            return TransitionResult(ok=False, noop=True, error="Action not approved")

        await self.outcomes.record_outcome(executed.household_id, executed.action_type, Outcome.SUCCESS)
        return TransitionResult(ok=True, action=executed)

    async def mark_failed(self, action_id: str, error: str) -> TransitionResult:
        failed = await self.repository.transition(
            action_id,
            ActionStatus.APPROVED,
            ActionStatus.FAILED,
            at=datetime.now(UTC),
            outcome={"error": error},
        )
        if failed is None:
            return TransitionResult(ok=False, noop=True, error="Action not approved")

        await self.outcomes.record_outcome(failed.household_id, failed.action_type, Outcome.FAILURE)
        logger.warning(
            "Pending action failed", action_id=action_id, action_type=failed.action_type, error=error
        )
        return TransitionResult(ok=True, action=failed)

    async def expire_stale(self, now: datetime | None = None) -> int:
        """Sweep pending rows past their window. Safe to run redundantly."""
        expired = await self.repository.expire_stale(now or datetime.now(UTC))
        if expired:
            logger.info("Stale pending actions expired", count=expired)
        return expired

    async def cleanup_old(self, older_than_days: int = DEFAULT_RETENTION_DAYS) -> int:
        cutoff = datetime.now(UTC) - timedelta(days=older_than_days)
        deleted = await self.repository.delete_terminal_before(cutoff)
        logger.info("Old actions cleaned up", count=deleted, older_than_days=older_than_days)
        return deleted

    async def get(self, action_id: str) -> PendingAction | None:
        return await self.repository.get(action_id)

    async def list_pending(
        self,
        household_id: str,
        *,
        status: ActionStatus | None = None,
        include_expired: bool = False,
    ) -> list[PendingAction]:
        return await self.repository.list_for_household(
            household_id, status=status, include_expired=include_expired, now=datetime.now(UTC)
        )

    async def list_user_pending(self, user_id: str) -> list[PendingAction]:
        return await self.repository.list_pending_for_user(user_id, datetime.now(UTC))

    async def history(
        self,
        household_id: str,
        *,
        action_type: str | None = None,
        days: int = 30,
        limit: int = 100,
    ) -> list[PendingAction]:
        since = datetime.now(UTC) - timedelta(days=days)
        return await self.repository.history(
            household_id, since=since, action_type=action_type, limit=limit
        )

    async def stats(self, household_id: str, days: int = 30) -> dict[str, Any]:
        actions = await self.history(household_id, days=days, limit=STATS_SCAN_LIMIT)
        by_status = Counter(str(action.status) for action in actions)
        return {
            "total": len(actions),
            "pending": by_status[ActionStatus.PENDING],
            "executed": by_status[ActionStatus.EXECUTED],
            "failed": by_status[ActionStatus.FAILED],
            "rejected": by_status[ActionStatus.REJECTED],
            "expired": by_status[ActionStatus.EXPIRED],
            "by_type": dict(Counter(action.action_type for action in actions)),
        }

    async def _load_pending(
        self, action_id: str, now: datetime
    ) -> tuple[PendingAction | None, TransitionResult | None]:
        """The action if it is still actionable, else the failure result to return."""
        action = await self.repository.get(action_id)
        if action is None:
            return None, TransitionResult(ok=False, noop=True, error=NOT_FOUND)

        if action.status != ActionStatus.PENDING:
            return None, TransitionResult(ok=False, action=action, noop=True, error=ALREADY_PROCESSED)

        if action.is_expired(now):
            expired = await self.repository.transition(
                action_id, ActionStatus.PENDING, ActionStatus.EXPIRED, at=now
            )
            logger.info("Pending action expired on access", action_id=action_id)
            return None, TransitionResult(ok=False, action=expired or action, error=EXPIRED)

        return action, None
