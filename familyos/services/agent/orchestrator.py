"""
Agent orchestrator.

Composes risk classification, the trust store, the pending action workflow
and agent memory behind the three automation write paths:
process_tool_call, confirm_action and reject_pending_action. These are the
only places automation outcomes reach the trust store.
"""

import json
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic_core import to_jsonable_python

from familyos.infrastructure.observability.logging import get_logger
from familyos.models.domain.action_payloads import (
    ActionPayload,
    parse_action_payload,
    payload_to_json,
)
from familyos.models.domain.agent_domain import (
    AutoApproveDecision,
    ConfirmResult,
    Memory,
    Outcome,
    PendingAction,
    RiskClassification,
    ToolCallResult,
    TransitionResult,
    TrustScore,
)
from familyos.services.agent.memory_service import AgentMemory
from familyos.services.agent.risk import classify
from familyos.services.agent.trust_service import TrustScoreStore
from familyos.services.agent.workflow_service import PendingActionWorkflow

logger = get_logger(__name__)

Executor = Callable[[], Awaitable[Any]]


@dataclass(slots=True)
class AgentContext:
    household_id: str
    user_id: str
    preferences: list[Memory] = field(default_factory=list)
    patterns: list[Memory] = field(default_factory=list)
    recent_feedback: list[Memory] = field(default_factory=list)
    pending_actions: list[PendingAction] = field(default_factory=list)


@dataclass(slots=True)
class ActionInfo:
    classification: RiskClassification
    trust: TrustScore
    auto_approve: AutoApproveDecision


class AgentOrchestrator:
    def __init__(
        self,
        trust: TrustScoreStore,
        workflow: PendingActionWorkflow,
        memory: AgentMemory,
    ):
        self.trust = trust
        self.workflow = workflow
        self.memory = memory

    async def process_tool_call(
        self,
        household_id: str,
        user_id: str,
        action_type: str,
        payload: ActionPayload | dict[str, Any] | None = None,
        executor: Executor | None = None,
    ) -> ToolCallResult:
        """
        Execute an action now when it is auto-approved and an executor is
        given; otherwise queue it as a pending action.

        Raises pydantic.ValidationError for a malformed payload of a known
        action type.
        """
        if payload is None or isinstance(payload, dict):
            payload = parse_action_payload(action_type, payload)

        classification = classify(action_type)
        decision = await self.trust.should_auto_approve(household_id, action_type)

        if decision.auto_approve and executor is not None:
            try:
                result = await executor()
            except Exception as e:
                error = str(e) or "Execution failed"
                logger.warning(
                    "Auto-executed action failed",
                    household_id=household_id,
                    action_type=action_type,
                    error=error,
                    error_type=type(e).__name__,
                )
                await self.trust.record_outcome(household_id, action_type, Outcome.FAILURE)
                await self._record_feedback(
                    household_id, action_type, "failed", payload, {"error": error}
                )
                return ToolCallResult(auto_executed=True, requires_approval=False, error=error)

            await self.trust.record_outcome(household_id, action_type, Outcome.SUCCESS)
            await self._record_feedback(
                household_id, action_type, "succeeded", payload, {"result": _jsonable(result)}
            )
            logger.info(
                "Action auto-executed",
                household_id=household_id,
                action_type=action_type,
                reason=decision.reason,
            )
            return ToolCallResult(auto_executed=True, requires_approval=False, result=result)

        action = await self.workflow.create(
            household_id, user_id, payload, reason=classification.description
        )
        return ToolCallResult(
            auto_executed=False,
            requires_approval=True,
            pending_action_id=action.id,
            approval_reason=decision.reason,
        )

    async def confirm_action(self, action_id: str, executor: Executor) -> ConfirmResult:
        """Approve then execute a pending action, recording the outcome either way."""
        approval = await self.workflow.approve(action_id)
        if not approval.ok:
            return ConfirmResult(
                success=False, error=approval.error or "Action not found or already processed"
            )
        action = approval.action

        try:
            result = await executor()
        except Exception as e:
            error = str(e) or "Execution failed"
            await self.workflow.mark_failed(action_id, error)
            await self._record_feedback(
                action.household_id, action.action_type, "failed", action.payload, {"error": error}
            )
            return ConfirmResult(success=False, error=error)

        await self.workflow.mark_executed(
            action_id,
            {"result": _jsonable(result), "executed_at": datetime.now(UTC).isoformat()},
        )
        await self._record_feedback(
            action.household_id,
            action.action_type,
            "succeeded",
            action.payload,
            {"result": _jsonable(result)},
        )
        return ConfirmResult(success=True, result=result)

    async def reject_pending_action(
        self, action_id: str, reason: str | None = None
    ) -> TransitionResult:
        rejection = await self.workflow.reject(action_id, reason)
        if rejection.ok:
            action = rejection.action
            await self._record_feedback(
                action.household_id,
                action.action_type,
                "rejected",
                action.payload,
                {"reason": reason},
            )
        return rejection

    async def get_agent_context(self, household_id: str, user_id: str) -> AgentContext:
        summary = await self.memory.get_memory_summary(household_id)
        pending = await self.workflow.list_user_pending(user_id)
        return AgentContext(
            household_id=household_id,
            user_id=user_id,
            preferences=summary.preferences,
            patterns=summary.patterns,
            recent_feedback=summary.recent_feedback,
            pending_actions=pending,
        )

    @staticmethod
    def format_context_for_prompt(context: AgentContext) -> str:
        parts: list[str] = []

        if context.preferences:
            parts.append("## Family Preferences")
            for pref in context.preferences:
                parts.append(f"- {pref.key}: {json.dumps(pref.value, default=str)}")
            parts.append("")

        if context.patterns:
            parts.append("## Observed Patterns")
            for pattern in context.patterns:
                description = pattern.value.get("description") or pattern.key
                parts.append(f"- {description} (confidence: {pattern.confidence:.0%})")
            parts.append("")

        if context.recent_feedback:
            parts.append("## Recent Feedback")
            for feedback in context.recent_feedback:
                parts.append(
                    f"- {feedback.value.get('action_type', feedback.key)}: "
                    f"{feedback.value.get('outcome', 'unknown')}"
                )
            parts.append("")

        if context.pending_actions:
            parts.append("## Pending Actions Awaiting Approval")
            for action in context.pending_actions:
                data = payload_to_json(action.payload)
                data.pop("action_type", None)
                parts.append(f"- {action.action_type}: {json.dumps(data, default=str)}")
            parts.append("")

        return "\n".join(parts)

    async def get_action_info(self, household_id: str, action_type: str) -> ActionInfo:
        return ActionInfo(
            classification=classify(action_type),
            trust=await self.trust.get_trust(household_id, action_type),
            auto_approve=await self.trust.should_auto_approve(household_id, action_type),
        )

    async def learn_preference(
        self, household_id: str, key: str, value: dict[str, Any], explicit: bool = True
    ) -> Memory:
        return await self.memory.learn_preference(household_id, key, value, explicit)

    async def _record_feedback(
        self,
        household_id: str,
        action_type: str,
        outcome: str,
        payload: ActionPayload,
        details: dict[str, Any],
    ) -> None:
        # Feedback only feeds prompt context; losing one must not fail the action
        try:
            await self.memory.record_feedback(
                household_id,
                action_type,
                outcome,
                {"action_data": payload_to_json(payload), **details},
            )
        except Exception as e:
            logger.warning(
                "Failed to record action feedback",
                household_id=household_id,
                action_type=action_type,
                error=str(e),
            )


def _jsonable(value: Any) -> Any:
    return to_jsonable_python(value, fallback=str)
