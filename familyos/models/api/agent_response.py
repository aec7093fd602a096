# familyos/models/api/agent_response.py
"""
Agent API response models.
Used by routes for output formatting.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from familyos.models.domain.action_payloads import payload_to_json
from familyos.models.domain.agent_domain import PendingAction, TrustScore


class ToolCallResponse(BaseModel):
    auto_executed: bool
    requires_approval: bool
    pending_action_id: str | None = None
    approval_reason: str | None = None
    result: Any = None
    error: str | None = None


class PendingActionResponse(BaseModel):
    id: str
    action_type: str
    payload: dict[str, Any]
    status: str
    risk_level: str
    reason: str | None = None
    expires_at: datetime
    created_at: datetime
    executed_at: datetime | None = None
    outcome: dict[str, Any] | None = None

    @classmethod
    def from_domain(cls, action: PendingAction) -> "PendingActionResponse":
        return cls(
            id=action.id,
            action_type=action.action_type,
            payload=payload_to_json(action.payload),
            status=str(action.status),
            risk_level=str(action.risk_level),
            reason=action.reason,
            expires_at=action.expires_at,
            created_at=action.created_at,
            executed_at=action.executed_at,
            outcome=action.outcome,
        )


class PendingActionListResponse(BaseModel):
    actions: list[PendingActionResponse]
    total: int


class ActionResultResponse(BaseModel):
    """Outcome of confirming or rejecting a pending action."""

    success: bool
    result: Any = None
    error: str | None = None


class TrustScoreResponse(BaseModel):
    action_type: str
    success_count: int
    failure_count: int
    reject_count: int
    success_rate: float = Field(..., ge=0.0, le=1.0)
    auto_approve: bool
    can_auto_approve: bool
    last_used_at: datetime | None = None

    @classmethod
    def from_domain(cls, trust: TrustScore) -> "TrustScoreResponse":
        return cls(
            action_type=trust.action_type,
            success_count=trust.success_count,
            failure_count=trust.failure_count,
            reject_count=trust.reject_count,
            success_rate=trust.success_rate,
            auto_approve=trust.auto_approve,
            can_auto_approve=trust.can_auto_approve,
            last_used_at=trust.last_used_at,
        )


class ActionInfoResponse(BaseModel):
    """Classification, trust and current auto-approve decision for an action type."""

    action_type: str
    category: str
    risk_level: str
    description: str
    requires_approval: bool
    trust: TrustScoreResponse
    auto_approve: bool
    auto_approve_reason: str


class TrustListResponse(BaseModel):
    trust: list[TrustScoreResponse]


class AgentContextResponse(BaseModel):
    """Household memory and pending actions, rendered for the agent prompt."""

    prompt: str
    preferences: int
    patterns: int
    recent_feedback: int
    pending_actions: int
