# familyos/models/domain/agent_domain.py
"""
Agent Domain Models
Risk taxonomy, trust counters, pending actions and agent memory.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from familyos.models.domain.action_payloads import ActionPayload


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ActionCategory(StrEnum):
    READ = "read"  # Query data, no side effects
    WRITE_INTERNAL = "write_internal"  # Tasks, insights
    WRITE_CALENDAR = "write_calendar"  # Provider calendar writes
    WRITE_EXTERNAL = "write_external"  # Notifications, email
    COORDINATION = "coordination"  # Affects both parents


class ActionStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"
    EXPIRED = "expired"


TERMINAL_ACTION_STATUSES = (
    ActionStatus.EXECUTED,
    ActionStatus.FAILED,
    ActionStatus.REJECTED,
    ActionStatus.EXPIRED,
)


class Outcome(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    REJECTED = "rejected"


class MemoryType(StrEnum):
    PREFERENCE = "preference"
    PATTERN = "pattern"
    FEEDBACK = "feedback"
    CONTEXT = "context"


class MemorySource(StrEnum):
    USER_EXPLICIT = "user_explicit"
    INFERRED = "inferred"
    ACTION_OUTCOME = "action_outcome"
    CONVERSATION = "conversation"


@dataclass(slots=True, frozen=True)
class RiskClassification:
    action_type: str
    category: ActionCategory
    risk_level: RiskLevel
    description: str

    @property
    def requires_approval(self) -> bool:
        return self.risk_level != RiskLevel.LOW

    @property
    def is_read_only(self) -> bool:
        return self.category == ActionCategory.READ


@dataclass(slots=True)
class TrustRecord:
    """Raw persisted counters for one (household, action type)."""

    household_id: str
    action_type: str
    success_count: int = 0
    failure_count: int = 0
    reject_count: int = 0
    auto_approve: bool = False
    last_used_at: datetime | None = None


@dataclass(slots=True)
class TrustScore:
    action_type: str
    success_count: int
    failure_count: int
    reject_count: int
    auto_approve: bool
    can_auto_approve: bool
    last_used_at: datetime | None = None

    @property
    def total(self) -> int:
        return self.success_count + self.failure_count + self.reject_count

    @property
    def success_rate(self) -> float:
        return self.success_count / self.total if self.total else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "action_type": self.action_type,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "reject_count": self.reject_count,
            "success_rate": self.success_rate,
            "auto_approve": self.auto_approve,
            "can_auto_approve": self.can_auto_approve,
            "last_used_at": self.last_used_at.isoformat() if self.last_used_at else None,
        }


@dataclass(slots=True, frozen=True)
class AutoApproveDecision:
    auto_approve: bool
    reason: str


@dataclass(slots=True)
class PendingAction:
    id: str
    household_id: str
    user_id: str
    action_type: str
    payload: ActionPayload
    status: ActionStatus
    risk_level: RiskLevel
    reason: str | None
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    executed_at: datetime | None = None
    outcome: dict[str, Any] | None = None

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or datetime.now(UTC))


@dataclass(slots=True)
class TransitionResult:
    """
    Result of a pending action state transition.

    `noop` marks expected non-events (unknown id, already processed) that
    webhook and button redelivery produce routinely.
    """

    ok: bool
    action: PendingAction | None = None
    noop: bool = False
    error: str | None = None


@dataclass(slots=True)
class Memory:
    id: str
    household_id: str
    type: MemoryType
    key: str
    value: dict[str, Any]
    confidence: float
    source: MemorySource
    expires_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class MemorySummary:
    preferences: list[Memory] = field(default_factory=list)
    patterns: list[Memory] = field(default_factory=list)
    recent_feedback: list[Memory] = field(default_factory=list)


@dataclass(slots=True)
class ToolCallResult:
    auto_executed: bool
    requires_approval: bool
    pending_action_id: str | None = None
    result: Any = None
    error: str | None = None
    approval_reason: str | None = None


@dataclass(slots=True)
class ConfirmResult:
    success: bool
    result: Any = None
    error: str | None = None
