# familyos/models/domain/insight_domain.py
"""
Insight Domain Models
Household context, detector output and persisted insights.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo


class InsightType(StrEnum):
    CALENDAR_GAP = "calendar_gap"
    CONFLICT = "conflict"
    COVERAGE_GAP = "coverage_gap"
    LOAD_IMBALANCE = "load_imbalance"
    PREP_REMINDER = "prep_reminder"
    PARTNER_UPDATE = "partner_update"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class InsightStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    RESOLVED = "resolved"


# Insights in these states still count against the dedup window
OPEN_INSIGHT_STATUSES = (InsightStatus.PENDING, InsightStatus.SENT)


@dataclass(slots=True, frozen=True)
class ParentIdentity:
    id: str  # family member id
    name: str
    user_id: str


@dataclass(slots=True, frozen=True)
class Child:
    id: str
    name: str


@dataclass(slots=True, frozen=True)
class HouseholdContext:
    """Everything the detectors need to know about a household."""

    household_id: str
    parent_a: ParentIdentity
    parent_b: ParentIdentity | None = None
    children: tuple[Child, ...] = ()
    timezone: str = "UTC"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def has_two_parents(self) -> bool:
        return self.parent_b is not None


@dataclass(slots=True)
class DetectedInsight:
    """Output of a single detector, not yet persisted."""

    type: InsightType
    severity: Severity
    title: str
    description: str
    template_data: dict[str, Any]
    event_ids: list[str]
    target_user_id: str


@dataclass(slots=True)
class Insight:
    """A persisted insight row."""

    id: str
    household_id: str
    type: InsightType
    severity: Severity
    title: str
    description: str
    message: str
    template_data: dict[str, Any]
    event_ids: list[str]
    target_user_id: str
    status: InsightStatus
    created_at: datetime
    sent_at: datetime | None = None
    resolution: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None


@dataclass(slots=True)
class AnalysisResult:
    """Outcome of analyzing one household."""

    household_id: str
    insights_generated: int = 0
    insights_created: int = 0
    insights_skipped: int = 0
    insights_sent: int = 0
    errors: list[str] = field(default_factory=list)
