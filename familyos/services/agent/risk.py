"""
Static risk taxonomy for automation actions.

`classify` is total: unknown action types get the conservative
{write_external, high} classification so they can never be auto-approved
by the read-only exemption.
"""

from familyos.models.domain.agent_domain import ActionCategory, RiskClassification, RiskLevel

_CLASSIFICATIONS: dict[str, tuple[ActionCategory, RiskLevel, str]] = {
    # Reads
    "queryWeek": (ActionCategory.READ, RiskLevel.LOW, "Query calendar events for a week"),
    "getConflicts": (ActionCategory.READ, RiskLevel.LOW, "Get scheduling conflicts"),
    # Internal writes
    "createTask": (ActionCategory.WRITE_INTERNAL, RiskLevel.LOW, "Create a new task"),
    "markDone": (ActionCategory.WRITE_INTERNAL, RiskLevel.LOW, "Mark a task or insight as done"),
    # Calendar writes
    "createEvent": (ActionCategory.WRITE_CALENDAR, RiskLevel.MEDIUM, "Create a calendar event"),
    "updateEvent": (
        ActionCategory.WRITE_CALENDAR,
        RiskLevel.MEDIUM,
        "Update an existing calendar event",
    ),
    "deleteEvent": (ActionCategory.WRITE_CALENDAR, RiskLevel.HIGH, "Delete a calendar event"),
    # External communication
    "notifyPartner": (
        ActionCategory.WRITE_EXTERNAL,
        RiskLevel.MEDIUM,
        "Send notification to partner",
    ),
    "draftEmail": (ActionCategory.WRITE_EXTERNAL, RiskLevel.HIGH, "Draft an email to send"),
    "sendEmail": (ActionCategory.WRITE_EXTERNAL, RiskLevel.CRITICAL, "Send an email externally"),
    # Coordination
    "swapEvents": (
        ActionCategory.COORDINATION,
        RiskLevel.MEDIUM,
        "Swap responsibilities between parents",
    ),
    "requestSwap": (ActionCategory.COORDINATION, RiskLevel.MEDIUM, "Request a swap from partner"),
}


def classify(action_type: str) -> RiskClassification:
    known = _CLASSIFICATIONS.get(action_type)
    if known is None:
        return RiskClassification(
            action_type=action_type,
            category=ActionCategory.WRITE_EXTERNAL,
            risk_level=RiskLevel.HIGH,
            description=f"Unknown action: {action_type}",
        )

    category, risk_level, description = known
    return RiskClassification(
        action_type=action_type,
        category=category,
        risk_level=risk_level,
        description=description,
    )
