# familyos/models/api/agent_request.py
"""
Agent API request models.
Used by routes for input validation.
"""

from typing import Any

from pydantic import BaseModel, Field


class ToolCallRequest(BaseModel):
    """An action proposed by the agent on behalf of a user."""

    action_type: str = Field(..., min_length=1, max_length=64, description="Action type")
    payload: dict[str, Any] = Field(default_factory=dict, description="Action-specific payload")
    execute: bool = Field(
        default=True, description="Execute immediately when the action is auto-approved"
    )


class RejectActionRequest(BaseModel):
    reason: str | None = Field(None, max_length=500, description="Why the action was rejected")


class AutoApproveRequest(BaseModel):
    """Toggle auto-approve for one action type."""

    action_type: str = Field(..., min_length=1, max_length=64)
    enabled: bool


class PreferenceRequest(BaseModel):
    key: str = Field(..., min_length=1, max_length=100)
    value: dict[str, Any]
    explicit: bool = True
