# familyos/routes/agent.py
"""
Agent endpoints: propose, confirm and reject actions, and inspect or tune
per-household trust.

All routes require a household-bound JWT and are rate limited per user.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError
from pydantic_core import to_jsonable_python

from familyos.auth.verify import Identity, household_identity
from familyos.container import ServiceContainer, get_container
from familyos.infrastructure.observability.logging import get_logger
from familyos.middleware.rate_limit_dependencies import rate_limit_user
from familyos.models.api.agent_request import (
    AutoApproveRequest,
    PreferenceRequest,
    RejectActionRequest,
    ToolCallRequest,
)
from familyos.models.api.agent_response import (
    ActionInfoResponse,
    ActionResultResponse,
    AgentContextResponse,
    PendingActionListResponse,
    PendingActionResponse,
    ToolCallResponse,
    TrustListResponse,
    TrustScoreResponse,
)
from familyos.models.domain.action_payloads import parse_action_payload
from familyos.models.domain.agent_domain import PendingAction

logger = get_logger(__name__)

router = APIRouter(
    prefix="/api/agent", tags=["agent"], dependencies=[Depends(rate_limit_user)]
)


async def _load_household_action(
    container: ServiceContainer, action_id: str, identity: Identity
) -> PendingAction:
    action = await container.workflow.get(action_id)
    if action is None or action.household_id != identity.household_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Action not found")
    return action


# ============================================
# Actions
# ============================================


@router.post("/actions", response_model=ToolCallResponse)
async def propose_action(
    body: ToolCallRequest,
    identity: Identity = Depends(household_identity),
    container: ServiceContainer = Depends(get_container),
):
    try:
        payload = parse_action_payload(body.action_type, body.payload)
    except ValidationError as e:
        logger.info(
            "Rejected malformed action payload",
            household_id=identity.household_id,
            action_type=body.action_type,
            error_count=e.error_count(),
        )
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=e.errors(include_url=False, include_context=False),
        ) from e

    # A queued action is only useful if something can carry it out on confirm
    if not container.executors.has(payload.action_type):
        logger.info(
            "Rejected action with no executor",
            household_id=identity.household_id,
            action_type=body.action_type,
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"No executor registered for {body.action_type}",
        )

    executor = (
        container.executors.bind(identity.household_id, identity.user_id, payload)
        if body.execute
        else None
    )
    result = await container.orchestrator.process_tool_call(
        identity.household_id, identity.user_id, body.action_type, payload, executor
    )
    return ToolCallResponse(
        auto_executed=result.auto_executed,
        requires_approval=result.requires_approval,
        pending_action_id=result.pending_action_id,
        approval_reason=result.approval_reason,
        result=to_jsonable_python(result.result, fallback=str),
        error=result.error,
    )


@router.get("/actions", response_model=PendingActionListResponse)
async def list_pending_actions(
    identity: Identity = Depends(household_identity),
    container: ServiceContainer = Depends(get_container),
):
    actions = await container.workflow.list_user_pending(identity.user_id)
    return PendingActionListResponse(
        actions=[PendingActionResponse.from_domain(action) for action in actions],
        total=len(actions),
    )


@router.post("/actions/{action_id}/confirm", response_model=ActionResultResponse)
async def confirm_action(
    action_id: str,
    identity: Identity = Depends(household_identity),
    container: ServiceContainer = Depends(get_container),
):
    action = await _load_household_action(container, action_id, identity)

    executor = container.executors.bind(action.household_id, identity.user_id, action.payload)
    if executor is None:
        logger.warning(
            "No executor for pending action", action_id=action_id, action_type=action.action_type
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"No executor registered for {action.action_type}",
        )

    result = await container.orchestrator.confirm_action(action_id, executor)
    return ActionResultResponse(
        success=result.success,
        result=to_jsonable_python(result.result, fallback=str),
        error=result.error,
    )


@router.post("/actions/{action_id}/reject", response_model=ActionResultResponse)
async def reject_action(
    action_id: str,
    body: RejectActionRequest | None = None,
    identity: Identity = Depends(household_identity),
    container: ServiceContainer = Depends(get_container),
):
    await _load_household_action(container, action_id, identity)
    result = await container.orchestrator.reject_pending_action(
        action_id, body.reason if body else None
    )
    return ActionResultResponse(success=result.ok, error=result.error)


# ============================================
# Trust
# ============================================


@router.get("/trust", response_model=TrustListResponse)
async def list_trust(
    identity: Identity = Depends(household_identity),
    container: ServiceContainer = Depends(get_container),
):
    scores = await container.trust.get_all_trust(identity.household_id)
    return TrustListResponse(trust=[TrustScoreResponse.from_domain(score) for score in scores])


@router.get("/trust/suggestions", response_model=TrustListResponse)
async def trust_suggestions(
    identity: Identity = Depends(household_identity),
    container: ServiceContainer = Depends(get_container),
):
    scores = await container.trust.get_auto_approve_suggestions(identity.household_id)
    return TrustListResponse(trust=[TrustScoreResponse.from_domain(score) for score in scores])


@router.get("/trust/{action_type}", response_model=ActionInfoResponse)
async def action_info(
    action_type: str,
    identity: Identity = Depends(household_identity),
    container: ServiceContainer = Depends(get_container),
):
    info = await container.orchestrator.get_action_info(identity.household_id, action_type)
    return ActionInfoResponse(
        action_type=action_type,
        category=str(info.classification.category),
        risk_level=str(info.classification.risk_level),
        description=info.classification.description,
        requires_approval=info.classification.requires_approval,
        trust=TrustScoreResponse.from_domain(info.trust),
        auto_approve=info.auto_approve.auto_approve,
        auto_approve_reason=info.auto_approve.reason,
    )


@router.post("/trust", response_model=TrustScoreResponse)
async def set_auto_approve(
    body: AutoApproveRequest,
    identity: Identity = Depends(household_identity),
    container: ServiceContainer = Depends(get_container),
):
    trust = await container.trust.set_auto_approve(
        identity.household_id, body.action_type, body.enabled
    )
    return TrustScoreResponse.from_domain(trust)


@router.delete("/trust/{action_type}")
async def reset_trust(
    action_type: str,
    identity: Identity = Depends(household_identity),
    container: ServiceContainer = Depends(get_container),
):
    deleted = await container.trust.reset_trust(identity.household_id, action_type)
    return {"success": True, "deleted": deleted}


# ============================================
# Memory
# ============================================


@router.get("/context", response_model=AgentContextResponse)
async def agent_context(
    identity: Identity = Depends(household_identity),
    container: ServiceContainer = Depends(get_container),
):
    context = await container.orchestrator.get_agent_context(
        identity.household_id, identity.user_id
    )
    return AgentContextResponse(
        prompt=container.orchestrator.format_context_for_prompt(context),
        preferences=len(context.preferences),
        patterns=len(context.patterns),
        recent_feedback=len(context.recent_feedback),
        pending_actions=len(context.pending_actions),
    )


@router.post("/preferences")
async def learn_preference(
    body: PreferenceRequest,
    identity: Identity = Depends(household_identity),
    container: ServiceContainer = Depends(get_container),
):
    memory = await container.orchestrator.learn_preference(
        identity.household_id, body.key, body.value, body.explicit
    )
    return {"success": True, "key": memory.key, "confidence": memory.confidence}
