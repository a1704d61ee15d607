# routers/ai.py — Board assistant: natural-language requests turned into tool calls
import logging

from fastapi import APIRouter, Depends

from ai_tools import ToolRegistry, get_tool_registry
from auth import get_current_user, CurrentUser
from authorization import AuthorizationGate, get_authorization_gate
from entity_store import EntityStore, get_entity_store
from llm_provider import LLMProvider, get_llm_provider, list_providers as provider_status
from logging_system import LogCategory, UsageRecord, log_ai_usage
from orchestrator import AssistantRequest, OrchestrationController
from schemas import envelope

logger = logging.getLogger("board-assistant.ai")

router = APIRouter(prefix="/api/v1/ai", tags=["AI Assistant"])


@router.post("/assistant")
async def assistant(
    body: AssistantRequest,
    user: CurrentUser = Depends(get_current_user),
    store: EntityStore = Depends(get_entity_store),
    gate: AuthorizationGate = Depends(get_authorization_gate),
    provider: LLMProvider = Depends(get_llm_provider),
    registry: ToolRegistry = Depends(get_tool_registry),
):
    """Run one assistant request against a project board.

    The caller is always the token subject; a userId in the body is ignored.
    """
    if body.user_id and body.user_id != user.id:
        logger.warning(f"Ignoring body userId={body.user_id}; token subject is {user.id}")

    logger.info(
        f"Processing AI request: user={user.id} project={body.project_id} "
        f"input_length={len(body.input)} attachments={len(body.attachments)}",
        extra={"category": LogCategory.AI.value},
    )

    controller = OrchestrationController(store=store, gate=gate, provider=provider, registry=registry)
    outcome = await controller.handle(body, user.id)
    response = outcome.response

    log_ai_usage(UsageRecord(
        user_id=user.id,
        project_id=body.project_id,
        organization_id=outcome.organization_id,
        intent=outcome.intent.primary.value,
        response_type=response.type,
        tokens_used=response.tokens_used,
        execution_time_ms=response.execution_time,
        tool_calls=outcome.tool_calls,
        degraded=outcome.degraded,
    ))

    return envelope(response.to_wire(), metadata={
        "tokensUsed": response.tokens_used,
        "intent": outcome.intent.primary.value,
        "degraded": outcome.degraded,
    })


@router.get("/tools")
async def list_tools(
    user: CurrentUser = Depends(get_current_user),
    registry: ToolRegistry = Depends(get_tool_registry),
):
    """Tool catalog as presented to the model provider"""
    return envelope(registry.definitions(), metadata={"count": len(registry)})


@router.get("/providers")
async def list_providers(user: CurrentUser = Depends(get_current_user)):
    """List available LLM providers and their status."""
    return envelope(provider_status())
