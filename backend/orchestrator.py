# orchestrator.py — Assistant request handling as an explicit state machine
#
#   AUTHORIZING -> CLASSIFYING_INTENT -> PRESENTING_TOOLS -> AWAITING_PROVIDER_RESPONSE
#     -> EXECUTING_TOOLS (0..n, sequential) -> AGGREGATING -> DONE | FAILED
#
# Suspension points: the intent call and the chat call to the model provider.
# Both are bounded by the provider timeout. If the client goes away the request
# task is cancelled and the in-flight provider call with it; tool calls that
# already committed stay committed. Nothing is retried or rolled back.

import os
import re
import json
import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import Field

from ai_tools import ToolContext, ToolExecutor, ToolRegistry
from authorization import AccessResult, AuthorizationGate, ResourceKind
from entity_store import EntityStore, ProjectContext
from errors import (
    NotFound, ProviderError, ProviderPermissionDenied, ProviderRateLimited, ValidationFailed,
)
from intent_classifier import ContextCounts, Intent, IntentAnalysis, IntentClassifier
from llm_provider import LLMProvider, ProviderReply
from models import TaskStatus
from schemas import CamelModel
from telemetry import traced

logger = logging.getLogger("board-assistant.orchestrator")

ASSISTANT_MODEL = os.getenv("ASSISTANT_MODEL", "gpt-4o-2024-08-06")
TOOL_TEMPERATURE = 0.3
TOOL_MAX_TOKENS = 4000
CONVERSATION_TEMPERATURE = 0.7
CONVERSATION_MAX_TOKENS = 2000
MAX_INLINE_ATTACHMENT_CHARS = 4000
MAX_SUGGESTIONS = 3

DEGRADED_MESSAGE = (
    "I'm sorry, I couldn't reach the AI service right now, so I wasn't able to act on "
    "your request. Please try again in a moment."
)

RESPONSE_TYPE_BY_INTENT = {
    Intent.TASK_CREATION: "task_creation",
    Intent.TASK_MANAGEMENT: "task_management",
    Intent.AGENT_ASSIGNMENT: "agent_assignment",
    Intent.PROJECT_MANAGEMENT: "project_management",
    Intent.AGENT_USE: "tool_execution",
    Intent.ERROR: "error",
}

# tool name -> response field holding the entity it produced
RESULT_BUCKETS = {
    "create_task": "created_tasks",
    "update_task": "updated_tasks",
    "move_task": "updated_tasks",
    "create_column": "created_columns",
    "update_column": "updated_columns",
    "create_project": "created_projects",
}

SUGGESTION_PATTERNS = (
    r"you might want to (.*?)(?:\.|$)",
    r"consider (.*?)(?:\.|$)",
    r"i suggest (.*?)(?:\.|$)",
    r"you could (.*?)(?:\.|$)",
)


def map_intent_to_response_type(intent: Intent) -> str:
    return RESPONSE_TYPE_BY_INTENT.get(intent, "general_answer")


# ============================================================
# REQUEST / RESPONSE MODELS
# ============================================================

class Attachment(CamelModel):
    type: Literal["image", "document", "file"]
    url: str
    name: str
    size: float = Field(ge=0)
    mime_type: str
    content: Optional[str] = None


class AssistantContext(CamelModel):
    current_tasks: List[Any] = Field(default_factory=list)
    current_columns: List[Any] = Field(default_factory=list)
    available_agents: List[Any] = Field(default_factory=list)
    project: Optional[Any] = None
    organization: Optional[Any] = None


class AssistantOptions(CamelModel):
    auto_assign_agent: Optional[bool] = None
    create_in_column: Optional[str] = None
    max_tokens: Optional[int] = Field(default=None, gt=0, le=16000)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    enable_tools: Optional[bool] = None
    response_format: Optional[Literal["text", "structured"]] = None
    priority: Optional[Literal["low", "normal", "high"]] = None


class AssistantRequest(CamelModel):
    input: str = Field(min_length=1, max_length=2000)
    user_id: Optional[str] = None
    project_id: str = Field(min_length=1)
    organization_id: Optional[str] = None
    agent_id: Optional[str] = None
    conversation_id: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    # client-side snapshot; grounding uses server state
    context: Optional[AssistantContext] = None
    options: AssistantOptions = Field(default_factory=AssistantOptions)


class ToolCallOutcome(CamelModel):
    tool: str
    success: bool
    result: Optional[Any] = None
    error: Optional[str] = None


class AIResponse(CamelModel):
    type: str
    message: str
    tokens_used: int = 0
    execution_time: int = 0
    created_tasks: Optional[List[Dict[str, Any]]] = None
    created_columns: Optional[List[Dict[str, Any]]] = None
    created_projects: Optional[List[Dict[str, Any]]] = None
    updated_tasks: Optional[List[Dict[str, Any]]] = None
    updated_columns: Optional[List[Dict[str, Any]]] = None
    tool_results: Optional[List[ToolCallOutcome]] = None
    suggestions: Optional[List[str]] = None
    confidence: Optional[float] = None
    follow_up_actions: Optional[List[Dict[str, Any]]] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ============================================================
# STATE MACHINE
# ============================================================

class OrchestrationState(str, Enum):
    AUTHORIZING = "authorizing"
    CLASSIFYING_INTENT = "classifying_intent"
    PRESENTING_TOOLS = "presenting_tools"
    AWAITING_PROVIDER_RESPONSE = "awaiting_provider_response"
    EXECUTING_TOOLS = "executing_tools"
    AGGREGATING = "aggregating"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS = {
    OrchestrationState.AUTHORIZING: {OrchestrationState.CLASSIFYING_INTENT},
    OrchestrationState.CLASSIFYING_INTENT: {
        OrchestrationState.PRESENTING_TOOLS, OrchestrationState.AWAITING_PROVIDER_RESPONSE,
    },
    OrchestrationState.PRESENTING_TOOLS: {OrchestrationState.AWAITING_PROVIDER_RESPONSE},
    OrchestrationState.AWAITING_PROVIDER_RESPONSE: {
        OrchestrationState.EXECUTING_TOOLS, OrchestrationState.AGGREGATING,
    },
    OrchestrationState.EXECUTING_TOOLS: {OrchestrationState.AGGREGATING},
    OrchestrationState.AGGREGATING: {OrchestrationState.DONE},
    OrchestrationState.DONE: set(),
    OrchestrationState.FAILED: set(),
}


class OrchestrationRun:
    """Tracks one request's walk through the states."""

    def __init__(self):
        self.state = OrchestrationState.AUTHORIZING
        self.history: List[OrchestrationState] = [self.state]
        self.started = time.perf_counter()

    def advance(self, next_state: OrchestrationState) -> None:
        if next_state is OrchestrationState.FAILED:
            if self.state is not OrchestrationState.DONE:
                self.state = next_state
                self.history.append(next_state)
            return
        if next_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal orchestration transition {self.state.value} -> {next_state.value}")
        self.state = next_state
        self.history.append(next_state)

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.started) * 1000)


@dataclass
class OrchestrationOutcome:
    response: AIResponse
    intent: IntentAnalysis
    states: List[OrchestrationState]
    degraded: bool = False
    tool_calls: int = 0
    organization_id: Optional[str] = None


@dataclass
class _Aggregate:
    message: str = ""
    outcomes: List[ToolCallOutcome] = field(default_factory=list)
    buckets: Dict[str, List[Dict[str, Any]]] = field(default_factory=dict)


# ============================================================
# PROMPTS
# ============================================================

def _column_label(column) -> str:
    return column.title or column.name


def summarize_task_breakdown(tasks) -> str:
    statuses: Dict[str, int] = {}
    priorities: Dict[str, int] = {}
    for task in tasks:
        status = getattr(task.status, "value", task.status)
        priority = getattr(task.priority, "value", task.priority)
        statuses[status] = statuses.get(status, 0) + 1
        priorities[priority] = priorities.get(priority, 0) + 1
    return (
        f"Status: {', '.join(f'{k}: {v}' for k, v in statuses.items())}\n"
        f"Priority: {', '.join(f'{k}: {v}' for k, v in priorities.items())}"
    )


def build_tool_system_prompt(context: ProjectContext, registry: ToolRegistry,
                             options: AssistantOptions, agent=None) -> str:
    lines = [
        "You are an AI assistant specialized in project management and task organization. "
        "You help users manage their projects, tasks, and workflows efficiently.",
        "",
        "CURRENT CONTEXT:",
        f"- Project: {context.project.name}",
        f"- Organization: {context.organization.name}",
        f"- Tasks: {len(context.tasks)} total",
        f"- Columns: {', '.join(_column_label(c) for c in context.columns)}",
        f"- Available Agents: {len(context.agents)}",
    ]
    if options.create_in_column:
        lines.append(f"- Preferred column for new tasks: {options.create_in_column}")
    if agent is not None:
        lines += ["", f"ACTING AGENT: {agent.name}", agent.system_prompt or ""]
    lines += [
        "",
        "AVAILABLE TOOLS:",
        *[f"- {tool.name}: {tool.description}" for tool in registry],
        "",
        "INSTRUCTIONS:",
        "1. Analyze the user's request carefully to understand their intent",
        "2. Use the appropriate tools to fulfill their request when database modifications are needed",
        "3. For task creation, always include meaningful titles, descriptions, and appropriate types/priorities",
        "4. When creating multiple tasks, organize them logically and assign appropriate columns",
        "5. For analysis requests, provide clear insights and actionable recommendations",
        "6. Always confirm what actions you're taking and explain the results",
    ]
    return "\n".join(lines)


def build_conversation_system_prompt(context: ProjectContext) -> str:
    return (
        "You are an AI assistant for project management. You're having a conversation with a "
        f'user about their project: "{context.project.name}".\n\n'
        "CURRENT PROJECT STATE:\n"
        f"- Total Tasks: {len(context.tasks)}\n"
        f"- Columns: {', '.join(_column_label(c) for c in context.columns)}\n"
        f"- Available Agents: {len(context.agents)}\n\n"
        "TASK BREAKDOWN:\n"
        f"{summarize_task_breakdown(context.tasks)}\n\n"
        "Answer questions about the project, advise on workflow and prioritization, "
        "and reference the current project state when relevant. Be concise and actionable."
    )


def build_user_message(text: str, attachments: List[Attachment]) -> Dict[str, Any]:
    parts: List[Dict[str, Any]] = [{"type": "text", "text": text}]
    for attachment in attachments:
        if attachment.type == "image" and attachment.content:
            parts.append({
                "type": "image_url",
                "image_url": {"url": f"data:{attachment.mime_type};base64,{attachment.content}"},
            })
        elif attachment.content:
            parts.append({
                "type": "text",
                "text": f"Attachment {attachment.name}:\n{attachment.content[:MAX_INLINE_ATTACHMENT_CHARS]}",
            })
    return {"role": "user", "content": parts}


# ============================================================
# SUGGESTIONS
# ============================================================

def extract_suggestions(message: str) -> List[str]:
    found: List[str] = []
    for pattern in SUGGESTION_PATTERNS:
        for match in re.finditer(pattern, message, flags=re.IGNORECASE | re.MULTILINE):
            text = match.group(1).strip()
            if text:
                found.append(text)
    return found[:MAX_SUGGESTIONS]


def generate_suggestions(context: ProjectContext) -> List[str]:
    suggestions = []
    task_count = len(context.tasks)
    if task_count == 0:
        suggestions.append("Create your first task to get started")
    elif task_count > 20:
        suggestions.append("Consider organizing tasks into different projects")
    if len(context.columns) < 4:
        suggestions.append("Add more columns to better organize your workflow")
    if sum(1 for t in context.tasks if t.status == TaskStatus.IN_PROGRESS) > 5:
        suggestions.append("You have many tasks in progress - consider focusing on fewer items")
    return suggestions[:MAX_SUGGESTIONS]


# ============================================================
# CONTROLLER
# ============================================================

class OrchestrationController:
    def __init__(
        self,
        store: EntityStore,
        gate: AuthorizationGate,
        provider: LLMProvider,
        registry: ToolRegistry,
        classifier: Optional[IntentClassifier] = None,
        model: str = ASSISTANT_MODEL,
    ):
        self.store = store
        self.gate = gate
        self.provider = provider
        self.registry = registry
        self.executor = ToolExecutor(registry)
        self.classifier = classifier or IntentClassifier(provider)
        self.model = model

    async def handle(self, request: AssistantRequest, user_id: Optional[str]) -> OrchestrationOutcome:
        run = OrchestrationRun()
        try:
            return await self._run(run, request, user_id)
        except BaseException:
            # includes cancellation when the client disconnects
            run.advance(OrchestrationState.FAILED)
            logger.info(f"Orchestration failed in {run.history[-2].value} after {run.elapsed_ms}ms")
            raise

    async def _run(self, run: OrchestrationRun, request: AssistantRequest, user_id: Optional[str]) -> OrchestrationOutcome:
        # --- AUTHORIZING ---
        access = await self.gate.authorize(ResourceKind.PROJECT, request.project_id, user_id)
        organization_id = access.project.organization_id
        if request.organization_id and request.organization_id != organization_id:
            raise ValidationFailed("organizationId does not match the project's organization")
        agent = await self._acting_agent(request.agent_id, user_id)
        context = await self.store.get_project_context(request.project_id)
        if context is None:
            raise NotFound("project")

        # --- CLASSIFYING_INTENT ---
        run.advance(OrchestrationState.CLASSIFYING_INTENT)
        intent = await self.classifier.classify(request.input, ContextCounts(
            project_name=context.project.name,
            organization_name=context.organization.name,
            task_count=len(context.tasks),
            column_names=[_column_label(c) for c in context.columns],
            agent_names=[a.name for a in context.agents],
        ))

        options = request.options
        tools_enabled = options.enable_tools is not False
        user_message = build_user_message(request.input, request.attachments)

        if tools_enabled:
            # --- PRESENTING_TOOLS ---
            run.advance(OrchestrationState.PRESENTING_TOOLS)
            messages = [
                {"role": "system", "content": build_tool_system_prompt(context, self.registry, options, agent)},
                user_message,
            ]
            call_kwargs = dict(
                tools=self.registry.provider_schemas(),
                tool_choice="auto",
                max_tokens=options.max_tokens or TOOL_MAX_TOKENS,
                temperature=options.temperature if options.temperature is not None else TOOL_TEMPERATURE,
            )
        else:
            messages = [
                {"role": "system", "content": build_conversation_system_prompt(context)},
                user_message,
            ]
            call_kwargs = dict(
                max_tokens=options.max_tokens or CONVERSATION_MAX_TOKENS,
                temperature=options.temperature if options.temperature is not None else CONVERSATION_TEMPERATURE,
            )

        # --- AWAITING_PROVIDER_RESPONSE ---
        run.advance(OrchestrationState.AWAITING_PROVIDER_RESPONSE)
        try:
            with traced("assistant.provider_call", model=self.model, project_id=request.project_id):
                reply = await self.provider.chat(messages, model=self.model, **call_kwargs)
        except (ProviderRateLimited, ProviderPermissionDenied):
            raise
        except ProviderError as e:
            logger.warning(f"Model provider failed ({type(e).__name__}: {e}); answering in degraded mode")
            run.advance(OrchestrationState.AGGREGATING)
            response = AIResponse(
                type="general_answer",
                message=DEGRADED_MESSAGE,
                tokens_used=0,
                confidence=intent.confidence,
                suggestions=generate_suggestions(context) or None,
                execution_time=run.elapsed_ms,
            )
            run.advance(OrchestrationState.DONE)
            return OrchestrationOutcome(response=response, intent=intent, states=run.history, degraded=True,
                                        organization_id=organization_id)

        aggregate = _Aggregate(message=reply.content or "")
        if tools_enabled and reply.tool_calls:
            # --- EXECUTING_TOOLS ---
            run.advance(OrchestrationState.EXECUTING_TOOLS)
            tool_context = ToolContext(
                user_id=user_id,
                project_id=request.project_id,
                organization_id=organization_id,
                store=self.store,
                gate=self.gate,
            )
            await self._execute_calls(reply, tool_context, aggregate)

        # --- AGGREGATING ---
        run.advance(OrchestrationState.AGGREGATING)
        response = self._aggregate(reply, aggregate, intent, context, tools_enabled, run)
        run.advance(OrchestrationState.DONE)
        return OrchestrationOutcome(
            response=response,
            intent=intent,
            states=run.history,
            degraded=intent.degraded,
            tool_calls=len(aggregate.outcomes),
            organization_id=organization_id,
        )

    async def _acting_agent(self, agent_id: Optional[str], user_id: Optional[str]):
        if not agent_id:
            return None
        access: AccessResult = await self.gate.authorize(ResourceKind.AGENT, agent_id, user_id)
        return access.resource

    async def _execute_calls(self, reply: ProviderReply, ctx: ToolContext, aggregate: _Aggregate) -> None:
        for call in reply.tool_calls:
            try:
                params = json.loads(call.arguments or "{}")
            except json.JSONDecodeError as e:
                logger.warning(f"Skipping tool call {call.name}: malformed arguments ({e})")
                continue

            result = await self.executor.execute_tool(call.name, params, ctx)
            if result.success:
                aggregate.message += (
                    f"\n\n✅ Successfully executed {call.name}: {json.dumps(result.data, default=str)}"
                )
                bucket = RESULT_BUCKETS.get(call.name)
                if bucket and isinstance(result.data, dict):
                    aggregate.buckets.setdefault(bucket, []).append(result.data)
            else:
                aggregate.message += f"\n\n❌ Failed to execute {call.name}: {result.error}"
            aggregate.outcomes.append(ToolCallOutcome(
                tool=call.name,
                success=result.success,
                result=result.data if result.success else None,
                error=result.error,
            ))

    def _aggregate(self, reply: ProviderReply, aggregate: _Aggregate, intent: IntentAnalysis,
                   context: ProjectContext, tools_enabled: bool, run: OrchestrationRun) -> AIResponse:
        message = aggregate.message.strip() or "I wasn't able to produce a response to that request."
        if tools_enabled:
            suggestions = extract_suggestions(message)
        else:
            suggestions = generate_suggestions(context)

        created_tasks = aggregate.buckets.get("created_tasks")
        follow_ups = None
        if created_tasks and context.agents:
            follow_ups = [
                {"action": "assign_agent", "taskId": task["id"],
                 "label": f"Assign an agent to '{task['title']}'"}
                for task in created_tasks
            ]

        return AIResponse(
            type=map_intent_to_response_type(intent.primary),
            message=message,
            tokens_used=reply.tokens_used,
            execution_time=run.elapsed_ms,
            created_tasks=created_tasks,
            created_columns=aggregate.buckets.get("created_columns"),
            created_projects=aggregate.buckets.get("created_projects"),
            updated_tasks=aggregate.buckets.get("updated_tasks"),
            updated_columns=aggregate.buckets.get("updated_columns"),
            tool_results=aggregate.outcomes or None,
            suggestions=suggestions or None,
            confidence=intent.confidence,
            follow_up_actions=follow_ups,
        )
