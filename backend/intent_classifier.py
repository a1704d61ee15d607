# intent_classifier.py — Classifies assistant requests into intents
# One low-temperature JSON call to the model provider; any failure falls back
# to a deterministic keyword table so classification never raises.

import os
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from errors import ProviderError
from llm_provider import LLMProvider

logger = logging.getLogger("board-assistant.intent")

INTENT_MODEL = os.getenv("INTENT_MODEL", "gpt-4o-mini")
INTENT_MAX_TOKENS = 300
INTENT_TEMPERATURE = 0.1
INTENT_TIMEOUT_SECONDS = 10.0

KEYWORD_MATCH_CONFIDENCE = 0.6
DEFAULT_CONFIDENCE = 0.3


class Intent(str, Enum):
    GENERAL_ANSWER = "general_answer"
    TASK_CREATION = "task_creation"
    TASK_MANAGEMENT = "task_management"
    AGENT_ASSIGNMENT = "agent_assignment"
    PROJECT_MANAGEMENT = "project_management"
    AGENT_USE = "agent_use"
    OTHER = "other"
    ERROR = "error"


# Checked in order; the first phrase found wins.
KEYWORD_TABLE: Tuple[Tuple[Tuple[str, ...], Intent], ...] = (
    (("create task", "add task", "new task", "make task"), Intent.TASK_CREATION),
    (("update task", "edit task", "move task", "delete task", "modify task", "change task"),
     Intent.TASK_MANAGEMENT),
    (("assign agent", "agent assignment", "assign to agent", "agent to task"), Intent.AGENT_ASSIGNMENT),
    (("create project", "create column", "project management", "column management"),
     Intent.PROJECT_MANAGEMENT),
    (("run agent", "execute agent", "use agent", "agent execution"), Intent.AGENT_USE),
)

SYSTEM_PROMPT = """You are an expert intent classifier for a task management and project automation system. Your job is to analyze user requests and classify their intent with high accuracy.

SYSTEM OVERVIEW:
- Users manage projects with tasks organized in columns (like Kanban boards)
- AI agents can be assigned to tasks to execute them automatically
- Users can create, update, delete, move, and analyze tasks, columns, projects, and agents

INTENT CATEGORIES:
1. "general_answer" - General questions, requests for information, explanations
2. "task_creation" - Creating new tasks
3. "task_management" - Managing existing tasks (edit, move, delete, update)
4. "agent_assignment" - Assigning agents to tasks or managing agent assignments
5. "project_management" - Project-level operations (create, update projects/columns)
6. "agent_use" - Using or executing agents on tasks
7. "other" - Other operations not covered by specific categories
8. "error" - Invalid or problematic requests

ENTITY TYPES TO EXTRACT:
- task: Task-related keywords (bug, feature, research, etc.)
- priority: urgent, high, medium, low
- status: backlog, ready, in progress, done, blocked, cancelled
- column: Column/list names or references
- agent: Agent names or AI-related terms
- project: Project-related terms
- user: User names or assignments
- date: Time references or deadlines

OUTPUT FORMAT:
Return a valid JSON object with this exact structure:
{
  "intent": {
    "primary": "general_answer|task_creation|task_management|agent_assignment|project_management|agent_use|other|error",
    "secondary": "specific_action_type",
    "confidence": 0.0-1.0
  },
  "entities": [
    {"type": "entity_type", "value": "extracted_value", "confidence": 0.0-1.0}
  ],
  "reasoning": "brief explanation of classification"
}

High confidence (>0.8) for clear intents, lower for ambiguous ones."""


@dataclass
class ContextCounts:
    """Lightweight project state handed to the classifier."""

    project_name: str = ""
    organization_name: str = ""
    task_count: int = 0
    column_names: List[str] = field(default_factory=list)
    agent_names: List[str] = field(default_factory=list)


class IntentEntity(BaseModel):
    type: str
    value: str
    confidence: float = Field(default=0.5)

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, v):
        return v if isinstance(v, str) else json.dumps(v)

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, v):
        try:
            return min(max(float(v), 0.0), 1.0)
        except (TypeError, ValueError):
            return 0.5


class IntentAnalysis(BaseModel):
    primary: Intent
    secondary: Optional[str] = None
    confidence: float
    entities: List[IntentEntity] = Field(default_factory=list)
    # set when the keyword fallback produced this result
    degraded: bool = False


class _IntentBlock(BaseModel):
    primary: str
    secondary: Optional[str] = None
    confidence: float = DEFAULT_CONFIDENCE


class _ProviderIntent(BaseModel):
    intent: _IntentBlock
    entities: List[IntentEntity] = Field(default_factory=list)
    reasoning: Optional[str] = None


def keyword_intent(input_text: str) -> IntentAnalysis:
    """Deterministic fallback: case-insensitive substring match over KEYWORD_TABLE."""
    lowered = input_text.lower()
    for phrases, intent in KEYWORD_TABLE:
        if any(phrase in lowered for phrase in phrases):
            return IntentAnalysis(primary=intent, confidence=KEYWORD_MATCH_CONFIDENCE, degraded=True)
    return IntentAnalysis(primary=Intent.GENERAL_ANSWER, confidence=DEFAULT_CONFIDENCE, degraded=True)


def build_user_prompt(input_text: str, counts: ContextCounts) -> str:
    return (
        "Analyze the following user request and classify its intent:\n\n"
        f'USER INPUT: "{input_text}"\n\n'
        "CURRENT CONTEXT:\n"
        f"- Project: {counts.project_name}\n"
        f"- Organization: {counts.organization_name}\n"
        f"- Current Tasks: {counts.task_count}\n"
        f"- Available Columns: {', '.join(counts.column_names)}\n"
        f"- Available Agents: {', '.join(counts.agent_names)}\n\n"
        "Classify this request and return your analysis in the required JSON format."
    )


class IntentClassifier:
    def __init__(self, provider: LLMProvider, model: str = INTENT_MODEL, timeout: float = INTENT_TIMEOUT_SECONDS):
        self.provider = provider
        self.model = model
        self.timeout = timeout

    async def classify(self, input_text: str, counts: Optional[ContextCounts] = None) -> IntentAnalysis:
        counts = counts or ContextCounts()
        try:
            reply = await self.provider.chat(
                [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_user_prompt(input_text, counts)},
                ],
                model=self.model,
                max_tokens=INTENT_MAX_TOKENS,
                temperature=INTENT_TEMPERATURE,
                response_format={"type": "json_object"},
                timeout=self.timeout,
            )
            analysis = self._parse(reply.content)
        except (ProviderError, ValueError, ValidationError) as e:
            fallback = keyword_intent(input_text)
            logger.warning(
                f"Intent classification degraded to keyword matching ({type(e).__name__}: {e}); "
                f"intent={fallback.primary.value} confidence={fallback.confidence}"
            )
            return fallback

        logger.info(
            f"Intent classified: {analysis.primary.value} "
            f"(secondary={analysis.secondary}, confidence={analysis.confidence:.2f})"
        )
        return analysis

    @staticmethod
    def _parse(content: str) -> IntentAnalysis:
        if not content:
            raise ValueError("Empty response from model provider")
        raw = _ProviderIntent.model_validate(json.loads(content))
        try:
            primary = Intent(raw.intent.primary)
        except ValueError:
            primary = Intent.OTHER
        return IntentAnalysis(
            primary=primary,
            secondary=raw.intent.secondary,
            confidence=min(max(raw.intent.confidence, 0.0), 1.0),
            entities=raw.entities,
        )
