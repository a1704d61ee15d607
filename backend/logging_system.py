"""
Board Assistant — Structured Logging

Request-scoped correlation ids, JSON log lines for production, and the AI usage
records written after every assistant call. Built on the standard logging
module: every component logs through logging.getLogger("board-assistant.<area>")
and picks up the request context from a ContextVar.
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Any
from datetime import datetime, timezone
from enum import Enum
import contextvars
import json
import logging
import os
import sys
import time
import uuid


class LogCategory(str, Enum):
    """Log categories carried on records as `extra={"category": ...}`"""
    API = "api"
    AUTH = "auth"
    DATABASE = "db"
    AI = "ai"
    SECURITY = "security"
    PERFORMANCE = "performance"
    SYSTEM = "system"


@dataclass
class RequestContext:
    """Context for request tracing"""
    request_id: str
    correlation_id: str
    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    start_time: float = field(default_factory=time.time)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def create(correlation_id: Optional[str] = None, user_id: Optional[str] = None) -> "RequestContext":
        request_id = str(uuid.uuid4())
        return RequestContext(
            request_id=request_id,
            correlation_id=correlation_id or request_id,
            user_id=user_id,
        )

    @property
    def elapsed_ms(self) -> float:
        return (time.time() - self.start_time) * 1000


# Async-safe context var (works with FastAPI/asyncio)
_context_var: contextvars.ContextVar[Optional[RequestContext]] = contextvars.ContextVar(
    "request_context", default=None
)


def get_current_context() -> Optional[RequestContext]:
    return _context_var.get()


def set_current_context(context: RequestContext) -> contextvars.Token:
    return _context_var.set(context)


def reset_current_context(token: contextvars.Token) -> None:
    _context_var.reset(token)


# ============================================================
# LOGGING PLUMBING
# ============================================================

class RequestContextFilter(logging.Filter):
    """Stamps request/correlation/user ids onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = get_current_context()
        record.request_id = context.request_id if context else "-"
        record.correlation_id = context.correlation_id if context else "-"
        record.user_id = context.user_id if context else None
        if not hasattr(record, "category"):
            record.category = LogCategory.SYSTEM.value
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def __init__(self, service_name: str = "board-assistant"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "category": getattr(record, "category", LogCategory.SYSTEM.value),
            "message": record.getMessage(),
            "service": self.service_name,
            "request_id": getattr(record, "request_id", None),
            "correlation_id": getattr(record, "correlation_id", None),
            "user_id": getattr(record, "user_id", None),
        }
        duration_ms = getattr(record, "duration_ms", None)
        if duration_ms is not None:
            entry["duration_ms"] = round(duration_ms, 2)
        metadata = getattr(record, "metadata", None)
        if metadata:
            entry["metadata"] = metadata
        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["error"] = {"type": exc_type.__name__ if exc_type else None, "message": str(exc_value)}
            entry["stack_trace"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] [%(request_id)s] %(message)s"


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Install one stdout handler on the root logger. Safe to call repeatedly."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    fmt = (fmt or os.getenv("LOG_FORMAT", "text")).lower()

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestContextFilter())
    handler.setFormatter(JSONFormatter() if fmt == "json" else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if getattr(existing, "_board_assistant", False):
            root.removeHandler(existing)
    handler._board_assistant = True
    root.addHandler(handler)
    root.setLevel(getattr(logging, level, logging.INFO))


# ============================================================
# USAGE METRICS
# ============================================================

usage_logger = logging.getLogger("board-assistant.usage")


@dataclass
class UsageRecord:
    """One assistant call, as written to the usage log"""
    user_id: str
    project_id: str
    organization_id: Optional[str]
    intent: str
    response_type: str
    tokens_used: int
    execution_time_ms: int
    tool_calls: int = 0
    degraded: bool = False
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userId": self.user_id,
            "projectId": self.project_id,
            "organizationId": self.organization_id,
            "intent": self.intent,
            "responseType": self.response_type,
            "tokensUsed": self.tokens_used,
            "executionTimeMs": self.execution_time_ms,
            "toolCalls": self.tool_calls,
            "degraded": self.degraded,
            "timestamp": self.timestamp,
        }


def log_ai_usage(record: UsageRecord) -> None:
    usage_logger.info(
        f"AI usage: {record.tokens_used} tokens, {record.tool_calls} tool calls, "
        f"{record.execution_time_ms}ms (intent={record.intent}, project={record.project_id})",
        extra={
            "category": LogCategory.AI.value,
            "duration_ms": record.execution_time_ms,
            "metadata": record.to_dict(),
        },
    )


def log_security(event_type: str, **metadata) -> None:
    logging.getLogger("board-assistant.security").warning(
        f"Security event: {event_type}",
        extra={"category": LogCategory.SECURITY.value, "metadata": metadata},
    )

