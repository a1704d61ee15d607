# errors.py — Error taxonomy for the board assistant
# Every error carries the HTTP status it maps to; main.py renders them into the
# {success, error, message} envelope.

from typing import Iterable, List, Optional


class BoardError(Exception):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str, *, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_envelope(self) -> dict:
        body = {"success": False, "error": self.message}
        if self.detail:
            body["message"] = self.detail
        return body


class Unauthenticated(BoardError):
    status_code = 401
    code = "unauthenticated"

    def __init__(self, message: str = "User not authenticated", **kwargs):
        super().__init__(message, **kwargs)


class Forbidden(BoardError):
    status_code = 403
    code = "forbidden"

    def __init__(self, message: str, *, required_roles: Iterable[str] = (), **kwargs):
        super().__init__(message, **kwargs)
        self.required_roles: List[str] = list(required_roles)

    @classmethod
    def missing_roles(cls, required_roles: Iterable[str]) -> "Forbidden":
        roles = list(required_roles)
        return cls(f"Access denied: Required role(s): {', '.join(roles)}", required_roles=roles)


class NotFound(BoardError):
    status_code = 404
    code = "not_found"

    def __init__(self, kind: str, message: Optional[str] = None, **kwargs):
        super().__init__(message or f"{kind.capitalize()} not found", **kwargs)
        self.kind = kind


class ValidationFailed(BoardError):
    status_code = 400
    code = "validation_failed"


class Conflict(BoardError):
    status_code = 409
    code = "conflict"


class ProviderError(BoardError):
    """The model provider failed; the assistant degrades instead of erroring."""

    status_code = 502
    code = "provider_error"


class ProviderTimeout(ProviderError):
    code = "provider_timeout"


class ProviderUnavailable(ProviderError):
    code = "provider_unavailable"


class ProviderRateLimited(ProviderError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str = "Rate limit exceeded", **kwargs):
        kwargs.setdefault("detail", "Too many AI requests. Please try again later.")
        super().__init__(message, **kwargs)


class ProviderPermissionDenied(ProviderError):
    status_code = 403
    code = "insufficient_permissions"

    def __init__(self, message: str = "Insufficient permissions", **kwargs):
        kwargs.setdefault("detail", "You do not have permission to perform this action.")
        super().__init__(message, **kwargs)


class ToolExecutionError(BoardError):
    """Raised inside a tool body; the executor turns it into a failed ToolResult."""

    status_code = 422
    code = "tool_execution_failed"


class InternalError(BoardError):
    status_code = 500
    code = "internal_error"

    def __init__(self, message: str = "Internal server error", **kwargs):
        super().__init__(message, **kwargs)


class AgentExecutionUnavailable(BoardError):
    status_code = 501
    code = "not_implemented"

    def __init__(self, message: str = "Agent execution is not available yet", **kwargs):
        super().__init__(message, **kwargs)
