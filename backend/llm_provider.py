# llm_provider.py — OpenAI-compatible chat-completions client
# Multi-provider resolution (OpenAI, Groq, local Ollama/vLLM) with tool-calling
# support. Every call is bounded by an explicit timeout and failures surface as
# ProviderError subclasses; callers decide how to degrade.

import os
import json
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, ValidationError

from errors import (
    ProviderError, ProviderTimeout, ProviderUnavailable,
    ProviderRateLimited, ProviderPermissionDenied,
)

logger = logging.getLogger("board-assistant.llm")

LLM_PROVIDERS = {
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "env_key": "OPENAI_API_KEY",
        "default_model": "gpt-4o-2024-08-06",
        "models": ["gpt-4o-2024-08-06", "gpt-4o", "gpt-4o-mini", "gpt-4-turbo"],
    },
    "groq": {
        "base_url": "https://api.groq.com/openai/v1",
        "env_key": "GROQ_API_KEY",
        "default_model": "llama-3.3-70b-versatile",
        "models": ["llama-3.3-70b-versatile", "llama-3.1-8b-instant"],
    },
    "local": {
        "base_url": os.getenv("LOCAL_LLM_URL", "http://localhost:11434/v1"),
        "env_key": None,
        "default_model": "qwen2.5-coder:32b",
        "models": ["qwen2.5-coder:32b", "llama3.1:8b"],
    },
}
PREFERRED_PROVIDER = os.getenv("LLM_PROVIDER", "").lower()
DEFAULT_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "30"))


def _api_key_for(provider_key: str) -> Optional[str]:
    config = LLM_PROVIDERS[provider_key]
    if config["env_key"]:
        return os.getenv(config["env_key"])
    # local servers take no key but must be opted into
    return "local" if PREFERRED_PROVIDER == "local" else None


def _resolve_provider(model: Optional[str] = None) -> Tuple[str, Dict[str, Any], str, Optional[str]]:
    if model:
        for key, config in LLM_PROVIDERS.items():
            if model in config["models"]:
                api_key = _api_key_for(key)
                if api_key:
                    return key, config, model, api_key
    if PREFERRED_PROVIDER in LLM_PROVIDERS:
        config = LLM_PROVIDERS[PREFERRED_PROVIDER]
        api_key = _api_key_for(PREFERRED_PROVIDER)
        if api_key:
            name = model if model in config["models"] else config["default_model"]
            return PREFERRED_PROVIDER, config, name, api_key
    for key in ("openai", "groq", "local"):
        api_key = _api_key_for(key)
        if api_key:
            config = LLM_PROVIDERS[key]
            name = model if model in config["models"] else config["default_model"]
            return key, config, name, api_key
    return "none", {}, model or "unconfigured", None


def list_providers() -> Dict[str, Any]:
    providers = []
    for key, config in LLM_PROVIDERS.items():
        providers.append({
            "id": key,
            "name": key.title(),
            "available": bool(_api_key_for(key)),
            "models": config["models"],
            "default_model": config["default_model"],
        })
    active_key, _, active_model, _ = _resolve_provider()
    return {"providers": providers, "active_provider": active_key, "active_model": active_model}


# Response envelope of /chat/completions. Tool-call entries stay loose so one
# malformed entry is skipped instead of failing the whole reply.
class _CompletionMessage(BaseModel):
    content: Optional[str] = None
    tool_calls: Optional[List[Any]] = None


class _CompletionChoice(BaseModel):
    message: Optional[_CompletionMessage] = None
    finish_reason: Optional[str] = None


class _CompletionUsage(BaseModel):
    total_tokens: Optional[int] = None


class _Completion(BaseModel):
    choices: Optional[List[_CompletionChoice]] = None
    usage: Optional[_CompletionUsage] = None
    model: Optional[str] = None


@dataclass
class ProposedToolCall:
    name: str
    arguments: str
    id: Optional[str] = None


@dataclass
class ProviderReply:
    content: str
    tool_calls: List[ProposedToolCall] = field(default_factory=list)
    tokens_used: int = 0
    model: str = ""
    finish_reason: Optional[str] = None


class LLMProvider:
    """Thin async client over `/chat/completions`."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT_SECONDS, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    @property
    def available(self) -> bool:
        return _resolve_provider()[3] is not None

    async def chat(
        self,
        messages: List[Dict[str, Any]],
        *,
        model: Optional[str] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
        tool_choice: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.3,
        response_format: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> ProviderReply:
        provider_key, config, model_name, api_key = _resolve_provider(model)
        if not api_key:
            raise ProviderUnavailable("No LLM provider configured")

        payload: Dict[str, Any] = {
            "model": model_name,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = tool_choice or "auto"
        if response_format:
            payload["response_format"] = response_format

        limit = timeout or self.timeout
        try:
            data = await asyncio.wait_for(
                self._post(config["base_url"], api_key, payload, limit), timeout=limit,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.warning(f"LLM call timed out after {limit}s ({provider_key}/{model_name})")
            raise ProviderTimeout(f"Model provider timed out after {limit:g}s")
        return self._parse(data, model_name)

    async def _post(self, base_url: str, api_key: str, payload: Dict[str, Any], limit: float) -> Dict[str, Any]:
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
        async with httpx.AsyncClient(timeout=httpx.Timeout(limit, connect=5.0), transport=self._transport) as client:
            try:
                resp = await client.post(f"{base_url}/chat/completions", headers=headers, json=payload)
            except httpx.TimeoutException:
                raise
            except httpx.HTTPError as e:
                raise ProviderError(f"Model provider request failed: {e}")

        if resp.status_code == 429:
            raise ProviderRateLimited()
        if resp.status_code in (401, 403):
            raise ProviderPermissionDenied()
        if resp.status_code >= 400:
            raise ProviderError(f"Model provider returned HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError:
            raise ProviderError("Model provider returned a non-JSON body")

    @staticmethod
    def _parse(data: Any, model_name: str) -> ProviderReply:
        try:
            completion = _Completion.model_validate(data)
        except ValidationError as e:
            logger.warning(f"LLM reply rejected: {e.error_count()} shape error(s)")
            raise ProviderError("Model provider returned an unexpected response shape")
        if not completion.choices:
            raise ProviderError("Model provider returned no choices")

        choice = completion.choices[0]
        message = choice.message or _CompletionMessage()
        calls = []
        for call in message.tool_calls or []:
            function = call.get("function") if isinstance(call, dict) else None
            if not isinstance(function, dict) or not isinstance(function.get("name"), str) or not function["name"]:
                logger.warning(f"Skipping malformed tool call from provider: {str(call)[:200]}")
                continue
            arguments = function.get("arguments")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments or {})
            call_id = call.get("id")
            calls.append(ProposedToolCall(
                name=function["name"], arguments=arguments, id=str(call_id) if call_id is not None else None,
            ))
        usage = completion.usage or _CompletionUsage()
        return ProviderReply(
            content=message.content or "",
            tool_calls=calls,
            tokens_used=usage.total_tokens or 0,
            model=completion.model or model_name,
            finish_reason=choice.finish_reason,
        )


_default_provider = LLMProvider()


def get_llm_provider() -> LLMProvider:
    """FastAPI dependency; tests override it with a scripted provider."""
    return _default_provider
