"""Model client for OpenAI-compatible chat-completions endpoints."""

from __future__ import annotations

import time
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from hubchat.config import Settings
from hubchat.errors import ModelUnavailableError
from hubchat.model.base import CapabilityCall, ModelEvent, StreamError, TextDelta
from hubchat.types import Message

if TYPE_CHECKING:
    from hubchat.capabilities.registry import CapabilityDescriptor

API_VERSION_SUFFIX = "/v1"


def resolve_base_url(api_base: str) -> str:
    """Append the `/v1` path the endpoint expects unless it is already there."""
    base = api_base.rstrip("/")
    if base.endswith(API_VERSION_SUFFIX):
        return base
    return base + API_VERSION_SUFFIX


@dataclass
class _PendingCall:
    index: int
    call_id: str = ""
    name: str = ""
    arguments: str = ""


class OpenAIModelClient:
    """Streams one chat completion and translates chunks into model events."""

    def __init__(
        self,
        *,
        api_key: str,
        api_base: str,
        model: str = "gpt-4o",
        max_tokens: int = 1024,
        timeout_seconds: float | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._model = model
        self._max_tokens = max_tokens
        self._client = client or AsyncOpenAI(
            api_key=api_key,
            base_url=resolve_base_url(api_base),
            timeout=timeout_seconds,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> OpenAIModelClient:
        api_key, api_base = settings.require_model_endpoint()
        logger.info("model.client base_url={} model={}", resolve_base_url(api_base), settings.model)
        return cls(
            api_key=api_key,
            api_base=api_base,
            model=settings.model,
            max_tokens=settings.max_tokens,
            timeout_seconds=settings.timeout_seconds,
        )

    @property
    def model(self) -> str:
        return self._model

    async def stream(
        self,
        system_prompt: str,
        messages: Sequence[Message],
        capabilities: Sequence[CapabilityDescriptor],
    ) -> AsyncIterator[ModelEvent]:
        request: dict[str, Any] = {
            "model": self._model,
            "messages": [{"role": "system", "content": system_prompt}, *(m.to_openai() for m in messages)],
            "max_tokens": self._max_tokens,
            "stream": True,
        }
        if capabilities:
            request["tools"] = [descriptor.model_tool() for descriptor in capabilities]

        logger.info("model.stream.start model={} messages={}", self._model, len(messages))
        start = time.monotonic()
        content = ""
        calls: dict[int, _PendingCall] = {}
        try:
            stream = await self._client.chat.completions.create(**request)
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    content += delta.content
                    yield TextDelta(content)
                for tool_call in delta.tool_calls or ():
                    pending = calls.setdefault(tool_call.index, _PendingCall(index=tool_call.index))
                    if tool_call.id:
                        pending.call_id = tool_call.id
                    if tool_call.function is not None:
                        pending.name += tool_call.function.name or ""
                        pending.arguments += tool_call.function.arguments or ""
        except OpenAIError as exc:
            logger.error("model.stream.error model={} error={}", self._model, exc)
            yield StreamError(ModelUnavailableError(str(exc)))
            return

        duration = time.monotonic() - start
        logger.info(
            "model.stream.end model={} chars={} tool_calls={} duration={:.3f}ms",
            self._model,
            len(content),
            len(calls),
            duration * 1000,
        )
        for pending in sorted(calls.values(), key=lambda item: item.index):
            if pending.name:
                yield CapabilityCall(
                    name=pending.name,
                    raw_arguments=pending.arguments,
                    call_id=pending.call_id or f"call_{pending.index}",
                )
                return
        yield TextDelta(content, is_final=True)
