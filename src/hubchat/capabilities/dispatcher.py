"""Validate and execute one capability call."""

from __future__ import annotations

import json
import time
from typing import Any

from loguru import logger
from pydantic import BaseModel

from hubchat.capabilities.registry import ROOT_FIELD, CapabilityRegistry
from hubchat.errors import (
    CapabilityError,
    CapabilityExecutionError,
    DispatchError,
    InvalidArgumentsError,
    SchemaValidationError,
)
from hubchat.types import ARTIFACT_TYPES, Artifact, CallMetadata, CapabilityArtifact


def _shorten_text(text: str, width: int = 30, placeholder: str = "...") -> str:
    """Shorten text to width characters, cutting in the middle of words if needed."""
    if len(text) <= width:
        return text

    available = width - len(placeholder)
    if available <= 0:
        return placeholder

    return text[:available] + placeholder


def _render_arguments(value: Any) -> str:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json")
    if isinstance(value, dict):
        params: list[str] = []
        for key, item in value.items():
            try:
                rendered = json.dumps(item, ensure_ascii=False)
            except TypeError:
                rendered = repr(item)
            params.append(f"{key}={_shorten_text(rendered)}")
        return ", ".join(params)
    return _shorten_text(str(value))


class CapabilityDispatcher:
    """Runs a capability call against the registry, invoking its handler at most once."""

    def __init__(self, registry: CapabilityRegistry) -> None:
        self._registry = registry

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    async def dispatch(self, name: str, raw_arguments: object, call_id: str) -> Artifact:
        """Return the handler's artifact, or raise DispatchError wrapping the failure."""
        try:
            return await self._dispatch(name, raw_arguments, call_id)
        except CapabilityError as exc:
            logger.warning("capability.call.rejected name={} call_id={} error={}", name, call_id, exc)
            raise DispatchError(exc) from exc

    async def _dispatch(self, name: str, raw_arguments: object, call_id: str) -> Artifact:
        descriptor = self._registry.get(name)
        try:
            value = descriptor.input_schema.validate(raw_arguments)
        except SchemaValidationError as exc:
            raise InvalidArgumentsError(name, exc.field_path, exc.message) from exc
        except Exception as exc:
            raise InvalidArgumentsError(name, ROOT_FIELD, str(exc) or type(exc).__name__) from exc

        logger.info("capability.call.start name={} call_id={} {{ {} }}", name, call_id, _render_arguments(value))
        start = time.monotonic()
        try:
            result = await descriptor.handler(value, CallMetadata(name=name, call_id=call_id))
        except Exception as exc:
            logger.exception("capability.call.error name={}", name)
            raise CapabilityExecutionError(name, exc) from exc
        finally:
            duration = time.monotonic() - start
            logger.info("capability.call.end name={} duration={:.3f}ms", name, duration * 1000)

        if isinstance(result, ARTIFACT_TYPES):
            return result
        return CapabilityArtifact(name=name, payload=result)
