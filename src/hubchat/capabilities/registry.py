"""Immutable capability registry and the input-schema contract."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Iterable, Iterator
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Protocol, TypeAlias

from pydantic import BaseModel, ConfigDict, ValidationError

from hubchat.errors import SchemaValidationError, UnknownCapabilityError
from hubchat.types import CallMetadata

ROOT_FIELD = "<root>"

CapabilityHandler: TypeAlias = Callable[[Any, CallMetadata], Awaitable[Any]]


class InputSchema(Protocol):
    """Pluggable validator for capability arguments."""

    def validate(self, raw: object) -> Any: ...

    def json_schema(self) -> dict[str, Any]: ...


class EmptyInput(BaseModel):
    """Input for capabilities that take no arguments."""

    model_config = ConfigDict(extra="ignore")


class PydanticSchema:
    """InputSchema backed by a pydantic model."""

    def __init__(self, model: type[BaseModel]) -> None:
        self.model = model

    def validate(self, raw: object) -> BaseModel:
        data = self._decode(raw)
        try:
            return self.model.model_validate(data)
        except ValidationError as exc:
            first = exc.errors()[0]
            loc = ".".join(str(part) for part in first.get("loc", ())) or ROOT_FIELD
            raise SchemaValidationError(loc, first.get("msg", "invalid value")) from exc

    def json_schema(self) -> dict[str, Any]:
        return self.model.model_json_schema()

    @staticmethod
    def _decode(raw: object) -> object:
        if raw is None:
            return {}
        if isinstance(raw, (bytes, bytearray)):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError as exc:
                raise SchemaValidationError(ROOT_FIELD, f"arguments are not valid UTF-8 ({exc.reason})") from exc
        if not isinstance(raw, str):
            return raw
        text = raw.strip()
        if not text:
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise SchemaValidationError(ROOT_FIELD, f"invalid JSON ({exc.msg})") from exc


@dataclass(frozen=True)
class CapabilityDescriptor:
    """Capability metadata and its handler."""

    name: str
    description: str
    input_schema: InputSchema
    handler: CapabilityHandler

    def model_tool(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema.json_schema(),
            },
        }


def capability(
    name: str,
    *,
    description: str,
    input_model: type[BaseModel] = EmptyInput,
) -> Callable[[CapabilityHandler], CapabilityDescriptor]:
    """Decorate an async handler into a CapabilityDescriptor."""

    def decorator(handler: CapabilityHandler) -> CapabilityDescriptor:
        return CapabilityDescriptor(
            name=name,
            description=description,
            input_schema=PydanticSchema(input_model),
            handler=handler,
        )

    return decorator


class CapabilityRegistry:
    """Read-only name → descriptor mapping, fixed at construction."""

    def __init__(self, descriptors: Iterable[CapabilityDescriptor] = ()) -> None:
        items: dict[str, CapabilityDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.name in items:
                raise ValueError(f"Duplicate capability name: {descriptor.name}")
            items[descriptor.name] = descriptor
        self._items = MappingProxyType(items)

    def get(self, name: str) -> CapabilityDescriptor:
        try:
            return self._items[name]
        except KeyError:
            raise UnknownCapabilityError(name) from None

    def has(self, name: str) -> bool:
        return name in self._items

    @property
    def names(self) -> list[str]:
        return sorted(self._items)

    def descriptors(self) -> list[CapabilityDescriptor]:
        return [self._items[name] for name in self.names]

    def model_tools(self) -> list[dict[str, Any]]:
        return [descriptor.model_tool() for descriptor in self.descriptors()]

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[CapabilityDescriptor]:
        return iter(self.descriptors())

    def __contains__(self, name: object) -> bool:
        return name in self._items
