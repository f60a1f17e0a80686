"""Capabilities the model can invoke instead of answering with text."""

from .dispatcher import CapabilityDispatcher
from .hub import Hub, HubStore, build_hub_capabilities, build_hub_registry
from .registry import (
    CapabilityDescriptor,
    CapabilityRegistry,
    EmptyInput,
    InputSchema,
    PydanticSchema,
    capability,
)

__all__ = [
    "CapabilityDescriptor",
    "CapabilityDispatcher",
    "CapabilityRegistry",
    "EmptyInput",
    "Hub",
    "HubStore",
    "InputSchema",
    "PydanticSchema",
    "build_hub_capabilities",
    "build_hub_registry",
    "capability",
]
