"""Model collaborator contract and clients."""

from .base import CapabilityCall, ModelClient, ModelEvent, StreamError, TextDelta
from .openai_client import OpenAIModelClient, resolve_base_url

__all__ = [
    "CapabilityCall",
    "ModelClient",
    "ModelEvent",
    "OpenAIModelClient",
    "StreamError",
    "TextDelta",
    "resolve_base_url",
]
