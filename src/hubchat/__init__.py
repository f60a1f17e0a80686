"""hubchat - streaming turn orchestration for a tool-using assistant."""

from .app import AppRuntime, ConversationRuntime
from .capabilities import CapabilityDispatcher, CapabilityRegistry, HubStore, capability
from .conversation import ConversationStore
from .orchestrator import TurnHandle, TurnOrchestrator, TurnState
from .streaming import StreamableValue
from .types import CapabilityArtifact, ConversationState, ErrorArtifact, Message, TextArtifact

__version__ = "0.1.0"

__all__ = [
    "AppRuntime",
    "CapabilityArtifact",
    "CapabilityDispatcher",
    "CapabilityRegistry",
    "ConversationRuntime",
    "ConversationState",
    "ConversationStore",
    "ErrorArtifact",
    "HubStore",
    "Message",
    "StreamableValue",
    "TextArtifact",
    "TurnHandle",
    "TurnOrchestrator",
    "TurnState",
    "capability",
]
