"""Application runtime: wires settings, model, capabilities and conversations."""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger

from hubchat.capabilities import CapabilityRegistry, HubStore, build_hub_registry
from hubchat.config import Settings
from hubchat.conversation import CommitHook, ConversationStore
from hubchat.model import ModelClient, OpenAIModelClient
from hubchat.orchestrator import TurnHandle, TurnOrchestrator
from hubchat.types import Artifact


@dataclass
class ConversationRuntime:
    """Runtime state for one conversation."""

    store: ConversationStore
    orchestrator: TurnOrchestrator

    @property
    def conversation_id(self) -> str:
        return self.store.conversation_id

    async def send_message(self, text: str) -> Artifact:
        return await self.orchestrator.send_message(text)

    def start_turn(self, text: str) -> TurnHandle:
        return self.orchestrator.start_turn(text)


class AppRuntime:
    """Owns the shared resources and one runtime per conversation id."""

    def __init__(
        self,
        settings: Settings,
        *,
        model: ModelClient | None = None,
        hub: HubStore | None = None,
        registry: CapabilityRegistry | None = None,
        on_commit: CommitHook | None = None,
    ) -> None:
        self.settings = settings
        self.hub = hub or HubStore()
        self.registry = registry or build_hub_registry(self.hub)
        self._model = model
        self._on_commit = on_commit
        self._conversations: dict[str, ConversationRuntime] = {}

    @property
    def model(self) -> ModelClient:
        if self._model is None:
            self._model = OpenAIModelClient.from_settings(self.settings)
        return self._model

    def conversation(self, conversation_id: str | None = None) -> ConversationRuntime:
        """Get the runtime for a conversation, creating it on first use."""
        if conversation_id is not None and conversation_id in self._conversations:
            return self._conversations[conversation_id]

        store = ConversationStore(
            conversation_id,
            on_commit=self._on_commit,
            busy_policy=self.settings.busy_policy,
        )
        orchestrator = TurnOrchestrator(
            model=self.model,
            registry=self.registry,
            store=store,
            system_prompt=self.settings.system_prompt,
        )
        runtime = ConversationRuntime(store=store, orchestrator=orchestrator)
        self._conversations[store.conversation_id] = runtime
        logger.info("conversation.created id={}", store.conversation_id)
        return runtime

    async def send_message(self, text: str, *, conversation_id: str | None = None) -> Artifact:
        return await self.conversation(conversation_id).send_message(text)
