"""In-memory conversation history with explicit commit semantics."""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable
from typing import TypeAlias

from loguru import logger

from hubchat.config import BusyPolicy
from hubchat.errors import ConversationBusyError
from hubchat.types import ConversationState, Message, generate_id

CommitHook: TypeAlias = Callable[[ConversationState, bool], Awaitable[None] | None]


class ConversationStore:
    """Holds the committed history of one conversation and its working copy.

    The working copy is what the next model call sees; it only becomes the
    committed history through `commit`, which is also the single point where
    the external commit hook runs.
    """

    def __init__(
        self,
        conversation_id: str | None = None,
        messages: Iterable[Message] = (),
        *,
        on_commit: CommitHook | None = None,
        busy_policy: BusyPolicy = "wait",
    ) -> None:
        self._state = ConversationState(
            conversation_id=conversation_id or generate_id(),
            messages=tuple(messages),
        )
        self._working: list[Message] = list(self._state.messages)
        self._on_commit = on_commit
        self._busy_policy = busy_policy
        self._turn_lock = asyncio.Lock()

    @property
    def conversation_id(self) -> str:
        return self._state.conversation_id

    @property
    def state(self) -> ConversationState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._turn_lock.locked()

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._working)

    def append(self, message: Message) -> None:
        self._working.append(message)

    def cleanup(self) -> int:
        """Drop every trailing assistant message with blank content."""
        dropped = 0
        while self._working and self._working[-1].is_blank_assistant():
            self._working.pop()
            dropped += 1
        if dropped:
            logger.debug("conversation.cleanup dropped={}", dropped)
        return dropped

    def begin_turn(self, user_message: Message) -> tuple[Message, ...]:
        self.cleanup()
        self.append(user_message)
        return self.snapshot()

    def rollback(self) -> None:
        self._working = list(self._state.messages)

    async def commit(self, messages: Iterable[Message]) -> ConversationState:
        state = ConversationState(conversation_id=self.conversation_id, messages=tuple(messages))
        self._state = state
        self._working = list(state.messages)
        logger.info("conversation.commit messages={}", len(state.messages))
        await self._run_hook(state)
        return state

    async def _run_hook(self, state: ConversationState) -> None:
        if self._on_commit is None:
            return
        try:
            result = self._on_commit(state, True)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("conversation.commit.hook_error")

    @contextlib.asynccontextmanager
    async def turn(self) -> AsyncIterator[None]:
        """Hold the conversation for one turn; waits or rejects per busy policy."""
        if self._busy_policy == "reject" and self._turn_lock.locked():
            raise ConversationBusyError(self.conversation_id)
        async with self._turn_lock:
            yield
