"""Streaming turn orchestrator."""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from enum import StrEnum

from loguru import logger
from pydantic_core import PydanticSerializationError, to_jsonable_python

from hubchat.capabilities.dispatcher import CapabilityDispatcher
from hubchat.capabilities.registry import CapabilityRegistry
from hubchat.config import DEFAULT_SYSTEM_PROMPT
from hubchat.conversation import ConversationStore
from hubchat.errors import (
    ConversationBusyError,
    DispatchError,
    HubchatError,
    ModelUnavailableError,
)
from hubchat.logging_utils import bind_conversation
from hubchat.model.base import CapabilityCall, ModelClient, ModelEvent, StreamError, TextDelta
from hubchat.streaming import StreamableValue
from hubchat.types import (
    Artifact,
    ErrorArtifact,
    Message,
    TextArtifact,
    ToolCall,
)

MISSING_TERMINAL_EVENT = "model stream ended without a terminal event"


class TurnState(StrEnum):
    IDLE = "idle"
    STREAMING = "streaming"
    TEXT_TERMINAL = "text_terminal"
    TOOL_TERMINAL = "tool_terminal"
    FAILED = "failed"
    DONE = "done"


TERMINAL_STATES = frozenset({TurnState.TEXT_TERMINAL, TurnState.TOOL_TERMINAL, TurnState.FAILED})


@dataclass
class _Turn:
    stream: StreamableValue[str]
    committed: list[Message]
    working: list[Message]
    staged: list[Message] = field(default_factory=list)
    state: TurnState = TurnState.IDLE
    artifact: Artifact | None = None
    partial_text: str = ""
    cancelled: bool = False

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def finish(self, state: TurnState, artifact: Artifact) -> None:
        self.state = state
        self.artifact = artifact
        logger.info("turn.terminal state={} artifact={}", state, artifact.kind)

    def fail(self, error: BaseException | str) -> None:
        cause = error.cause if isinstance(error, DispatchError) else error
        if not isinstance(cause, HubchatError):
            cause = ModelUnavailableError(str(cause))
        self.stream.done()
        self.finish(
            TurnState.FAILED,
            ErrorArtifact(
                message=describe_failure(cause),
                recoverable=isinstance(cause, (ModelUnavailableError, ConversationBusyError)),
                partial_text=self.partial_text,
            ),
        )

    def messages_to_commit(self) -> list[Message]:
        if self.cancelled:
            return [*self.working, *self.staged]
        if self.state is TurnState.FAILED:
            return list(self.committed)
        return [*self.working, *self.staged]


@dataclass(frozen=True)
class TurnHandle:
    """A turn running in the background.

    `stream` can be subscribed to immediately, while the model is still
    producing text; `result()` waits for the turn's single artifact.
    """

    stream: StreamableValue[str]
    task: asyncio.Task[Artifact]

    async def result(self) -> Artifact:
        return await self.task

    def cancel(self) -> None:
        self.task.cancel()


def describe_failure(error: BaseException) -> str:
    """Human-readable message for a failed turn."""
    if not isinstance(error, ModelUnavailableError):
        return str(error)
    message = str(error)
    if "Country, region, or territory not supported" in message:
        return (
            "region restriction: the model endpoint rejected this region even through the proxy. "
            "check the proxy configuration in OPENAI_BASE_URL and that it supports the model."
        )
    if "API key" in message or "api_key" in message:
        return "api key error: check that OPENAI_API_KEY is correct."
    if "baseURL" in message or "base_url" in message:
        return "proxy error: check that OPENAI_BASE_URL is configured correctly."
    return f"error: {message}"


def _arguments_text(raw_arguments: object) -> str:
    if isinstance(raw_arguments, str):
        return raw_arguments or "{}"
    try:
        return json.dumps(to_jsonable_python(raw_arguments), ensure_ascii=False)
    except (PydanticSerializationError, TypeError):
        return str(raw_arguments)


def _tool_result_content(artifact: Artifact) -> object:
    if isinstance(artifact, TextArtifact):
        return artifact.stream.value
    if isinstance(artifact, ErrorArtifact):
        return {"error": artifact.message}
    try:
        return to_jsonable_python(artifact.payload)
    except PydanticSerializationError:
        return str(artifact.payload)


class TurnOrchestrator:
    """Drives one request/response turn per user message."""

    def __init__(
        self,
        *,
        model: ModelClient,
        registry: CapabilityRegistry,
        store: ConversationStore,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self._model = model
        self._registry = registry
        self._store = store
        self._system_prompt = system_prompt
        self._dispatcher = CapabilityDispatcher(registry)

    @property
    def store(self) -> ConversationStore:
        return self._store

    @property
    def registry(self) -> CapabilityRegistry:
        return self._registry

    async def send_message(self, user_text: str) -> Artifact:
        """Run one turn to completion and return its artifact."""
        return await self.run(user_text)

    def start_turn(self, user_text: str) -> TurnHandle:
        """Run one turn in a background task so its text can be consumed live."""
        stream: StreamableValue[str] = StreamableValue("")
        task = asyncio.create_task(self.run(user_text, stream=stream))
        return TurnHandle(stream=stream, task=task)

    async def run(self, user_text: str, *, stream: StreamableValue[str] | None = None) -> Artifact:
        stream = stream if stream is not None else StreamableValue("")
        try:
            async with self._store.turn():
                return await self._run_turn(user_text, stream)
        except ConversationBusyError as exc:
            logger.warning("turn.rejected conversation={}", exc.conversation_id)
            return ErrorArtifact(message=str(exc), recoverable=True)
        finally:
            stream.done()

    async def _run_turn(self, user_text: str, stream: StreamableValue[str]) -> Artifact:
        with bind_conversation(self._store.conversation_id):
            committed = list(self._store.state.messages)
            snapshot = self._store.begin_turn(Message.user(user_text))
            turn = _Turn(stream=stream, committed=committed, working=list(snapshot))
            turn.state = TurnState.STREAMING
            logger.info("turn.start messages={} capabilities={}", len(snapshot), len(self._registry))
            try:
                await self._consume(turn, snapshot)
            except asyncio.CancelledError:
                logger.warning("turn.cancelled partial_chars={}", len(turn.partial_text))
                self._abandon(turn)
                await self._commit(turn)
                raise
            except BaseException:
                self._store.rollback()
                raise
            return await self._commit(turn)

    async def _consume(self, turn: _Turn, snapshot: tuple[Message, ...]) -> None:
        try:
            events = self._model.stream(self._system_prompt, snapshot, self._registry.descriptors())
        except Exception as exc:
            logger.exception("turn.model.open_error")
            turn.fail(exc)
            return

        try:
            while not turn.terminal:
                try:
                    event = await anext(events)
                except StopAsyncIteration:
                    break
                except Exception as exc:
                    logger.exception("turn.model.stream_error")
                    turn.fail(exc)
                    break
                await self._handle(turn, event)
        finally:
            await _aclose(events)

        if not turn.terminal:
            turn.fail(ModelUnavailableError(MISSING_TERMINAL_EVENT))

    async def _handle(self, turn: _Turn, event: ModelEvent) -> None:
        match event:
            case TextDelta(content_so_far=content, is_final=False):
                turn.partial_text = content
                turn.stream.update(content)
            case TextDelta(content_so_far=content, is_final=True):
                turn.partial_text = content
                if content.strip():
                    turn.staged.append(Message.assistant(content))
                turn.stream.done(content)
                turn.finish(TurnState.TEXT_TERMINAL, TextArtifact(stream=turn.stream))
            case CapabilityCall(name=name, raw_arguments=raw_arguments, call_id=call_id):
                logger.info("turn.event capability name={} call_id={}", name, call_id)
                try:
                    artifact = await self._dispatcher.dispatch(name, raw_arguments, call_id)
                except DispatchError as exc:
                    turn.fail(exc)
                    return
                turn.staged.append(
                    Message(
                        role="assistant",
                        content="",
                        tool_calls=(ToolCall(id=call_id, name=name, arguments=_arguments_text(raw_arguments)),),
                    )
                )
                turn.staged.append(
                    Message(role="tool", tool_call_id=call_id, tool_name=name, content=_tool_result_content(artifact))
                )
                turn.stream.done("")
                turn.finish(TurnState.TOOL_TERMINAL, artifact)
            case StreamError(error=error):
                logger.warning("turn.event stream_error={}", error)
                turn.fail(error)
            case _:
                logger.warning("turn.event.ignored type={}", type(event).__name__)

    def _abandon(self, turn: _Turn) -> None:
        turn.cancelled = True
        turn.stream.done()
        if turn.terminal:
            return
        if turn.partial_text.strip():
            turn.staged.append(Message.assistant(turn.partial_text))
        turn.fail(asyncio.CancelledError("turn cancelled"))

    async def _commit(self, turn: _Turn) -> Artifact:
        await self._store.commit(turn.messages_to_commit())
        assert turn.artifact is not None
        turn.state = TurnState.DONE
        logger.info("turn.commit staged={}", len(turn.staged))
        return turn.artifact


async def _aclose(events: AsyncIterator[ModelEvent]) -> None:
    aclose = getattr(events, "aclose", None)
    if aclose is not None:
        await aclose()
