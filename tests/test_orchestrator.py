from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from typing import Any, TypeAlias

import pytest
from pydantic import BaseModel

from hubchat.capabilities.registry import CapabilityDescriptor, CapabilityRegistry, capability
from hubchat.conversation import ConversationStore
from hubchat.errors import ClosedStreamError
from hubchat.model.base import CapabilityCall, ModelEvent, StreamError, TextDelta
from hubchat.orchestrator import TurnOrchestrator
from hubchat.streaming import StreamableValue
from hubchat.types import (
    CallMetadata,
    CapabilityArtifact,
    ConversationState,
    ErrorArtifact,
    Message,
    TextArtifact,
)

ScriptItem: TypeAlias = ModelEvent | BaseException | asyncio.Event


@dataclass
class FakeModelClient:
    scripts: list[list[ScriptItem]]
    calls: list[tuple[str, tuple[Message, ...], list[str]]] = field(default_factory=list)
    closed: int = 0

    def stream(
        self,
        system_prompt: str,
        messages: Sequence[Message],
        capabilities: Sequence[CapabilityDescriptor],
    ) -> AsyncIterator[ModelEvent]:
        self.calls.append((system_prompt, tuple(messages), [item.name for item in capabilities]))
        return self._iterate(self.scripts.pop(0))

    async def _iterate(self, script: list[ScriptItem]) -> AsyncIterator[ModelEvent]:
        try:
            for item in script:
                if isinstance(item, asyncio.Event):
                    await item.wait()
                    continue
                if isinstance(item, BaseException):
                    raise item
                yield item
                await asyncio.sleep(0)
        finally:
            self.closed += 1


class UsageInput(BaseModel):
    type: str


@dataclass
class Harness:
    model: FakeModelClient
    store: ConversationStore
    orchestrator: TurnOrchestrator
    commits: list[tuple[ConversationState, bool]]
    handler_calls: list[CallMetadata]


def _registry(handler_calls: list[CallMetadata]) -> CapabilityRegistry:
    @capability("viewUsage", description="view usage", input_model=UsageInput)
    async def view_usage(params: UsageInput, meta: CallMetadata) -> CapabilityArtifact:
        handler_calls.append(meta)
        return CapabilityArtifact(name=meta.name, payload={"view": "usage", "type": params.type})

    @capability("explode", description="always fails", input_model=UsageInput)
    async def explode(params: UsageInput, meta: CallMetadata) -> Any:
        handler_calls.append(meta)
        raise RuntimeError("meter unreachable")

    return CapabilityRegistry([view_usage, explode])


def _harness(*scripts: list[ScriptItem], messages: Sequence[Message] = (), **store_kwargs: Any) -> Harness:
    commits: list[tuple[ConversationState, bool]] = []
    handler_calls: list[CallMetadata] = []

    def on_commit(state: ConversationState, done: bool) -> None:
        commits.append((state, done))

    model = FakeModelClient(scripts=list(scripts))
    store = ConversationStore("conv-test", messages, on_commit=on_commit, **store_kwargs)
    orchestrator = TurnOrchestrator(
        model=model,
        registry=_registry(handler_calls),
        store=store,
        system_prompt="be brief",
    )
    return Harness(model, store, orchestrator, commits, handler_calls)


def _history() -> list[Message]:
    return [Message.user("hi"), Message.assistant("hello")]


HELLO_SCRIPT: list[ScriptItem] = [
    TextDelta("h"),
    TextDelta("he"),
    TextDelta("hello"),
    TextDelta("hello", is_final=True),
]


@pytest.mark.asyncio
async def test_text_turn_streams_and_commits_assistant_message() -> None:
    harness = _harness(HELLO_SCRIPT)

    artifact = await harness.orchestrator.send_message("say hello")

    assert isinstance(artifact, TextArtifact)
    assert artifact.kind == "text"
    assert artifact.stream.closed is True
    assert artifact.stream.value == "hello"
    assert harness.store.state.messages[-1] == Message(role="assistant", content="hello")
    assert len(harness.commits) == 1
    assert harness.commits[0][1] is True


@pytest.mark.asyncio
async def test_model_receives_system_prompt_history_and_capabilities() -> None:
    harness = _harness(HELLO_SCRIPT, messages=_history())

    await harness.orchestrator.send_message("again")

    [(system_prompt, messages, capabilities)] = harness.model.calls
    assert system_prompt == "be brief"
    assert messages == (*_history(), Message.user("again"))
    assert capabilities == ["explode", "viewUsage"]


@pytest.mark.asyncio
async def test_live_subscriber_observes_text_while_streaming() -> None:
    harness = _harness(HELLO_SCRIPT)

    handle = harness.orchestrator.start_turn("say hello")
    current, updates = handle.stream.subscribe()
    seen = [current, *[value async for value in updates]]
    artifact = await handle.result()

    assert isinstance(artifact, TextArtifact)
    assert artifact.stream is handle.stream
    assert seen[0] == ""
    assert seen[-1] == "hello"
    assert seen.count("hello") == 1


@pytest.mark.asyncio
async def test_blank_final_text_commits_no_assistant_message() -> None:
    harness = _harness([TextDelta(" ", is_final=True)])

    artifact = await harness.orchestrator.send_message("anyone?")

    assert isinstance(artifact, TextArtifact)
    assert artifact.stream.closed is True
    assert harness.store.state.messages == (Message.user("anyone?"),)


@pytest.mark.asyncio
async def test_capability_turn_returns_capability_artifact() -> None:
    harness = _harness([CapabilityCall("viewUsage", '{"type": "gas"}', "call-1")])

    handle = harness.orchestrator.start_turn("gas usage?")
    artifact = await handle.result()

    assert artifact == CapabilityArtifact(name="viewUsage", payload={"view": "usage", "type": "gas"})
    assert handle.stream.closed is True
    assert handle.stream.value == ""
    assert harness.handler_calls == [CallMetadata(name="viewUsage", call_id="call-1")]

    user, call, result = harness.store.state.messages
    assert user == Message.user("gas usage?")
    assert call.role == "assistant"
    assert [(item.id, item.name, item.arguments) for item in call.tool_calls] == [
        ("call-1", "viewUsage", '{"type": "gas"}')
    ]
    assert result.role == "tool"
    assert result.tool_call_id == "call-1"
    assert result.content == {"view": "usage", "type": "gas"}
    assert len(harness.commits) == 1


@pytest.mark.asyncio
async def test_unknown_capability_yields_non_recoverable_error_and_keeps_history() -> None:
    harness = _harness([CapabilityCall("doThings", "{}", "call-1")], messages=_history())

    artifact = await harness.orchestrator.send_message("do things")

    assert isinstance(artifact, ErrorArtifact)
    assert artifact.kind == "error"
    assert artifact.recoverable is False
    assert "doThings" in artifact.message
    assert harness.store.state.messages == tuple(_history())
    assert len(harness.commits) == 1


@pytest.mark.asyncio
async def test_invalid_arguments_never_invoke_handler() -> None:
    harness = _harness([CapabilityCall("viewUsage", '{"kind": "gas"}', "call-1")])

    artifact = await harness.orchestrator.send_message("usage")

    assert isinstance(artifact, ErrorArtifact)
    assert artifact.recoverable is False
    assert "type" in artifact.message
    assert harness.handler_calls == []


@pytest.mark.asyncio
async def test_handler_failure_is_non_recoverable() -> None:
    harness = _harness([CapabilityCall("explode", '{"type": "water"}', "call-1")])

    artifact = await harness.orchestrator.send_message("water")

    assert isinstance(artifact, ErrorArtifact)
    assert artifact.recoverable is False
    assert "meter unreachable" in artifact.message
    assert len(harness.handler_calls) == 1


@pytest.mark.asyncio
async def test_stream_error_keeps_partial_text() -> None:
    harness = _harness([TextDelta("the patio"), StreamError("connection reset")], messages=_history())

    handle = harness.orchestrator.start_turn("status?")
    artifact = await handle.result()

    assert isinstance(artifact, ErrorArtifact)
    assert artifact.recoverable is True
    assert artifact.message == "error: connection reset"
    assert artifact.partial_text == "the patio"
    assert "the patio" in artifact.content
    assert handle.stream.closed is True
    assert handle.stream.value == "the patio"
    assert harness.store.state.messages == tuple(_history())


@pytest.mark.asyncio
async def test_api_key_failure_maps_to_configuration_hint() -> None:
    harness = _harness([StreamError("Incorrect API key provided")])

    artifact = await harness.orchestrator.send_message("hi")

    assert isinstance(artifact, ErrorArtifact)
    assert "OPENAI_API_KEY" in artifact.message


@pytest.mark.asyncio
async def test_exception_from_model_stream_becomes_error_artifact() -> None:
    harness = _harness([TextDelta("par"), ConnectionError("socket closed")])

    artifact = await harness.orchestrator.send_message("hi")

    assert isinstance(artifact, ErrorArtifact)
    assert artifact.recoverable is True
    assert artifact.partial_text == "par"
    assert len(harness.commits) == 1


@pytest.mark.asyncio
async def test_stream_without_terminal_event_fails() -> None:
    harness = _harness([TextDelta("dangling")])

    artifact = await harness.orchestrator.send_message("hi")

    assert isinstance(artifact, ErrorArtifact)
    assert "terminal event" in artifact.message
    assert len(harness.commits) == 1


@pytest.mark.asyncio
async def test_events_after_terminal_are_ignored() -> None:
    harness = _harness([
        TextDelta("done", is_final=True),
        CapabilityCall("viewUsage", '{"type": "gas"}', "call-1"),
    ])

    artifact = await harness.orchestrator.send_message("hi")

    assert isinstance(artifact, TextArtifact)
    assert harness.handler_calls == []
    assert harness.model.closed == 1
    assert harness.store.state.messages[-1] == Message.assistant("done")


@pytest.mark.asyncio
async def test_trailing_blank_assistant_messages_are_not_sent() -> None:
    messages = [*_history(), Message.assistant(""), Message.assistant("  ")]
    harness = _harness(HELLO_SCRIPT, messages=messages)

    await harness.orchestrator.send_message("retry")

    [(_, sent, _)] = harness.model.calls
    assert sent == (*_history(), Message.user("retry"))


@pytest.mark.asyncio
async def test_committed_history_feeds_next_turn_in_order() -> None:
    harness = _harness(HELLO_SCRIPT, [TextDelta("bye", is_final=True)])

    await harness.orchestrator.send_message("first")
    committed = harness.store.state.messages
    await harness.orchestrator.send_message("second")

    second_snapshot = harness.model.calls[1][1]
    assert second_snapshot == (*committed, Message.user("second"))
    assert [message.content for message in harness.store.state.messages] == ["first", "hello", "second", "bye"]
    assert len(harness.commits) == 2


@pytest.mark.asyncio
async def test_update_on_closed_stream_propagates() -> None:
    harness = _harness(HELLO_SCRIPT)
    stream: StreamableValue[str] = StreamableValue("")
    stream.done()

    with pytest.raises(ClosedStreamError):
        await harness.orchestrator.run("hi", stream=stream)


@pytest.mark.asyncio
async def test_busy_conversation_is_rejected_with_reject_policy() -> None:
    gate = asyncio.Event()
    harness = _harness(
        [TextDelta("slow"), gate, TextDelta("slow", is_final=True)],
        busy_policy="reject",
    )

    first = harness.orchestrator.start_turn("one")
    await asyncio.sleep(0)
    second = await harness.orchestrator.send_message("two")
    gate.set()
    first_artifact = await first.result()

    assert isinstance(second, ErrorArtifact)
    assert second.recoverable is True
    assert isinstance(first_artifact, TextArtifact)
    assert len(harness.commits) == 1
    assert [message.content for message in harness.store.state.messages] == ["one", "slow"]


@pytest.mark.asyncio
async def test_concurrent_turns_are_serialized_with_wait_policy() -> None:
    harness = _harness([TextDelta("a", is_final=True)], [TextDelta("b", is_final=True)])

    first, second = await asyncio.gather(
        harness.orchestrator.send_message("one"),
        harness.orchestrator.send_message("two"),
    )

    assert isinstance(first, TextArtifact)
    assert isinstance(second, TextArtifact)
    assert [message.content for message in harness.store.state.messages] == ["one", "a", "two", "b"]


@pytest.mark.asyncio
async def test_cancelled_turn_closes_stream_and_commits_partial_text() -> None:
    never = asyncio.Event()
    harness = _harness([TextDelta("partial"), never])

    handle = harness.orchestrator.start_turn("long answer")
    while handle.stream.value != "partial":
        await asyncio.sleep(0)
    handle.cancel()

    with pytest.raises(asyncio.CancelledError):
        await handle.result()

    assert handle.stream.closed is True
    assert handle.stream.value == "partial"
    assert harness.store.state.messages == (Message.user("long answer"), Message.assistant("partial"))
    assert len(harness.commits) == 1


@pytest.mark.asyncio
async def test_undecodable_capability_arguments_fail_the_turn() -> None:
    harness = _harness([CapabilityCall("viewUsage", b"\xff\xfe", "call-1")], messages=_history())

    artifact = await harness.orchestrator.send_message("usage")

    assert isinstance(artifact, ErrorArtifact)
    assert artifact.recoverable is False
    assert "UTF-8" in artifact.message
    assert harness.handler_calls == []
    assert harness.store.state.messages == tuple(_history())
    assert len(harness.commits) == 1


@pytest.mark.asyncio
async def test_programming_error_leaves_no_orphan_user_message() -> None:
    harness = _harness(HELLO_SCRIPT, [TextDelta("fine", is_final=True)], messages=_history())
    stream: StreamableValue[str] = StreamableValue("")
    stream.done()

    with pytest.raises(ClosedStreamError):
        await harness.orchestrator.run("first", stream=stream)
    assert harness.store.snapshot() == tuple(_history())

    await harness.orchestrator.send_message("second")

    assert harness.model.calls[1][1] == (*_history(), Message.user("second"))
    assert harness.store.state.messages == (*_history(), Message.user("second"), Message.assistant("fine"))


@pytest.mark.asyncio
async def test_turn_cancelled_while_queued_closes_its_stream() -> None:
    gate = asyncio.Event()
    harness = _harness([TextDelta("slow"), gate, TextDelta("slow", is_final=True)])

    first = harness.orchestrator.start_turn("one")
    await asyncio.sleep(0)
    second = harness.orchestrator.start_turn("two")
    await asyncio.sleep(0)
    second.cancel()

    with pytest.raises(asyncio.CancelledError):
        await second.result()
    assert second.stream.closed is True

    gate.set()
    assert isinstance(await first.result(), TextArtifact)
    assert [message.content for message in harness.store.state.messages] == ["one", "slow"]
    assert len(harness.commits) == 1
