"""Events produced by the model collaborator and the client contract."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, TypeAlias

from hubchat.types import Message

if TYPE_CHECKING:
    from hubchat.capabilities.registry import CapabilityDescriptor


@dataclass(frozen=True)
class TextDelta:
    """Accumulated text so far; `is_final` marks the end of the text path."""

    content_so_far: str
    is_final: bool = False


@dataclass(frozen=True)
class CapabilityCall:
    """The model asks to invoke a registered capability."""

    name: str
    raw_arguments: object
    call_id: str


@dataclass(frozen=True)
class StreamError:
    """The model call failed; `error` is an exception or a plain message."""

    error: BaseException | str

    @property
    def message(self) -> str:
        return str(self.error)


ModelEvent: TypeAlias = TextDelta | CapabilityCall | StreamError


class ModelClient(Protocol):
    """Opaque language model: history and capabilities in, event stream out."""

    def stream(
        self,
        system_prompt: str,
        messages: Sequence[Message],
        capabilities: Sequence[CapabilityDescriptor],
    ) -> AsyncIterator[ModelEvent]: ...
