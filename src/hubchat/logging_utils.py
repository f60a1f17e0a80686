"""Runtime logging helpers."""

from __future__ import annotations

import contextlib
import os
import sys
from collections.abc import Iterator
from contextvars import ContextVar
from logging import Handler
from typing import Literal

import loguru
from loguru import logger
from rich import get_console
from rich.logging import RichHandler

LogProfile = Literal["default", "chat"]

_DEFAULT_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level:<6} | {name}:{function}:{line} | "
    "{extra[conversation]} | {message}"
)
_CONFIGURED_PROFILE: LogProfile | None = None
_conversation_context: ContextVar[str] = ContextVar("conversation", default="-")


def current_conversation() -> str:
    """Get the id of the conversation whose turn is running, or "-"."""
    return _conversation_context.get()


@contextlib.contextmanager
def bind_conversation(conversation_id: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with the conversation id."""
    token = _conversation_context.set(conversation_id)
    try:
        yield
    finally:
        _conversation_context.reset(token)


def _inject_context(record: loguru.Record) -> None:
    record["extra"]["conversation"] = current_conversation()


def _build_chat_handler() -> Handler:
    return RichHandler(
        console=get_console(),
        show_level=True,
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=False,
    )


def configure_logging(*, profile: LogProfile = "default", level: str | None = None) -> None:
    """Configure process-level logging once per profile."""
    global _CONFIGURED_PROFILE
    if profile == _CONFIGURED_PROFILE:
        return

    resolved_level = (level or os.getenv("HUBCHAT_LOG_LEVEL", "INFO")).upper()
    logger.remove()
    if profile == "chat":
        logger.add(
            _build_chat_handler(),
            level=resolved_level,
            format="{message}",
            backtrace=False,
            diagnose=False,
        )
    else:
        logger.add(
            sys.stderr,
            level=resolved_level,
            format=_DEFAULT_FORMAT,
            backtrace=False,
            diagnose=False,
        )
    logger.configure(patcher=_inject_context)
    _CONFIGURED_PROFILE = profile
