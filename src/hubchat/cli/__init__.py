"""hubchat command line interface."""

from __future__ import annotations

import asyncio

import typer
from prompt_toolkit import PromptSession
from prompt_toolkit.patch_stdout import patch_stdout

from hubchat.app import AppRuntime, ConversationRuntime
from hubchat.cli.render import Renderer
from hubchat.config import get_settings
from hubchat.errors import ConfigurationError
from hubchat.logging_utils import configure_logging
from hubchat.orchestrator import TurnHandle

EXIT_COMMANDS = frozenset({"/exit", "/quit"})

app = typer.Typer(
    name="hubchat",
    help="Home automation assistant with streaming replies.",
    add_completion=False,
    rich_markup_mode="rich",
)


@app.command()
def chat(
    model: str | None = typer.Option(None, "--model", help="Override the model name"),
    conversation_id: str | None = typer.Option(None, "--conversation", help="Conversation id to use"),
) -> None:
    """Chat with the assistant."""
    settings = get_settings()
    if model:
        settings = settings.model_copy(update={"model": model})
    configure_logging(profile="chat", level=settings.log_level)
    renderer = Renderer()

    runtime = AppRuntime(settings)
    try:
        conversation = runtime.conversation(conversation_id)
    except ConfigurationError as exc:
        renderer.error(str(exc))
        raise typer.Exit(1) from exc

    renderer.welcome(conversation.conversation_id, settings.model)
    asyncio.run(_chat_loop(conversation, renderer))


@app.command()
def tools() -> None:
    """List the capabilities the model can invoke."""
    runtime = AppRuntime(get_settings())
    Renderer().capabilities(runtime.registry)


async def _chat_loop(conversation: ConversationRuntime, renderer: Renderer) -> None:
    session: PromptSession[str] = PromptSession()
    while True:
        try:
            with patch_stdout():
                raw = await session.prompt_async("you> ")
        except (EOFError, KeyboardInterrupt):
            break
        text = raw.strip()
        if not text:
            continue
        if text in EXIT_COMMANDS:
            break
        await _render_turn(conversation.start_turn(text), renderer)


async def _render_turn(handle: TurnHandle, renderer: Renderer) -> None:
    """Render one turn; Ctrl-C cancels the turn and keeps the chat loop alive."""
    try:
        await renderer.turn(handle)
    except asyncio.CancelledError:
        handle.cancel()
        task = asyncio.current_task()
        # asyncio.run turns SIGINT into a cancel of the main task
        if task is None or task.uncancel() > 0:
            raise
        renderer.error("turn cancelled")


def main() -> None:
    app()
