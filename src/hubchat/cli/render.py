"""CLI renderer for hubchat."""

from __future__ import annotations

from rich.console import Console
from rich.json import JSON
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from hubchat.capabilities import CapabilityRegistry
from hubchat.orchestrator import TurnHandle
from hubchat.types import Artifact, CapabilityArtifact, ErrorArtifact


class Renderer:
    """CLI renderer using Rich for terminal output."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def welcome(self, conversation_id: str, model: str) -> None:
        self.console.print(f"[bold blue]hubchat[/bold blue] [dim]conversation {conversation_id}[/dim]")
        self.console.print(f"[bold]Model:[/bold] [magenta]{model}[/magenta]")
        self.console.print("[dim]Type /exit to leave.[/dim]")

    def error(self, message: str) -> None:
        self.console.print(f"[bold red]Error:[/bold red] {message}")

    def capabilities(self, registry: CapabilityRegistry) -> None:
        table = Table(title="Capabilities")
        table.add_column("name", style="green")
        table.add_column("description")
        for descriptor in registry.descriptors():
            table.add_row(descriptor.name, descriptor.description)
        self.console.print(table)

    async def turn(self, handle: TurnHandle) -> Artifact:
        """Show the text stream live while the turn runs, then its artifact."""
        initial, updates = handle.stream.subscribe()
        with Live(Text(initial), console=self.console, refresh_per_second=12) as live:
            async for value in updates:
                live.update(Text(value))
        artifact = await handle.result()
        self.artifact(artifact)
        return artifact

    def artifact(self, artifact: Artifact) -> None:
        if isinstance(artifact, CapabilityArtifact):
            self.console.print(Panel(JSON.from_data(artifact.payload, default=str), title=artifact.name))
        elif isinstance(artifact, ErrorArtifact):
            style = "yellow" if artifact.recoverable else "red"
            self.console.print(f"[{style}]{artifact.message}[/{style}]")
