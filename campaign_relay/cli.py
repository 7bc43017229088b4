"""
Campaign Relay CLI

Usage:
    campaign-relay serve --port 4000
    campaign-relay chat --mock-llm
    campaign-relay fields
"""

import asyncio
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .state.campaign_state import CAMPAIGN_FIELDS, FIELD_DESCRIPTIONS

app = typer.Typer(
    name="campaign-relay",
    help="Conversational campaign intake with streaming field extraction",
)
console = Console()


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
    store: Optional[str] = typer.Option(None, help="Session store backend: memory or redis"),
    mock_llm: bool = typer.Option(False, "--mock-llm", help="Use scripted replies (no API costs)"),
):
    """Run the HTTP relay."""
    from .api.server import run_server
    from .config import get_settings

    overrides = {}
    if host:
        overrides["host"] = host
    if port:
        overrides["port"] = port
    if store:
        overrides["store_backend"] = store
    if mock_llm:
        overrides["mock_llm"] = True
    settings = get_settings().model_copy(update=overrides)

    console.print("[bold green]Starting Campaign Relay[/bold green]")
    console.print(f"  Listening: {settings.host}:{settings.port}")
    console.print(f"  Session store: {settings.store_backend}")
    console.print(f"  Mock LLM: {settings.mock_llm}")

    try:
        run_server(settings)
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped[/yellow]")


@app.command()
def chat(
    mock_llm: bool = typer.Option(False, "--mock-llm", help="Use scripted replies (no API costs)"),
):
    """Fill in a campaign interactively from the terminal."""
    from .config import get_settings

    overrides = {"store_backend": "memory"}
    if mock_llm:
        overrides["mock_llm"] = True
    settings = get_settings().model_copy(update=overrides)

    try:
        asyncio.run(_chat_loop(settings))
    except (KeyboardInterrupt, EOFError):
        console.print("\n[yellow]Chat ended[/yellow]")
    except Exception as e:
        console.print(f"\n[red]Chat failed: {e}[/red]")
        raise typer.Exit(code=1)


async def _chat_loop(settings) -> None:
    from .infrastructure.message_schemas import EventType
    from .llm.completion import completion_source_from_settings
    from .relay.service import CampaignChatService
    from .state.session_store import session_store_from_settings

    service = CampaignChatService(
        store=session_store_from_settings(settings),
        source=completion_source_from_settings(settings),
        temperature=settings.llm_temperature,
    )
    session = await service.start_chat()
    console.print(f"[dim]Session {session['sessionId']}[/dim]")
    console.print("Describe your campaign. Ctrl+C to quit.\n")

    async def render(event) -> None:
        if event.type == EventType.TEXT:
            console.print(event.delta, end="", markup=False, highlight=False)
        elif event.type == EventType.STATE:
            names = ", ".join(event.partial_data)
            console.print(f"\n[cyan]captured:[/cyan] {names}  [dim]({len(event.missing_fields)} missing)[/dim]")
        elif event.type == EventType.COMPLETE:
            console.print(f"\n[bold green]{event.message}[/bold green]")
            _display_campaign(event.data)
        elif event.type == EventType.ERROR:
            console.print(f"\n[red]{event.message}[/red]")

    while True:
        message = await asyncio.to_thread(console.input, "\n[bold]you>[/bold] ")
        if not message.strip():
            continue
        console.print("[bold]assistant>[/bold] ", end="")
        outcome = await service.run_turn(session["sessionId"], message, render)
        console.print()
        if outcome.completed:
            return


def _display_campaign(data: dict) -> None:
    """Display the finished campaign as a table."""
    table = Table(title="Campaign")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="green")
    for name, value in data.items():
        if isinstance(value, list):
            value = "\n".join(f"- {item}" for item in value)
        table.add_row(name, "" if value is None else str(value))
    console.print(table)


@app.command()
def fields():
    """List the campaign fields the assistant collects."""
    table = Table(title="Campaign Fields")
    table.add_column("#", style="dim")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Question")
    for index, name in enumerate(CAMPAIGN_FIELDS, start=1):
        table.add_row(str(index), name, FIELD_DESCRIPTIONS.get(name, ""))
    console.print(table)


def main():
    app()


if __name__ == "__main__":
    main()
