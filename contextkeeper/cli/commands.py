"""CLI commands for contextkeeper."""

import json
import sys
from pathlib import Path
from typing import Any

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from contextkeeper import __logo__, __version__

app = typer.Typer(
    name="contextkeeper",
    help=f"{__logo__} contextkeeper - conversation context-window manager",
    no_args_is_help=True,
)

console = Console()


def version_callback(value: bool):
    if value:
        console.print(f"{__logo__} contextkeeper v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        None, "--version", "-v", callback=version_callback, is_eager=True
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Show compaction debug logs"),
):
    """contextkeeper - conversation context-window manager."""
    from contextkeeper.config.loader import load_config

    level = "DEBUG" if verbose else load_config().logging.level
    logger.remove()
    logger.add(sys.stderr, level=level)


# ============================================================================
# Helpers
# ============================================================================


def _build_manager(max_tokens: int | None):
    from contextkeeper.compaction.manager import ContextManager
    from contextkeeper.config.loader import load_config

    context = load_config().context
    return ContextManager(
        max_tokens=max_tokens if max_tokens is not None else context.max_tokens,
        config=context.to_compaction_config(),
    )


def _read_transcript(path: Path) -> dict[str, Any]:
    """Read a transcript file: a list of messages or an exported state dict."""
    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid JSON in {path}: {e}[/red]")
        raise typer.Exit(1)

    if isinstance(data, list):
        return {"messages": data, "summaries": []}
    if isinstance(data, dict):
        if not isinstance(data.get("messages") or [], list):
            console.print("[red]Invalid transcript: 'messages' must be a list[/red]")
            raise typer.Exit(1)
        return data
    console.print("[red]Transcript must be a list of messages or an object with 'messages'[/red]")
    raise typer.Exit(1)


def _print_stats(manager) -> None:
    stats = manager.get_stats()
    table = Table(title="Context")
    table.add_column("Metric", style="cyan")
    table.add_column("Value")
    table.add_row("Tokens", str(stats.tokens))
    table.add_row("Max tokens", str(stats.max_tokens))
    table.add_row("Usage", f"{stats.usage_percent}%")
    table.add_row("Messages", str(stats.message_count))
    table.add_row("Summaries", str(stats.summary_count))
    console.print(table)


def _print_messages(manager) -> None:
    table = Table(title="Messages")
    table.add_column("#", style="dim")
    table.add_column("Role", style="cyan")
    table.add_column("Content")
    for index, message in enumerate(manager.get_messages()):
        content = message.content if len(message.content) <= 120 else message.content[:117] + "..."
        table.add_row(str(index), message.role, escape(content))
    console.print(table)


# ============================================================================
# Commands
# ============================================================================


@app.command()
def estimate(
    text: str = typer.Argument(help="Text to estimate"),
):
    """Estimate the token footprint of a piece of text."""
    from contextkeeper.compaction.estimator import estimate_tokens

    console.print(f"{estimate_tokens(text)} tokens")


@app.command()
def replay(
    path: Path = typer.Argument(help="JSON file with chat messages"),
    max_tokens: int | None = typer.Option(None, "--max-tokens", "-m", help="Token ceiling (default from config)"),
    system: str = typer.Option("", "--system", "-s", help="System prompt"),
    show: bool = typer.Option(False, "--show", help="Print the final message list"),
):
    """Feed a transcript through the manager, compacting as it grows."""
    from contextkeeper.compaction.types import message_from_dict

    state = _read_transcript(path)
    manager = _build_manager(max_tokens)
    if system:
        manager.set_system_prompt(system)

    compactions = 0
    for item in state.get("messages") or []:
        try:
            message = message_from_dict(item)
        except ValueError as e:
            console.print(f"[red]Invalid message: {e}[/red]")
            raise typer.Exit(1)
        if manager.add_message(message).triggered:
            compactions += 1

    console.print(f"[green]✓[/green] Replayed {len(state.get('messages') or [])} message(s), "
                  f"{compactions} compaction pass(es)")
    _print_stats(manager)
    if show:
        _print_messages(manager)


@app.command()
def manage(
    path: Path = typer.Argument(help="JSON file with chat messages or exported state"),
    action: str = typer.Argument(help="summarize | clear_old | clear_tool_results | keep_essential"),
    keep_last: int | None = typer.Option(None, "--keep-last", "-k", help="Messages to keep"),
    max_tokens: int | None = typer.Option(None, "--max-tokens", "-m", help="Token ceiling (default from config)"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the resulting state here"),
):
    """Run one management action on a saved transcript."""
    state = _read_transcript(path)
    manager = _build_manager(max_tokens)
    try:
        manager.load_state(state)
    except ValueError as e:
        console.print(f"[red]Invalid transcript: {e}[/red]")
        raise typer.Exit(1)

    options = {"keep_last": keep_last} if keep_last is not None else {}
    result = manager.manage(action, options)
    if result.ok:
        console.print(f"[green]✓[/green] {escape(result.message)}")
    else:
        console.print(f"[red]{escape(result.message)}[/red]")

    _print_stats(manager)
    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps(manager.export_state(), ensure_ascii=False, indent=2), encoding="utf-8")
        console.print(f"Saved to {output}")

    if not result.ok:
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
