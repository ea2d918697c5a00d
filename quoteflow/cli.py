"""Command line interface for QuoteFlow."""

import json
import sys
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import TypeAdapter
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.tree import Tree

from quoteflow.config import settings
from quoteflow.exceptions import QuoteFlowException
from quoteflow.logging_config import setup_logging
from quoteflow.positions.models import PositionNode, PositionRecord, PositionType
from quoteflow.positions.tree import PositionTree, build_tree

app = typer.Typer(
    name="quoteflow",
    help="QuoteFlow - inspect and reorganize quote position trees",
    add_completion=False,
)

console = Console()

_records_adapter = TypeAdapter(List[PositionRecord])


def load_tree(path: Path, max_depth: Optional[int] = None) -> PositionTree:
    """Read a positions export (a list, or an object with ``positions``)."""
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("positions", [])
    return build_tree(_records_adapter.validate_python(data), max_depth=max_depth)


def _label(node: PositionNode, number: str) -> str:
    style = "cyan" if node.type == PositionType.ARTICLE else "bold"
    title = node.title or "[dim](untitled)[/dim]"
    return f"[{style}]{number}[/{style}] {title} [dim]{node.type.value}[/dim]"


def render_tree(tree: PositionTree, title: str = "Positions") -> Tree:
    numbers = tree.numbering()
    root = Tree(f"[green]{title}[/green]")

    def add(branch: Tree, nodes: List[PositionNode]) -> None:
        for node in nodes:
            add(branch.add(_label(node, numbers[node.id])), node.children)

    add(root, tree.roots)
    return root


@app.callback()
def main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Configure logging for every command."""
    if verbose:
        settings.log_level = "DEBUG"
    setup_logging()


@app.command("version")
def version():
    """Show version information."""
    version_info = f"""
QuoteFlow v{settings.app_version}

Environment: {settings.environment}
Max tree depth: {settings.max_tree_depth}
Python: {sys.version}
"""
    console.print(
        Panel(
            version_info.strip(),
            title="Version Information",
            border_style="green",
        )
    )


@app.command("tree")
def show_tree(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Positions JSON file"),
):
    """Show the position tree of an export."""
    try:
        tree = load_tree(path)
    except (QuoteFlowException, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    console.print(render_tree(tree, title=path.name))


@app.command("renumber")
def renumber(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Positions JSON file"),
    as_json: bool = typer.Option(False, "--json", help="Print the reorder payload as JSON"),
):
    """Compute the position numbers of every sibling group."""
    try:
        tree = load_tree(path)
    except (QuoteFlowException, ValueError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    updates = tree.renumber()
    if as_json:
        typer.echo(json.dumps({"positions": [update.to_api() for update in updates]}, indent=2))
        return

    numbers = tree.numbering()
    table = Table(title="Position Numbers")
    table.add_column("Outline", style="cyan")
    table.add_column("ID")
    table.add_column("Number", justify="right")
    table.add_column("Parent")
    for update in updates:
        table.add_row(
            numbers[update.id],
            update.id,
            str(update.position_number),
            update.parent_id or "-",
        )
    console.print(table)


@app.command("move")
def move(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Positions JSON file"),
    drag: List[str] = typer.Option(..., "--drag", "-d", help="ID of a position to move"),
    parent: Optional[str] = typer.Option(None, "--parent", "-p", help="New parent ID (root if omitted)"),
    index: int = typer.Option(0, "--index", "-i", help="Index among the new siblings"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the result as JSON"),
):
    """Move positions and show the resulting tree."""
    try:
        tree = load_tree(path).move(drag, parent, index)
    except (QuoteFlowException, ValueError) as e:
        console.print(f"[red]Move rejected: {e}[/red]")
        raise typer.Exit(1)

    if output is not None:
        records = [record.to_api() for record in tree.to_records()]
        output.write_text(json.dumps(records, indent=2), encoding="utf-8")
        console.print(f"[green]Wrote {len(records)} positions to {output}[/green]")

    console.print(render_tree(tree, title=path.name))


@app.command("config")
def show_config():
    """Show current configuration."""
    config_table = Table(title="QuoteFlow Configuration")
    config_table.add_column("Setting", style="cyan")
    config_table.add_column("Value", style="green")

    config_table.add_row("Environment", settings.environment)
    config_table.add_row("Log level", settings.log_level)
    config_table.add_row("Max tree depth", str(settings.max_tree_depth))
    config_table.add_row("API base URL", settings.api_base_url)
    config_table.add_row("API timeout", f"{settings.api_timeout}s")
    config_table.add_row("Lock resource type", settings.lock_resource_type)

    console.print(config_table)


def main():
    """Main CLI entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
