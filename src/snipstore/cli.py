"""CLI for snipstore."""

import logging
import re
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from snipstore import __version__
from snipstore.config import StorageConfig
from snipstore.errors import ImportFailedError, SnippetStoreError
from snipstore.manager import SnippetManager
from snipstore.models import ConflictStrategy, Snippet
from snipstore.query import DateRange, SearchQuery

app = typer.Typer(
    name="snipstore",
    help="Store, search and share personal code snippets.",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)


def version_callback(value: bool) -> None:
    if value:
        console.print(f"snipstore {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    ctx: typer.Context,
    store: Annotated[
        Path | None, typer.Option("--store", "-s", help="Snippets file to use")
    ] = None,
    fmt: Annotated[
        str, typer.Option("--format", "-f", help="Storage format (json or yaml)")
    ] = "json",
    workspace: Annotated[
        bool, typer.Option("--workspace", "-w", help="Use the store in the current directory")
    ] = False,
    no_backup: Annotated[
        bool, typer.Option("--no-backup", help="Disable automatic backups")
    ] = False,
    verbose: Annotated[bool, typer.Option("--verbose", help="Show debug logging")] = False,
    version: Annotated[
        bool | None,
        typer.Option("--version", "-v", callback=version_callback, is_eager=True),
    ] = None,
) -> None:
    """Manage a personal snippet store."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )

    location = "workspace" if workspace else "global"
    path = str(store.expanduser().absolute()) if store else None
    result = StorageConfig.from_settings(
        {
            "storageLocation": location,
            "storagePath": path,
            "storageFormat": fmt,
            "autoBackup": not no_backup,
        }
    )
    if not result.success:
        err_console.print(f"[red]Error: {result.error.message}[/red]")
        raise typer.Exit(1)
    ctx.obj = result.value


def open_manager(ctx: typer.Context) -> SnippetManager:
    try:
        return SnippetManager(ctx.obj)
    except SnippetStoreError as e:
        fail(e)


def fail(error: SnippetStoreError) -> None:
    err_console.print(f"[red]Error: {error.message}[/red]")
    for detail in getattr(error, "errors", [])[1:]:
        err_console.print(f"[red]  - {detail}[/red]")
    if error.solution:
        err_console.print(f"[dim]{error.solution}[/dim]")
    raise typer.Exit(1)


def parse_when(value: str | None) -> datetime | None:
    """Parse a date option into a UTC-aware datetime.

    Supports relative offsets ("2h", "7d", "1w", "3m", "1y") and ISO dates.
    """
    if value is None:
        return None

    value = value.strip().lower()
    match = re.match(r"^(\d+)([hdwmy])$", value)
    if match:
        amount = int(match.group(1))
        days = {"h": amount / 24, "d": amount, "w": amount * 7, "m": amount * 30, "y": amount * 365}
        return datetime.now(tz=timezone.utc) - timedelta(days=days[match.group(2)])

    try:
        dt = datetime.fromisoformat(value if "t" in value else value + "T00:00:00")
    except ValueError:
        raise typer.BadParameter(f"Invalid date: {value}") from None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def print_snippet_table(snippets: list[Snippet]) -> None:
    table = Table(show_lines=False)
    table.add_column("ID", style="dim", no_wrap=True)
    table.add_column("Title", style="cyan")
    table.add_column("Language", style="green")
    table.add_column("Tags")
    table.add_column("Uses", justify="right")
    for snippet in snippets:
        table.add_row(
            snippet.id[:8],
            snippet.title,
            snippet.language,
            ", ".join(snippet.tags),
            str(snippet.usage_count),
        )
    console.print(table)


def resolve_id(manager: SnippetManager, snippet_id: str) -> str:
    """Accept a full id or a unique prefix (8+ chars as shown in listings)."""
    if manager.get_snippet(snippet_id) is not None:
        return snippet_id
    matches = [s.id for s in manager.list_snippets() if s.id.startswith(snippet_id)]
    if len(matches) == 1:
        return matches[0]
    err_console.print(f"[red]Snippet not found: {snippet_id}[/red]")
    raise typer.Exit(1)


@app.command()
def add(
    ctx: typer.Context,
    title: Annotated[str, typer.Option("--title", "-t", help="Snippet title")],
    language: Annotated[str, typer.Option("--language", "-l", help="Language name")],
    code: Annotated[str | None, typer.Option("--code", "-c", help="Snippet code")] = None,
    from_file: Annotated[
        Path | None, typer.Option("--from-file", help="Read the code from a file")
    ] = None,
    description: Annotated[str, typer.Option("--description", "-d")] = "",
    tags: Annotated[list[str] | None, typer.Option("--tag", help="Tag (can repeat)")] = None,
    category: Annotated[str | None, typer.Option("--category")] = None,
    prefix: Annotated[str | None, typer.Option("--prefix", help="Editor trigger prefix")] = None,
) -> None:
    """Add a new snippet."""
    if from_file is not None:
        code = from_file.read_text(encoding="utf-8")
    manager = open_manager(ctx)
    try:
        snippet = manager.create_snippet(
            {
                "title": title,
                "language": language,
                "code": code or "",
                "description": description,
                "tags": tags or [],
                "category": category,
                "prefix": prefix,
            }
        )
    except SnippetStoreError as e:
        fail(e)
    console.print(f"[green]Added snippet {snippet.id}[/green]")


@app.command()
def show(
    ctx: typer.Context,
    snippet_id: Annotated[str, typer.Argument(help="Snippet ID (or unique prefix)")],
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show one snippet."""
    manager = open_manager(ctx)
    snippet = manager.get_snippet(resolve_id(manager, snippet_id))
    if json_output:
        console.print_json(data=snippet.to_dict())
        return
    subtitle = ", ".join(snippet.tags) if snippet.tags else None
    console.print(
        Panel(
            Syntax(snippet.code, snippet.language, theme="ansi_dark", word_wrap=True),
            title=f"[bold]{snippet.title}[/bold] ({snippet.language})",
            subtitle=subtitle,
        )
    )
    if snippet.description:
        console.print(snippet.description)
    console.print(
        f"[dim]id {snippet.id} · used {snippet.usage_count}x · "
        f"updated {snippet.updated_at.isoformat()}[/dim]"
    )


@app.command("list")
def list_snippets(
    ctx: typer.Context,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """List all snippets."""
    snippets = open_manager(ctx).list_snippets()
    if json_output:
        console.print_json(data={"snippets": [s.to_dict() for s in snippets]})
    elif not snippets:
        console.print("[yellow]No snippets stored.[/yellow]")
    else:
        print_snippet_table(snippets)


@app.command()
def search(
    ctx: typer.Context,
    text: Annotated[str | None, typer.Argument(help="Text to look for")] = None,
    language: Annotated[str | None, typer.Option("--language", "-l")] = None,
    tags: Annotated[
        list[str] | None, typer.Option("--tag", help="Required tag (can repeat)")
    ] = None,
    category: Annotated[str | None, typer.Option("--category")] = None,
    since: Annotated[
        str | None, typer.Option("--since", help="Created after (e.g., 1w, 30d, 2024-01-01)")
    ] = None,
    until: Annotated[
        str | None, typer.Option("--until", help="Created before (e.g., 1d, 2024-06-30)")
    ] = None,
    sort: Annotated[
        str | None, typer.Option("--sort", help="Sort by title, created_at or usage_count")
    ] = None,
    desc: Annotated[bool, typer.Option("--desc", help="Sort descending")] = False,
    limit: Annotated[int | None, typer.Option("--limit", "-n", help="Number of results")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Search snippets; all given filters must match."""
    start, end = parse_when(since), parse_when(until)
    try:
        date_range = None
        if start or end:
            date_range = DateRange(
                start or datetime.min.replace(tzinfo=timezone.utc),
                end or datetime.now(tz=timezone.utc),
            )
        query = SearchQuery(
            text=text,
            language=language,
            tags=tags or None,
            category=category,
            date_range=date_range,
            sort_by=sort,
            sort_order=("desc" if desc else "asc") if sort else None,
        )
        results = open_manager(ctx).search_snippets(query)
    except SnippetStoreError as e:
        fail(e)

    if limit is not None:
        results = results[:limit]
    if json_output:
        console.print_json(
            data={
                "query": query.to_dict(),
                "results": [s.to_dict() for s in results],
                "total_results": len(results),
            }
        )
    elif not results:
        console.print("[yellow]No matching snippets.[/yellow]")
    else:
        print_snippet_table(results)


@app.command()
def edit(
    ctx: typer.Context,
    snippet_id: Annotated[str, typer.Argument(help="Snippet ID (or unique prefix)")],
    title: Annotated[str | None, typer.Option("--title", "-t")] = None,
    language: Annotated[str | None, typer.Option("--language", "-l")] = None,
    code: Annotated[str | None, typer.Option("--code", "-c")] = None,
    from_file: Annotated[Path | None, typer.Option("--from-file")] = None,
    description: Annotated[str | None, typer.Option("--description", "-d")] = None,
    tags: Annotated[
        list[str] | None, typer.Option("--tag", help="Replace tags (can repeat)")
    ] = None,
    category: Annotated[str | None, typer.Option("--category")] = None,
) -> None:
    """Change fields of a snippet."""
    if from_file is not None:
        code = from_file.read_text(encoding="utf-8")
    changes = {
        name: value
        for name, value in {
            "title": title,
            "language": language,
            "code": code,
            "description": description,
            "tags": tags,
            "category": category,
        }.items()
        if value is not None
    }
    if not changes:
        err_console.print("[yellow]Nothing to change.[/yellow]")
        raise typer.Exit(1)

    manager = open_manager(ctx)
    try:
        snippet = manager.update_snippet(resolve_id(manager, snippet_id), changes)
    except SnippetStoreError as e:
        fail(e)
    console.print(f"[green]Updated snippet {snippet.id}[/green]")


@app.command()
def delete(
    ctx: typer.Context,
    snippet_id: Annotated[str, typer.Argument(help="Snippet ID (or unique prefix)")],
) -> None:
    """Delete a snippet."""
    manager = open_manager(ctx)
    try:
        manager.delete_snippet(resolve_id(manager, snippet_id))
    except SnippetStoreError as e:
        fail(e)
    console.print("[green]Deleted.[/green]")


@app.command()
def use(
    ctx: typer.Context,
    snippet_id: Annotated[str, typer.Argument(help="Snippet ID (or unique prefix)")],
) -> None:
    """Print a snippet's code and count the use."""
    manager = open_manager(ctx)
    try:
        snippet = manager.increment_usage(resolve_id(manager, snippet_id))
    except SnippetStoreError as e:
        fail(e)
    typer.echo(snippet.code)


@app.command("import")
def import_snippets(
    ctx: typer.Context,
    source: Annotated[Path, typer.Argument(help="JSON or YAML file to import")],
    strategy: Annotated[
        ConflictStrategy,
        typer.Option("--strategy", help="What to do when a snippet already exists"),
    ] = ConflictStrategy.SKIP,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Import snippets from a file."""
    manager = open_manager(ctx)
    try:
        report = manager.import_from_file(source, strategy)
    except ImportFailedError as e:
        err_console.print(
            f"[red]Import failed after {e.report.processed} snippets: {e.message}[/red]"
        )
        raise typer.Exit(1)
    except SnippetStoreError as e:
        fail(e)

    if json_output:
        console.print_json(data=report.to_dict())
        return
    console.print(
        f"Imported: {report.imported}, skipped: {report.skipped}, errors: {report.failed}"
    )
    for conflict in report.conflicts:
        line = f"  [cyan]{conflict.title}[/cyan]: {conflict.resolution.value} ({conflict.reason})"
        if conflict.new_title:
            line += f" -> {conflict.new_title}"
        console.print(line)
    for error in report.errors:
        console.print(f"  [red]{error}[/red]")


@app.command()
def export(
    ctx: typer.Context,
    target: Annotated[Path, typer.Argument(help="File to write (.json, .yaml or .yml)")],
    language: Annotated[str | None, typer.Option("--language", "-l")] = None,
    tags: Annotated[list[str] | None, typer.Option("--tag")] = None,
    category: Annotated[str | None, typer.Option("--category")] = None,
) -> None:
    """Export snippets to a file."""
    manager = open_manager(ctx)
    try:
        query = SearchQuery(language=language, tags=tags or None, category=category)
        count = manager.export_to_file(target, query)
    except SnippetStoreError as e:
        fail(e)
    console.print(f"[green]Exported {count} snippets to {target}[/green]")


@app.command()
def stats(
    ctx: typer.Context,
    top: Annotated[int, typer.Option("--top", "-n", help="How many top snippets to show")] = 5,
    json_output: Annotated[bool, typer.Option("--json", help="Output as JSON")] = False,
) -> None:
    """Show usage statistics."""
    usage = open_manager(ctx).get_usage_stats(top_n=top)
    if json_output:
        console.print_json(data=usage.to_dict())
        return
    console.print(f"Snippets: {usage.total_snippets}")
    console.print(f"Total uses: {usage.total_usage} (avg {usage.average_usage:.1f})")
    if usage.most_used:
        console.print("\n[bold]Most used:[/bold]")
        for snippet in usage.most_used:
            console.print(f"  [cyan]{snippet.title}[/cyan]: {snippet.usage_count}")
    if usage.language_distribution:
        console.print("\n[bold]Languages:[/bold]")
        for language, count in usage.language_distribution.items():
            console.print(f"  {language}: {count}")


@app.command()
def backup(ctx: typer.Context) -> None:
    """Write a backup of the store now."""
    manager = open_manager(ctx)
    try:
        path = manager.create_backup()
    except SnippetStoreError as e:
        fail(e)
    console.print(f"[green]Backup written to {path}[/green]")


@app.command()
def backups(ctx: typer.Context) -> None:
    """List existing backups, newest first."""
    manager = open_manager(ctx)
    try:
        paths = manager.list_backups()
    except SnippetStoreError as e:
        fail(e)
    if not paths:
        console.print("[yellow]No backups found.[/yellow]")
    for path in paths:
        console.print(str(path))


if __name__ == "__main__":
    app()
