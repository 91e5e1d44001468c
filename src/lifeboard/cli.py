"""Lifeboard command-line interface."""

import sys
import threading
from datetime import date

import click
import pydantic
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from lifeboard.config import SOURCE_NAMES, load_settings
from lifeboard.context import LifeboardContext
from lifeboard.core.dates import EPOCH, parse_day
from lifeboard.core.errors import ValidationError
from lifeboard.core.logging import Verbosity, setup_logging
from lifeboard.sync.orchestrator import SyncOrchestrator, SyncResult

# Load .env file before reading settings
load_dotenv()

console = Console()


def _open_context(ctx: click.Context) -> LifeboardContext:
    """Load settings and open the store, exiting with a message on bad config."""
    verbosity = Verbosity.VERBOSE if ctx.obj.get("verbose") else Verbosity.DEFAULT
    try:
        settings = load_settings(ctx.obj.get("config_file"))
    except (FileNotFoundError, ValueError, pydantic.ValidationError) as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        sys.exit(2)
    return LifeboardContext.from_settings(settings, verbosity=verbosity, console=console)


def _parse_day_arg(value: str) -> date:
    try:
        return parse_day(value)
    except ValueError as exc:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}") from exc


def _result_table(results: list[SyncResult]) -> Table:
    table = Table(title="Sync results")
    table.add_column("Source", style="bold")
    table.add_column("Status")
    table.add_column("Fetched", justify="right")
    table.add_column("New", justify="right", style="green")
    table.add_column("Updated", justify="right")
    table.add_column("Rejected", justify="right", style="red")
    table.add_column("Watermark")

    for result in results:
        if result.fatal:
            status = f"[red]failed[/red] {result.fatal_error}"
        elif result.skipped:
            status = "[dim]disabled[/dim]"
        elif not result.success:
            status = f"[yellow]not run[/yellow] {result.message or ''}"
        elif result.partial:
            status = "[yellow]partial[/yellow]"
        else:
            status = "[green]ok[/green]"
        watermark = result.watermark_after or result.watermark_before
        table.add_row(
            result.source,
            status,
            str(result.fetched),
            str(result.inserted),
            str(result.updated),
            str(result.rejected),
            _format_watermark(watermark),
        )
    return table


def _format_watermark(value) -> str:
    if value is None:
        return "-"
    if value == EPOCH:
        return "never"
    return value.isoformat(sep=" ", timespec="seconds")


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    default=None,
    help="YAML config file (default: $LIFEBOARD_CONFIG_FILE)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, config_file: str | None) -> None:
    """Lifeboard - personal activity ingestion for a calendar view."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["config_file"] = config_file
    setup_logging(verbose)


@cli.command()
@click.pass_context
def init(ctx: click.Context) -> None:
    """Create the storage directory and database schema."""
    with _open_context(ctx) as context:
        settings = context.settings
        console.print(f"[green]Initialized store:[/] {context.database.engine.url.render_as_string(hide_password=True)}")
        console.print(f"  Storage: {settings.storage_dir}")
        console.print(f"  Timezone: {settings.timezone}")
        enabled = [name for name in SOURCE_NAMES if settings.source(name).enabled]
        console.print(f"  Enabled sources: {', '.join(enabled) or 'none'}")


@cli.command()
@click.argument("source", type=click.Choice(SOURCE_NAMES))
@click.option("--full", is_flag=True, help="Ignore the watermark and fetch everything")
@click.pass_context
def sync(ctx: click.Context, source: str, full: bool) -> None:
    """Sync one source."""
    with _open_context(ctx) as context:
        result = SyncOrchestrator(context).sync_one(source, force_full_sync=full, trigger="cli")
    console.print(_result_table([result]))
    for error in result.fetch_errors:
        console.print(f"[yellow]Fetch stopped early:[/yellow] {error}")
    if result.fatal:
        sys.exit(1)


@cli.command("sync-all")
@click.option("--full", is_flag=True, help="Ignore watermarks and fetch everything")
@click.pass_context
def sync_all(ctx: click.Context, full: bool) -> None:
    """Sync every enabled source concurrently."""
    with _open_context(ctx) as context:
        results = SyncOrchestrator(context).sync_all(force_full_sync=full, trigger="cli")
    console.print(_result_table(list(results.values())))
    if any(result.fatal for result in results.values()):
        sys.exit(1)


@cli.command()
@click.option("--limit", "-n", default=10, show_default=True, help="Recent runs to show")
@click.pass_context
def status(ctx: click.Context, limit: int) -> None:
    """Show watermarks and recent sync runs."""
    from lifeboard.services.calendar import get_watermarks
    from lifeboard.services.runs import get_runs

    with _open_context(ctx) as context, context.database.session() as session:
        watermarks = get_watermarks(session)
        recent = get_runs(session, limit=limit)

        table = Table(title="Sources")
        table.add_column("Source", style="bold")
        table.add_column("Enabled")
        table.add_column("Interval")
        table.add_column("Synced through")
        for name in SOURCE_NAMES:
            source = context.settings.source(name)
            interval = f"{source.sync_interval_seconds}s" if source.sync_interval_seconds else "-"
            table.add_row(
                name,
                "[green]yes[/green]" if source.enabled else "[dim]no[/dim]",
                interval,
                _format_watermark(watermarks.get(name)),
            )
        console.print(table)

        if not recent:
            console.print("[dim]No sync runs yet[/dim]")
            return
        runs_table = Table(title="Recent runs")
        runs_table.add_column("Started")
        runs_table.add_column("Source")
        runs_table.add_column("Trigger")
        runs_table.add_column("Status")
        runs_table.add_column("New/Updated/Rejected", justify="right")
        for run in recent:
            stats = run.stats
            color = {"completed": "green", "failed": "red"}.get(run.status, "yellow")
            runs_table.add_row(
                _format_watermark(run.started_at),
                run.source,
                run.trigger,
                f"[{color}]{run.status}[/{color}]",
                f"{stats.get('inserted', 0)}/{stats.get('updated', 0)}/{stats.get('rejected', 0)}",
            )
        console.print(runs_table)


@cli.command()
@click.argument("year", type=int)
@click.argument("month", type=click.IntRange(1, 12))
@click.pass_context
def month(ctx: click.Context, year: int, month: int) -> None:
    """Show which days of a month have data."""
    from lifeboard.services.calendar import get_month

    with _open_context(ctx) as context, context.database.session() as session:
        data = get_month(session, year, month)

    if not data["days"]:
        console.print(f"[dim]No data for {year}-{month:02d}[/dim]")
        return
    table = Table(title=f"{year}-{month:02d}")
    table.add_column("Date")
    table.add_column("Sources")
    table.add_column("Entries", justify="right")
    for day in data["days"]:
        table.add_row(day["date"], ", ".join(day["data_types"]), str(day["entry_count"]))
    console.print(table)


@cli.command()
@click.argument("day")
@click.option("--refresh-summary", is_flag=True, help="Re-render the cached daily summary")
@click.pass_context
def day(ctx: click.Context, day: str, refresh_summary: bool) -> None:
    """Show everything recorded on DAY (YYYY-MM-DD)."""
    from lifeboard.services.calendar import get_day
    from lifeboard.services.summary import build_daily_summary

    target = _parse_day_arg(day)
    with _open_context(ctx) as context, context.database.session() as session:
        summary = build_daily_summary(
            session, target, context.settings.summary_template, refresh=refresh_summary
        )
        data = get_day(session, target)

    console.print(f"[bold]{data['date']}[/bold]")
    console.print(summary)
    modules = data["modules"]
    if not modules:
        console.print("[dim]No records for this day[/dim]")
        return

    if "limitless" in modules:
        console.print(f"\n[bold]Limitless[/bold] ({modules['limitless']['count']} entries)")
        for entry in modules["limitless"]["entries"]:
            console.print(f"  {entry['start_time']:%H:%M}  {entry['title'] or '(untitled)'}")
    if "bee" in modules:
        bee = modules["bee"]
        console.print(f"\n[bold]Bee[/bold] ({bee['count']} conversations)")
        for conversation in bee["conversations"]:
            label = conversation["short_summary"] or conversation["summary"] or "(no summary)"
            console.print(f"  {conversation['start_time']:%H:%M}  {label}")
        for todo in bee["todos"]:
            mark = "x" if todo["completed"] else " "
            console.print(f"  [{mark}] {todo['text']}")
    if "weather" in modules:
        weather = modules["weather"]
        console.print(
            f"\n[bold]Weather[/bold] {weather['condition'] or '?'}, "
            f"high {weather['temperature_high']}, low {weather['temperature_low']}"
        )
    if "mood" in modules:
        mood = modules["mood"]
        console.print(f"\n[bold]Mood[/bold] {mood['mood_score']}/10 {mood['mood_text'] or ''}")


@cli.command()
@click.argument("day")
@click.argument("score", type=int)
@click.option("--text", "mood_text", default=None, help="One-word mood label")
@click.option("--notes", default=None, help="Free-form notes")
@click.pass_context
def mood(ctx: click.Context, day: str, score: int, mood_text: str | None, notes: str | None) -> None:
    """Record a mood SCORE (1-10) for DAY (YYYY-MM-DD)."""
    payload = {"date": day, "mood_score": score, "mood_text": mood_text, "notes": notes}
    with _open_context(ctx) as context:
        try:
            result = SyncOrchestrator(context).record_mood(payload, trigger="cli")
        except ValidationError as exc:
            console.print(f"[red]Invalid mood entry:[/red] {exc}")
            sys.exit(1)
    if not result.success:
        console.print(f"[yellow]Mood not recorded:[/yellow] {result.message}")
        sys.exit(1)
    verb = "Recorded" if result.inserted else "Updated"
    console.print(f"[green]{verb} mood[/green] {score}/10 for {day}")


@cli.command()
@click.pass_context
def schedule(ctx: click.Context) -> None:
    """Run scheduled syncs until interrupted."""
    from lifeboard.sync.scheduler import Scheduler, install_signal_handlers

    stop = threading.Event()
    install_signal_handlers(stop)
    with _open_context(ctx) as context:
        scheduler = Scheduler(SyncOrchestrator(context))
        if not scheduler.intervals:
            console.print("[yellow]No enabled source has sync_interval_seconds set[/yellow]")
            return
        console.print("[bold]Scheduler running[/bold] (Ctrl-C to stop)")
        scheduler.run(stop)


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
