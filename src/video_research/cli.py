"""Typer CLI entry point for video-research."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, Any, TypeVar

import structlog
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from video_research import __version__
from video_research.batch import BatchProgressStore, batch_research
from video_research.cache import DiskTranscriptCache
from video_research.config import Settings, format_validation_error
from video_research.doctor import CheckStatus, run_doctor
from video_research.exceptions import (
    BadRequestError,
    ConfigurationError,
    ExportError,
    QuotaExceededError,
)
from video_research.export import ExportFormat, export_research, write_export
from video_research.logging import configure_logging, generate_run_id
from video_research.models import Depth, PhasedReport, ResearchResult, TopicError
from video_research.pipeline import (
    ComprehensiveOptions,
    IndustryResearcher,
    OptimizedSearchOptions,
    ResearchOptions,
)
from video_research.quota import QuotaTracker
from video_research.transcripts.engine import AcquireOptions

if TYPE_CHECKING:
    from collections.abc import Coroutine

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(
    name="video-research",
    help="Topic research from video transcripts: discovery, transcription, insights.",
    no_args_is_help=True,
)
cache_app = typer.Typer(help="Transcript cache commands.")
app.add_typer(cache_app, name="cache")

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config YAML file."),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Enable verbose logging."),
]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_settings(
    config_path: Path | None = None,
    verbose: bool = False,
    **overrides: Any,
) -> Settings:
    """Load settings and configure logging, with user-friendly errors."""
    if verbose:
        overrides["logging"] = {"level": "DEBUG"}
    try:
        settings = Settings.load(config_path=config_path, **overrides)
    except ValidationError as exc:
        err_console.print(
            Panel(
                format_validation_error(exc),
                title="Configuration Error",
                border_style="red",
            )
        )
        raise typer.Exit(code=1) from exc

    configure_logging(
        level=settings.logging.level,
        fmt=settings.logging.format,
        log_file=settings.logging.file,
        run_id=generate_run_id(),
    )
    return settings


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, mapping fatal errors to exit codes.

    Configuration and bad-request errors exit 1; quota exhaustion exits 2.
    """
    try:
        return asyncio.run(coro)
    except (ConfigurationError, BadRequestError) as exc:
        err_console.print(
            Panel(str(exc), title="Configuration Error", border_style="red")
        )
        raise typer.Exit(code=1) from exc
    except QuotaExceededError as exc:
        err_console.print(
            Panel(
                f"{exc}\nRetry {exc.retry_after}.",
                title="Quota Exceeded",
                border_style="yellow",
            )
        )
        raise typer.Exit(code=2) from exc


def _export(
    data: ResearchResult | PhasedReport, fmt: ExportFormat, output: Path | None
) -> None:
    if output is None:
        return
    try:
        path = write_export(export_research(data, fmt), output)
    except ExportError as exc:
        err_console.print(f"[red]Export failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    console.print(f"[green]Saved:[/green] {path}")


def _display_result(result: ResearchResult, limit: int = 10) -> None:
    table = Table(title=f"Top videos: {result.topic}", show_lines=False)
    table.add_column("Score", style="cyan", justify="right", width=6)
    table.add_column("Title")
    table.add_column("Channel", style="dim")
    table.add_column("Views", justify="right")
    table.add_column("Quality", justify="center")
    table.add_column("Method", style="dim")
    for video in result.videos[:limit]:
        table.add_row(
            str(video.relevance_score),
            video.video.title,
            video.video.channel_title,
            f"{video.video.view_count:,}",
            str(video.quality_class),
            video.transcript.method if video.transcript else "",
        )
    console.print(table)

    tstats = result.transcription_stats
    pstats = result.processing_stats
    console.print(
        f"Transcripts: [bold]{tstats.successful}/{tstats.attempted}[/bold] "
        f"({tstats.success_rate}%), {tstats.from_cache} from cache. "
        f"Terms searched: {pstats.terms_searched}, errors: {pstats.errors}, "
        f"quota units: {pstats.quota_units_used}."
    )
    if pstats.deadline_reached:
        console.print("[yellow]Stopped early: time limit reached.[/yellow]")
    if pstats.quota_reserve_reached:
        console.print("[yellow]Stopped early: quota reserve reached.[/yellow]")


def _display_report(report: PhasedReport) -> None:
    table = Table(title=f"Comprehensive research: {report.topic}")
    table.add_column("Phase", style="cyan")
    table.add_column("Status", justify="center")
    table.add_column("Error", style="red")
    for name, phase in report.phases.items():
        table.add_row(name, str(phase.status), phase.error or "")
    console.print(table)
    for line in report.recommendations:
        console.print(f"  {line}")
    if report.error:
        console.print(f"[red]Research ended early:[/red] {report.error}")


def _version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold]video-research[/bold] {__version__}")
        raise typer.Exit


@app.callback()
def common(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit.",
            callback=_version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """Video-research global options."""


# ---------------------------------------------------------------------------
# Research commands
# ---------------------------------------------------------------------------


@app.command()
def research(
    topic: Annotated[str, typer.Argument(help="Industry or topic to research.")],
    config: ConfigOption = None,
    depth: Annotated[
        Depth, typer.Option("--depth", "-d", help="Videos pulled per search term.")
    ] = Depth.STANDARD,
    min_views: Annotated[
        int | None, typer.Option("--min-views", help="Skip videos below this.")
    ] = None,
    optimized: Annotated[
        bool,
        typer.Option("--optimized", help="Time-boxed, relevance-filtered search."),
    ] = False,
    fmt: Annotated[
        ExportFormat, typer.Option("--format", "-f", help="Export format.")
    ] = ExportFormat.JSON,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Export file or directory."),
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """Discover, transcribe and score videos for one topic."""
    settings = _load_settings(config, verbose)
    research_settings = settings.research

    async def _go() -> ResearchResult:
        async with IndustryResearcher.from_settings(settings) as researcher:
            if optimized:
                return await researcher.optimized_industry_search(
                    topic,
                    OptimizedSearchOptions(
                        max_videos_per_term=depth.optimized_videos_per_term,
                        min_view_count=(
                            depth.optimized_min_views
                            if min_views is None
                            else min_views
                        ),
                        max_processing_seconds=research_settings.max_time_minutes * 60,
                    ),
                )
            return await researcher.search_by_industry(
                topic,
                ResearchOptions(
                    depth=depth,
                    min_views=(
                        research_settings.min_views if min_views is None else min_views
                    ),
                    min_transcript_length=research_settings.min_transcript_length,
                    transcription=AcquireOptions(
                        min_length=settings.transcription.min_length
                    ),
                ),
            )

    console.print(
        Panel(f"[bold]{topic}[/bold]", title="Video Research", border_style="blue")
    )
    result = _run(_go())
    _display_result(result)
    _export(result, fmt, output)


@app.command()
def comprehensive(
    topic: Annotated[str, typer.Argument(help="Industry or topic to research.")],
    config: ConfigOption = None,
    depth: Annotated[Depth, typer.Option("--depth", "-d")] = Depth.STANDARD,
    max_minutes: Annotated[
        float | None,
        typer.Option("--max-minutes", help="Overall time budget in minutes."),
    ] = None,
    no_competitors: Annotated[
        bool,
        typer.Option("--no-competitors", help="Skip the competitor phase."),
    ] = False,
    fmt: Annotated[ExportFormat, typer.Option("--format", "-f")] = ExportFormat.JSON,
    output: Annotated[Path | None, typer.Option("--output", "-o")] = None,
    verbose: VerboseOption = False,
) -> None:
    """Run discovery, analysis, insights and competitor phases for one topic."""
    settings = _load_settings(config, verbose)
    options = ComprehensiveOptions(
        depth=depth,
        include_competitor_analysis=not no_competitors,
        max_time_minutes=max_minutes or settings.research.max_time_minutes,
    )

    async def _go() -> PhasedReport:
        async with IndustryResearcher.from_settings(settings) as researcher:
            return await researcher.comprehensive_industry_research(topic, options)

    report = _run(_go())
    _display_report(report)
    _export(report, fmt, output)


@app.command()
def batch(
    topics: Annotated[list[str], typer.Argument(help="Topics to research.")],
    config: ConfigOption = None,
    concurrency: Annotated[
        int | None, typer.Option("--concurrency", help="Topics run at once.")
    ] = None,
    delay: Annotated[
        float | None,
        typer.Option("--delay", help="Seconds between groups of topics."),
    ] = None,
    depth: Annotated[Depth, typer.Option("--depth", "-d")] = Depth.STANDARD,
    resume: Annotated[
        bool,
        typer.Option("--resume", "-r", help="Skip topics already saved as done."),
    ] = False,
    output: Annotated[
        Path | None,
        typer.Option("--output", "-o", help="Directory for per-topic JSON files."),
    ] = None,
    verbose: VerboseOption = False,
) -> None:
    """Research many topics with bounded concurrency."""
    settings = _load_settings(config, verbose)
    store = (
        BatchProgressStore(settings.batch.progress_file)
        if settings.batch.save_progress or resume
        else None
    )
    quota = QuotaTracker.from_settings(settings.quota, settings.transcription)

    async def _go() -> dict[str, ResearchResult | TopicError]:
        researcher = IndustryResearcher.from_settings(settings, quota=quota)
        async with researcher:
            options = ResearchOptions(
                depth=depth,
                min_views=settings.research.min_views,
                min_transcript_length=settings.research.min_transcript_length,
            )

            async def _research(topic: str) -> ResearchResult:
                return await researcher.search_by_industry(topic, options)

            return await batch_research(
                topics,
                _research,
                concurrency=concurrency or settings.batch.concurrency,
                delay_between_batches=(
                    delay if delay is not None else settings.batch.delay_between_batches
                ),
                progress_store=store,
                quota=quota,
                resume=resume,
            )

    results = _run(_go())

    table = Table(title="Batch research")
    table.add_column("Topic", style="cyan")
    table.add_column("Videos", justify="right")
    table.add_column("Transcripts", justify="right")
    table.add_column("Error", style="red")
    for topic, outcome in results.items():
        if isinstance(outcome, TopicError):
            table.add_row(topic, "-", "-", outcome.error)
            continue
        tstats = outcome.transcription_stats
        table.add_row(
            topic,
            str(len(outcome.videos)),
            f"{tstats.successful}/{tstats.attempted}",
            "",
        )
        _export(outcome, ExportFormat.JSON, output)
    console.print(table)

    if all(isinstance(outcome, TopicError) for outcome in results.values()):
        raise typer.Exit(code=1)


# ---------------------------------------------------------------------------
# Transcript commands
# ---------------------------------------------------------------------------


@app.command()
def transcript(
    video_id: Annotated[str, typer.Argument(help="Video id to transcribe.")],
    config: ConfigOption = None,
    service: Annotated[
        str,
        typer.Option("--service", "-s", help='Provider name, or "auto".'),
    ] = "auto",
    min_length: Annotated[int | None, typer.Option("--min-length")] = None,
    no_cache: Annotated[bool, typer.Option("--no-cache")] = False,
    show_text: Annotated[
        bool, typer.Option("--show-text", help="Print the full transcript.")
    ] = False,
    verbose: VerboseOption = False,
) -> None:
    """Acquire the transcript of one video through the provider cascade."""
    settings = _load_settings(config, verbose)
    options = AcquireOptions(
        preferred_service=service,
        min_length=min_length or settings.transcription.min_length,
        use_cache=not no_cache,
    )

    async def _go() -> Any:
        async with IndustryResearcher.from_settings(settings) as researcher:
            return await researcher.engine.acquire(video_id, options)

    record = _run(_go())
    if record.text is None:
        table = Table(title=f"No transcript for {video_id}")
        table.add_column("Provider", style="cyan")
        table.add_column("Reason", style="red")
        for attempt in record.attempts:
            table.add_row(attempt.provider, attempt.error)
        console.print(table)
        raise typer.Exit(code=1)

    console.print(
        f"[green]{record.method}[/green]: {record.length_chars:,} chars, "
        f"quality {record.quality_class}"
        + (" [dim](cached)[/dim]" if record.from_cache else "")
    )
    console.print(record.text if show_text else f"{record.text[:500]}...")


@app.command()
def providers(
    config: ConfigOption = None,
    test: Annotated[
        bool, typer.Option("--test", help="Try every provider against one video.")
    ] = False,
    video_id: Annotated[
        str, typer.Option("--video-id", help="Video used by --test.")
    ] = "dQw4w9WgXcQ",
    verbose: VerboseOption = False,
) -> None:
    """List transcript providers, or test them live."""
    settings = _load_settings(config, verbose)

    async def _go() -> Any:
        async with IndustryResearcher.from_settings(settings) as researcher:
            if test:
                return await researcher.engine.test_services(video_id)
            return researcher.engine.service_info(
                settings.transcription.cost_per_minute_usd
            )

    outcome = _run(_go())
    if not test:
        console.print(f"Cascade: [bold]{' -> '.join(outcome['cascade'])}[/bold]")
        table = Table(title="Transcript providers")
        table.add_column("Provider", style="cyan")
        table.add_column("Cost")
        table.add_column("Configured", justify="center")
        table.add_column("Notes", style="dim")
        for group in ("free_services", "paid_services"):
            for name, info in outcome[group].items():
                table.add_row(
                    name,
                    info["cost"],
                    "[green]yes[/green]" if info["configured"] else "[red]no[/red]",
                    info.get("limitations", ""),
                )
        console.print(table)
        return

    table = Table(title=f"Provider test ({outcome.test_video_id})")
    table.add_column("Provider", style="cyan")
    table.add_column("Result", justify="center")
    table.add_column("Length", justify="right")
    table.add_column("Time (ms)", justify="right")
    table.add_column("Error", style="red")
    for name, result in outcome.service_results.items():
        table.add_row(
            name,
            "[green]OK[/green]" if result.success else "[red]FAIL[/red]",
            str(result.transcript_length),
            f"{result.response_time_ms:.0f}",
            result.error or "",
        )
    console.print(table)
    for note in outcome.recommendations:
        console.print(f"  {note}")


# ---------------------------------------------------------------------------
# Cache commands
# ---------------------------------------------------------------------------


def _open_cache(settings: Settings) -> DiskTranscriptCache:
    return DiskTranscriptCache(settings.cache.directory)


@cache_app.command("stats")
def cache_stats(config: ConfigOption = None) -> None:
    """Show transcript cache statistics."""
    settings = _load_settings(config)
    cache = _open_cache(settings)
    try:
        stats = cache.stats()
    finally:
        cache.close()
    table = Table(title="Transcript cache")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Entries", str(stats.total_entries))
    table.add_row("Total length", f"{stats.total_length:,}")
    table.add_row("Average length", f"{stats.average_length:,}")
    for method, count in sorted(stats.by_method.items()):
        table.add_row(f"  {method}", str(count))
    console.print(table)


@cache_app.command("clear")
def cache_clear(
    config: ConfigOption = None,
    yes: Annotated[
        bool, typer.Option("--yes", "-y", help="Skip confirmation.")
    ] = False,
) -> None:
    """Remove every cached transcript."""
    settings = _load_settings(config)
    if not yes and not typer.confirm("Delete all cached transcripts?"):
        raise typer.Exit(code=1)
    cache = _open_cache(settings)
    try:
        removed = cache.clear()
    finally:
        cache.close()
    console.print(f"[green]Removed {removed} entries.[/green]")


@cache_app.command("delete")
def cache_delete(
    video_id: Annotated[str, typer.Argument(help="Video id to evict.")],
    config: ConfigOption = None,
) -> None:
    """Evict one cached transcript."""
    settings = _load_settings(config)
    cache = _open_cache(settings)
    try:
        deleted = cache.delete(video_id)
    finally:
        cache.close()
    if not deleted:
        console.print(f"[yellow]No cache entry for {video_id}.[/yellow]")
        raise typer.Exit(code=1)
    console.print(f"[green]Deleted cache entry for {video_id}.[/green]")


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


@app.command()
def quota(config: ConfigOption = None) -> None:
    """Show the discovery API quota model."""
    settings = _load_settings(config)
    info = QuotaTracker.from_settings(
        settings.quota, settings.transcription
    ).quota_info()
    table = Table(title="YouTube Data API quota")
    table.add_column("Item", style="cyan")
    table.add_column("Units", justify="right")
    table.add_row("Search", str(info["search_cost"]))
    table.add_row("Video details", str(info["video_cost"]))
    table.add_row("Channel details", str(info["channel_cost"]))
    table.add_row("Daily limit", f"{info['daily_limit']:,}")
    table.add_row("Max searches per day", str(info["max_searches_per_day"]))
    console.print(table)
    for line in info["recommendations"]:
        console.print(f"  - {line}")


@app.command()
def doctor(
    config: ConfigOption = None,
    no_api_probes: Annotated[
        bool,
        typer.Option(
            "--no-api-probes",
            help="Skip the live search probe (costs 100 quota units).",
        ),
    ] = False,
    quiet: Annotated[
        bool,
        typer.Option("--quiet", help="Suppress table output, use exit code only."),
    ] = False,
) -> None:
    """Run self-diagnostics and health checks for this environment."""
    settings = _load_settings(config)
    report = run_doctor(
        settings=settings,
        config_path=config,
        probe_api=not no_api_probes,
    )

    if not quiet:
        table = Table(title="Video Research Doctor", show_lines=True)
        table.add_column("Check", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Message")

        status_style = {
            CheckStatus.OK: "[green]OK[/green]",
            CheckStatus.WARN: "[yellow]WARN[/yellow]",
            CheckStatus.FAIL: "[red]FAIL[/red]",
        }

        for check in report.checks:
            table.add_row(check.name, status_style[check.status], check.message)
        console.print(table)

        for check in report.checks:
            if check.details:
                details = ", ".join(f"{k}={v}" for k, v in check.details.items())
                console.print(f"[dim]{check.name}: {details}[/dim]")

    raise typer.Exit(code=report.exit_code)


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
