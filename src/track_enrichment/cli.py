"""Command line interface for track enrichment."""

import asyncio
import json
import logging
import signal
import sys
from pathlib import Path
from typing import Dict, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn
from rich.table import Table

from .core.analysis import AnalysisOrchestrator
from .core.metadata_cache import MetadataCache
from .exceptions import OperationCancelledError, TrackEnrichmentError
from .infrastructure.catalog import DirectoryCatalogProvider, JsonCatalogProvider, load_source_descriptors
from .models.config import create_default_config, load_config
from .models.track import EnrichedTrack
from .pipeline import EnrichmentPipeline, PipelineResult

console = Console()


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=verbose, show_path=verbose)],
        force=True,
    )
    # aiohttp is chatty at debug level
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def _track_row(track: EnrichedTrack) -> Dict:
    return {
        "catalog_id": track.catalog_id,
        "title": track.title,
        "artist": track.artist,
        "album": track.album,
        "genres": track.genres,
        "lyrics_snippet": track.lyrics_snippet,
        "energy": track.energy,
        "valence": track.valence,
        "danceability": track.danceability,
        "acousticness": track.acousticness,
        "tempo": track.tempo,
        "key": track.key,
        "mood": track.mood,
        "theme": track.theme,
        "mood_tags": track.mood_tags,
        "match_score": track.match_score,
    }


def _print_summary(result: PipelineResult) -> None:
    table = Table(title="Enrichment Summary")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", justify="right")

    if result.sources:
        table.add_row("Source tracks", str(result.sources))
    table.add_row("Tracks", str(len(result.tracks)))
    table.add_row("With mood tags", str(result.mood_enriched))
    table.add_row("Analyzed", str(result.analysis.analyzed))
    table.add_row("Served from cache", str(result.analysis.cached))
    table.add_row("Analysis failed", str(result.analysis.failed))
    table.add_row("Analysis timed out", str(result.analysis.timed_out))
    table.add_row("Elapsed", f"{result.elapsed:.1f}s")

    console.print(table)


async def _run_enrich(
    catalog_path: Path,
    sources_path: Optional[Path],
    config_path: Optional[Path],
    directory: bool,
    mood: bool,
    analysis: bool,
) -> PipelineResult:
    config = load_config(config_path)

    provider = DirectoryCatalogProvider(catalog_path) if directory else JsonCatalogProvider(catalog_path)
    catalog = await provider.load()
    sources = await load_source_descriptors(sources_path) if sources_path else None

    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)

    pipeline = EnrichmentPipeline(config)
    try:
        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            console=console,
        ) as progress:
            tasks: Dict[str, int] = {}

            def report(stage: str, percent: float) -> None:
                if stage not in tasks:
                    tasks[stage] = progress.add_task(f"{stage.capitalize()}...", total=100)
                progress.update(tasks[stage], completed=percent)

            return await pipeline.run(
                catalog,
                sources,
                mood=mood,
                analysis=analysis,
                progress=report,
                cancel_event=cancel_event,
            )
    finally:
        if sys.platform != "win32":
            loop.remove_signal_handler(signal.SIGINT)


@click.group()
@click.version_option(package_name="track-enrichment")
def cli():
    """Match tracks against a local library and enrich them with tags and audio features."""
    pass


@cli.command()
@click.argument('catalog', type=click.Path(exists=True, path_type=Path))
@click.option(
    '--sources',
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='JSON file of source tracks to match; without it the whole catalog is enriched'
)
@click.option(
    '--config',
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Configuration file path'
)
@click.option(
    '--directory',
    is_flag=True,
    help='Treat CATALOG as a directory of audio files instead of a JSON export'
)
@click.option(
    '--no-mood',
    is_flag=True,
    help='Skip mood tag lookups'
)
@click.option(
    '--no-analysis',
    is_flag=True,
    help='Skip audio feature analysis'
)
@click.option(
    '--output',
    type=click.Path(dir_okay=False, path_type=Path),
    help='Write enriched tracks to this JSON file'
)
@click.option(
    '--verbose',
    is_flag=True,
    help='Verbose output'
)
def enrich(
    catalog: Path,
    sources: Optional[Path],
    config: Optional[Path],
    directory: bool,
    no_mood: bool,
    no_analysis: bool,
    output: Optional[Path],
    verbose: bool
):
    """Enrich the tracks of CATALOG (a JSON export or, with --directory, a folder)."""
    _setup_logging(verbose)

    try:
        result = asyncio.run(_run_enrich(
            catalog, sources, config, directory, not no_mood, not no_analysis
        ))
    except OperationCancelledError as e:
        console.print(f"\n[yellow]Cancelled: {e}[/yellow]")
        sys.exit(130)
    except TrackEnrichmentError as e:
        console.print(f"\n[red]Error: {e}[/red]")
        sys.exit(1)
    except Exception as e:
        console.print(f"\n[red]Unexpected error: {e}[/red]")
        if verbose:
            import traceback
            console.print(traceback.format_exc())
        sys.exit(1)

    _print_summary(result)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, 'w', encoding='utf-8') as f:
            json.dump([_track_row(track) for track in result.tracks], f, indent=2, ensure_ascii=False)
        console.print(f"[green]Wrote {len(result.tracks)} tracks to {output}[/green]")


@cli.command(name="cache-stats")
@click.option(
    '--config',
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Configuration file path'
)
def cache_stats(config: Optional[Path]):
    """Show how many entries each cache section holds."""
    _setup_logging(False)
    try:
        cfg = load_config(config)
    except TrackEnrichmentError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    cache = MetadataCache(cfg.cache_path)
    cache.load()

    table = Table(title=f"Metadata Cache ({cfg.cache_path})")
    table.add_column("Section", style="cyan")
    table.add_column("Entries", justify="right")
    counts = cache.stats()
    for section, count in counts.items():
        table.add_row(section, str(count))
    table.add_row("[bold]Total[/bold]", f"[bold]{sum(counts.values())}[/bold]")
    console.print(table)


@cli.command(name="check-analyzer")
@click.option(
    '--config',
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help='Configuration file path'
)
def check_analyzer(config: Optional[Path]):
    """Locate the audio analyzer and check that it runs."""
    _setup_logging(False)
    try:
        cfg = load_config(config)
        orchestrator = AnalysisOrchestrator(cfg.analysis, data_dir=cfg.data_dir)
        executable = orchestrator.locator.require()
    except TrackEnrichmentError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    if not asyncio.run(orchestrator.validate()):
        console.print(f"[red]Analyzer at {executable} did not start correctly[/red]")
        sys.exit(1)
    console.print(f"[green]Analyzer OK: {executable}[/green]")


@cli.command(name="init-config")
@click.argument('path', type=click.Path(dir_okay=False, path_type=Path))
@click.option('--force', is_flag=True, help='Overwrite an existing file')
def init_config(path: Path, force: bool):
    """Write a configuration file with default values to PATH."""
    if path.exists() and not force:
        console.print(f"[red]{path} already exists (use --force to overwrite)[/red]")
        sys.exit(1)
    create_default_config(path)
    console.print(f"[green]Wrote default configuration to {path}[/green]")


def main():
    """Entry point for the CLI."""
    cli()


if __name__ == '__main__':
    main()
