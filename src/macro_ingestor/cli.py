"""Click-based CLI for macro-ingestor.

Thin wrapper around library modules: every command builds its store and
provider chain from config, delegates to a pipeline use case, and closes
what it opened.
"""

from __future__ import annotations

import asyncio
import logging
import sys
from datetime import date, datetime

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

console = Console(stderr=True)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run_async(coro):
    """Run an async coroutine from synchronous Click code."""
    return asyncio.run(coro)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _load_config(ctx: click.Context):
    """Load config lazily, caching on first call. Also configures logging."""
    if "config" not in ctx.obj:
        from macro_ingestor.core import ConfigError, load_config

        try:
            config = load_config(config_path=ctx.obj.get("config_path"))
        except ConfigError as e:
            raise click.ClickException(str(e)) from e
        _configure_logging("DEBUG" if ctx.obj.get("verbose") else config.logging.level)
        ctx.obj["config"] = config
    return ctx.obj["config"]


async def _create_store_async(config):
    """Create and initialize storage from config."""
    from macro_ingestor.storage import create_store

    return await create_store(config.storage)


def _build_chain(config):
    from macro_ingestor.providers import build_chain

    return build_chain(config)


def _parse_date(value: str | None, option: str) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise click.BadParameter(f"expected YYYY-MM-DD, got {value!r}", param_hint=option)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    envvar="MACRO_INGESTOR_CONFIG",
    default=None,
    help="Path to macro-ingestor.yml config file.",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging.",
)
@click.version_option(package_name="macro-ingestor")
@click.pass_context
def cli(ctx: click.Context, config: str | None, verbose: bool) -> None:
    """Macro Ingestor: Argentine macroeconomic time-series ingestion."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config
    ctx.obj["verbose"] = verbose
    ctx.obj["console"] = console


# ---------------------------------------------------------------------------
# update
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--series",
    "-s",
    "series_ids",
    multiple=True,
    help="Series to update (repeatable). Defaults to pipeline.series_whitelist.",
)
@click.pass_context
def update(ctx: click.Context, series_ids: tuple[str, ...]) -> None:
    """Fetch new points for each series since its last stored date."""
    config = _load_config(ctx)
    targets = list(series_ids) or list(config.pipeline.series_whitelist)
    if not targets:
        raise click.UsageError("No --series given and pipeline.series_whitelist is empty")

    async def _run():
        from macro_ingestor.pipeline import FetchAndStoreSeries
        from macro_ingestor.providers import SeriesIdResolver

        store = await _create_store_async(config)
        chain = _build_chain(config)
        try:
            use_case = FetchAndStoreSeries(
                store,
                chain,
                resolver=SeriesIdResolver(
                    store, cache_ttl_seconds=config.resolver.cache_ttl_seconds
                ),
                default_lookback_days=config.pipeline.default_lookback_days,
                max_concurrent=config.pipeline.max_concurrent,
                today=lambda: datetime.now(config.pipeline.tz).date(),
            )
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
            ) as progress:
                progress.add_task(f"Updating {len(targets)} series...", total=None)
                return await use_case.execute_many(targets)
        finally:
            await chain.close()
            await store.close()

    results = _run_async(_run())
    _output_results_table(results)

    failed = [r for r in results if not r.success]
    console.print(
        f"[green]✓[/green] Updated {len(results) - len(failed)}/{len(results)} series"
        + (f" ([red]{len(failed)} failed[/red])" if failed else "")
    )
    if failed:
        ctx.exit(1)


def _output_results_table(results) -> None:
    table = Table(title="Ingest results")
    table.add_column("Series", style="bold")
    table.add_column("Provider")
    table.add_column("Fetched", justify="right")
    table.add_column("Stored", justify="right")
    table.add_column("Status")

    for r in results:
        table.add_row(
            r.series_id,
            r.provider or "-",
            str(r.points_fetched),
            str(r.points_stored),
            "[green]ok[/green]" if r.success else f"[red]{r.error}[/red]",
        )
    console.print(table)


# ---------------------------------------------------------------------------
# backfill
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--series", "-s", "series_id", required=True, help="Series to backfill.")
@click.option("--from", "from_", required=True, help="Start date (YYYY-MM-DD).")
@click.option("--to", "to", default=None, help="End date (YYYY-MM-DD). Defaults to latest.")
@click.pass_context
def backfill(ctx: click.Context, series_id: str, from_: str, to: str | None) -> None:
    """Fetch and store a historical date range for one series."""
    start = _parse_date(from_, "--from")
    end = _parse_date(to, "--to")
    config = _load_config(ctx)

    async def _run():
        from macro_ingestor.pipeline import BackfillSeries
        from macro_ingestor.providers import SeriesIdResolver

        store = await _create_store_async(config)
        chain = _build_chain(config)
        try:
            use_case = BackfillSeries(
                store,
                chain,
                resolver=SeriesIdResolver(
                    store, cache_ttl_seconds=config.resolver.cache_ttl_seconds
                ),
            )
            result = await use_case.execute(series_id, start, end)
            stats = await use_case.get_backfill_stats(series_id) if result.success else None
            return result, stats
        finally:
            await chain.close()
            await store.close()

    result, stats = _run_async(_run())
    _output_results_table([result])
    if not result.success:
        ctx.exit(1)
    if stats is not None:
        console.print(
            f"[green]✓[/green] {series_id}: {stats.total_points} points stored "
            f"({stats.first_date} → {stats.last_date})"
        )


# ---------------------------------------------------------------------------
# discover
# ---------------------------------------------------------------------------


@cli.command()
@click.option(
    "--provider", "-p", "provider_name", default="BCRA_MONETARIAS", show_default=True,
    help="Provider whose catalogue is searched.",
)
@click.pass_context
def discover(ctx: click.Context, provider_name: str) -> None:
    """Map canonical series to a provider's catalogue by keyword."""
    config = _load_config(ctx)

    async def _run():
        from macro_ingestor.core import MacroIngestorError
        from macro_ingestor.pipeline import DiscoverSeries

        store = await _create_store_async(config)
        chain = _build_chain(config)
        try:
            provider = chain.get_provider(provider_name)
            if provider is None:
                raise click.BadParameter(
                    f"unknown provider {provider_name!r}; known: {', '.join(chain.providers)}",
                    param_hint="--provider",
                )
            try:
                return await DiscoverSeries(store, provider).execute()
            except MacroIngestorError as e:
                raise click.ClickException(f"Discovery failed: {e}") from e
        finally:
            await chain.close()
            await store.close()

    result = _run_async(_run())

    table = Table(title=f"Discovery on {provider_name}")
    table.add_column("Series", style="bold")
    table.add_column("Provider id")
    table.add_column("Status")
    table.add_column("Detail")
    for m in result.mapped:
        status = "[green]mapped[/green]" if m.created else "[cyan]existing[/cyan]"
        table.add_row(m.series_id, m.external_id, status, m.description)
    for u in result.unmapped:
        table.add_row(u.series_id, "-", "[yellow]unmapped[/yellow]", f"{u.source}: {u.reason}")
    console.print(table)
    console.print(f"Mapped [bold]{len(result.mapped)}[/bold], unmapped {len(result.unmapped)}")


# ---------------------------------------------------------------------------
# populate
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--provider", "-p", "provider_name", required=True, help="Provider name.")
@click.pass_context
def populate(ctx: click.Context, provider_name: str) -> None:
    """Create or refresh series metadata from a provider's catalogue."""
    config = _load_config(ctx)

    async def _run():
        from macro_ingestor.pipeline import PopulateSeries

        store = await _create_store_async(config)
        chain = _build_chain(config)
        try:
            provider = chain.get_provider(provider_name)
            if provider is None:
                raise click.BadParameter(
                    f"unknown provider {provider_name!r}; known: {', '.join(chain.providers)}",
                    param_hint="--provider",
                )
            return await PopulateSeries(store, provider).execute()
        finally:
            await chain.close()
            await store.close()

    result = _run_async(_run())
    console.print(
        f"Populated [bold]{result.populated}[/bold], skipped {result.skipped}, "
        f"errors {len(result.errors)}"
    )
    for error in result.errors:
        console.print(f"[red]  {error}[/red]")
    if not result.success:
        ctx.exit(1)


# ---------------------------------------------------------------------------
# health
# ---------------------------------------------------------------------------


@cli.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Probe every provider and show their health."""
    config = _load_config(ctx)

    async def _run():
        chain = _build_chain(config)
        try:
            return await chain.get_health_status()
        finally:
            await chain.close()

    statuses = _run_async(_run())

    table = Table(title="Provider health")
    table.add_column("Provider", style="bold")
    table.add_column("Healthy")
    table.add_column("Latency (ms)", justify="right")
    table.add_column("Error")
    for name, h in statuses.items():
        table.add_row(
            name,
            "[green]yes[/green]" if h.is_healthy else "[red]no[/red]",
            f"{h.response_time_ms:.0f}" if h.response_time_ms is not None else "-",
            h.error or "",
        )
    console.print(table)

    if not any(h.is_healthy for h in statuses.values()):
        console.print("[red]No healthy providers[/red]")
        ctx.exit(1)


# ---------------------------------------------------------------------------
# stats
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--series", "-s", "series_id", required=True, help="Series id.")
@click.pass_context
def stats(ctx: click.Context, series_id: str) -> None:
    """Show stored-point statistics for a series."""
    config = _load_config(ctx)

    async def _run():
        store = await _create_store_async(config)
        try:
            return await store.get_series_stats(series_id)
        finally:
            await store.close()

    result = _run_async(_run())
    if result is None:
        console.print(f"[yellow]No data stored for {series_id}[/yellow]")
        ctx.exit(1)

    table = Table(title=f"Series {series_id}")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total points", str(result.total_points))
    table.add_row("Date range", f"{result.first_date} → {result.last_date}")
    table.add_section()
    table.add_row("Min", f"{result.min_value:g}")
    table.add_row("Max", f"{result.max_value:g}")
    table.add_row("Average", f"{result.avg_value:g}")
    console.print(table)


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


@cli.command()
@click.option("--host", type=str, default=None, help="Bind address (default: api.host).")
@click.option("--port", "-p", type=int, default=None, help="Port (default: api.port).")
@click.option("--reload", is_flag=True, default=False, help="Auto-reload on code changes.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None, reload: bool) -> None:
    """Start the REST API server."""
    import uvicorn

    config = _load_config(ctx)
    host = host or config.api.host
    port = port or config.api.port

    console.print(f"Starting macro-ingestor API on [bold]{host}:{port}[/bold]")
    console.print(f"API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "macro_ingestor.api.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
