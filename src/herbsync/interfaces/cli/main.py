"""HerbSync CLI - Command Line Interface.

Admin trigger surface: run import/sync batches on demand, inspect provider
stats, health, checkpoints, progress and run history, or run everything on
its schedule with `herbsync serve`.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Annotated, Any, TypeVar

import typer

from herbsync import __version__
from herbsync.infrastructure.config.settings import get_settings
from herbsync.infrastructure.logging.setup import configure_logging, get_logger
from herbsync.infrastructure.wiring import Container, build_container

T = TypeVar("T")

app = typer.Typer(
    name="herbsync",
    help="Resilient botanical data import and enrichment for Trefle and Perenual",
    no_args_is_help=True,
)


class Provider(str, Enum):
    TREFLE = "trefle"
    PERENUAL = "perenual"


ProviderArg = Annotated[Provider, typer.Argument(help="Provider to operate on")]


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable verbose output"),
    ] = False,
) -> None:
    """HerbSync - botanical data sync engine."""
    settings = get_settings()
    configure_logging(
        level="DEBUG" if verbose else settings.log_level,
        json_format=settings.environment == "production",
    )


def _run(action: Callable[[Container], Awaitable[T]], *, persist: bool = True) -> T:
    """Build the container, run ``action`` and always close resources.

    Read-only commands pass ``persist=False`` so closing does not publish provider state.
    """

    async def runner() -> T:
        container = await build_container(get_settings())
        try:
            return await action(container)
        finally:
            await container.close(persist=persist)

    return asyncio.run(runner())


def _echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


@app.command("import")
def import_batch(provider: ProviderArg) -> None:
    """Import the next batch of pages from a provider as draft herbs."""
    log = get_logger(__name__)
    log.info("cli_import", provider=provider.value)

    result = _run(lambda c: c.admin.trigger_import(provider.value))
    _echo_json(result.to_dict())
    if result.status.value in ("stopped", "not_configured"):
        raise typer.Exit(code=1)


@app.command()
def sync(provider: ProviderArg) -> None:
    """Enrich the stalest herb records from a provider."""
    log = get_logger(__name__)
    log.info("cli_sync", provider=provider.value)

    result = _run(lambda c: c.admin.trigger_enrichment(provider.value))
    _echo_json(result.to_dict())
    if result.status.value in ("stopped", "not_configured"):
        raise typer.Exit(code=1)


@app.command()
def stats(provider: ProviderArg) -> None:
    """Show request statistics and circuit state for a provider."""

    async def action(c: Container) -> dict:
        return c.admin.provider_stats(provider.value)

    _echo_json(_run(action, persist=False))


@app.command()
def health() -> None:
    """Show health scores for all providers."""

    async def action(c: Container) -> dict:
        return c.admin.health_report()

    report = _run(action, persist=False)
    _echo_json(report)
    if report["overall_status"] == "unhealthy":
        raise typer.Exit(code=2)


@app.command()
def checkpoint(provider: ProviderArg) -> None:
    """Show the import checkpoint for a provider."""
    _echo_json(_run(lambda c: c.admin.checkpoint(provider.value), persist=False))


@app.command()
def progress(provider: ProviderArg) -> None:
    """Show import progress and enrichment coverage for a provider."""

    async def action(c: Container) -> dict:
        return {
            "import": await c.admin.import_progress(provider.value),
            "sync": await c.admin.sync_progress(provider.value),
        }

    _echo_json(_run(action, persist=False))


@app.command()
def runs(
    provider: Annotated[
        Provider | None, typer.Argument(help="Only show runs for this provider")
    ] = None,
    limit: Annotated[int, typer.Option("--limit", "-l", min=1, help="Entries to show")] = 20,
) -> None:
    """Show the most recent import and sync runs, newest first."""
    provider_id = provider.value if provider else None
    _echo_json(_run(lambda c: c.admin.recent_runs(provider_id, limit=limit), persist=False))


@app.command()
def reset(
    provider: ProviderArg,
    checkpoint: Annotated[
        bool,
        typer.Option("--checkpoint", help="Also delete the import checkpoint (restart at page 1)"),
    ] = False,
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation")] = False,
) -> None:
    """Reset a provider's statistics and circuit breaker."""
    if checkpoint and not yes:
        typer.confirm(f"Delete the {provider.value} checkpoint and restart the import?", abort=True)

    async def action(c: Container) -> dict:
        result: dict[str, Any] = {"provider": c.admin.reset_provider(provider.value)}
        if checkpoint:
            result["checkpoint_removed"] = await c.admin.reset_checkpoint(provider.value)
        return result

    _echo_json(_run(action))


@app.command()
def monitor(
    ticks: Annotated[
        int | None,
        typer.Option("--ticks", "-n", help="Stop after this many checks (default: run forever)"),
    ] = None,
) -> None:
    """Watch circuit breakers and health, sending alerts on changes."""
    log = get_logger(__name__)

    async def action(c: Container) -> int:
        monitor = c.alert_monitor()
        log.info("cli_monitor", interval=monitor.ticker.interval, ticks=ticks)
        await monitor.run(max_ticks=ticks)
        return monitor.fired_count

    fired = _run(action)
    typer.echo(f"Alerts fired: {fired}")


@app.command()
def serve(
    ticks: Annotated[
        int | None,
        typer.Option("--ticks", "-n", help="Stop after this many ticks per job (default: forever)"),
    ] = None,
) -> None:
    """Run scheduled imports, syncs and alert checks in one long-lived process.

    Jobs are enabled per provider with HERBSYNC_<PROVIDER>_IMPORT_ENABLED and
    HERBSYNC_<PROVIDER>_SYNC_ENABLED. Quota, circuit and statistics are
    shared by every job and published to the database on an interval.
    """
    log = get_logger(__name__)

    async def action(c: Container) -> dict[str, int]:
        scheduler = c.scheduler()
        log.info("cli_serve", jobs=scheduler.names, ticks=ticks)
        await scheduler.run(max_ticks=ticks)
        return {t.name: t.ticks for t in scheduler.tickers}

    _echo_json(_run(action))


@app.command()
def version() -> None:
    """Show HerbSync version information."""
    typer.echo(f"HerbSync v{__version__}")
    typer.echo("Resilient provider client and progressive sync engine")


if __name__ == "__main__":
    app()
