"""Main entry point for the connsync application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import dataclasses
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional
from typing import Annotated

import typer

from connsync.core.command_handler import CommandHandler
from connsync.core.services.health_monitor import DEFAULT_INTERVAL_SECONDS, HealthMonitor
from connsync.core.services.records_service import RecordsService

from connsync.infrastructure.api.directory_client import DirectoryClient
from connsync.infrastructure.auth.credentials import SessionCredentialProvider, StaticCredentialProvider
from connsync.infrastructure.cache.ttl_cache import (
    DEFAULT_MAX_SIZE_BYTES,
    DEFAULT_TTL_SECONDS,
    TTLCache,
)
from connsync.infrastructure.cli.display import ConsoleDisplay
from connsync.infrastructure.config.settings import (
    get_base_url,
    get_cache_dir,
    get_config,
    get_log_level,
    get_session_id,
    load_configuration,
)
from connsync.infrastructure.monitoring.logger_setup import setup_logging
from connsync.infrastructure.resilience.error_classifier import ErrorClassifier
from connsync.infrastructure.resilience.rate_limiter import RateLimiter
from connsync.infrastructure.resilience.request_queue import RequestQueue
from connsync.infrastructure.storage.disk_store import DiskStore
from connsync.infrastructure.storage.memory_store import InMemoryStore
from connsync.infrastructure.transport.http_transport import HttpTransport

logger = logging.getLogger(__name__)


def create_dependencies() -> Dict[str, Any]:
    """Creates and wires up all dependencies for the application.

    This acts as the Composition Root. It must run inside the event loop
    that will use the dependencies, since the queue and cache hold
    loop-bound primitives.
    """
    load_configuration()
    setup_logging(
        log_level=get_log_level(),
        log_file=get_config('logging.file'),
        log_format=get_config('logging.format', '%(asctime)s - %(name)s - %(levelname)s - %(message)s'),
    )
    logger.info("Initializing application dependencies...")

    dependencies: Dict[str, Any] = {}
    dependencies['ui'] = ConsoleDisplay()

    if get_config('cache.persistent', True):
        dependencies['store'] = DiskStore(get_cache_dir())
    else:
        dependencies['store'] = InMemoryStore()

    dependencies['classifier'] = ErrorClassifier(store=dependencies['store'])

    session_id = get_session_id()
    if session_id:
        credentials = SessionCredentialProvider(session_id)
    else:
        logger.warning("No session id configured (remote.session_id), requests will be unauthenticated.")
        dependencies['ui'].display_warning(
            "No session id configured (remote.session_id). Requests will be unauthenticated."
        )
        credentials = StaticCredentialProvider()
    dependencies['transport'] = HttpTransport(credentials=credentials)

    rate_limiter = None
    max_per_window = get_config('queue.rate_limit.max_requests')
    if max_per_window:
        rate_limiter = RateLimiter(
            max_requests=int(max_per_window),
            time_window=float(get_config('queue.rate_limit.time_window', 60)),
        )

    dependencies['queue'] = RequestQueue(
        dependencies['transport'],
        dependencies['classifier'],
        min_delay=float(get_config('queue.min_delay', 0.3)),
        max_delay=float(get_config('queue.max_delay', 1.0)),
        max_retries=int(get_config('queue.max_retries', 3)),
        default_timeout=float(get_config('queue.timeout', 30.0)),
        rate_limiter=rate_limiter,
    )
    dependencies['cache'] = TTLCache(
        dependencies['store'],
        max_size_bytes=int(get_config('cache.max_size_bytes', DEFAULT_MAX_SIZE_BYTES)),
        default_ttl=float(get_config('cache.ttl', DEFAULT_TTL_SECONDS)),
    )
    dependencies['client'] = DirectoryClient(dependencies['queue'], base_url=get_base_url())
    dependencies['records_service'] = RecordsService(
        dependencies['client'],
        dependencies['queue'],
        dependencies['cache'],
        dependencies['classifier'],
        batch_size=int(get_config('records.batch_size', 100)),
        max_records=int(get_config('records.max_records', 1000)),
        batch_delay=(
            float(get_config('records.batch_delay_min', 0.5)),
            float(get_config('records.batch_delay_max', 1.0)),
        ),
    )
    dependencies['monitor'] = HealthMonitor(
        dependencies['cache'],
        queue=dependencies['queue'],
        classifier=dependencies['classifier'],
        interval=float(get_config('cache.maintenance_interval', DEFAULT_INTERVAL_SECONDS)),
    )
    dependencies['command_handler'] = CommandHandler(
        dependencies['records_service'],
        dependencies['classifier'],
        dependencies['cache'],
        dependencies['queue'],
        monitor=dependencies['monitor'],
    )
    logger.info("All dependencies initialized successfully.")
    return dependencies


async def _shutdown(dependencies: Dict[str, Any]) -> None:
    try:
        await dependencies['command_handler'].close()
        await dependencies['transport'].close()
    finally:
        dependencies['store'].close()


def run_command(action: Callable[[Dict[str, Any]], Awaitable[int]]) -> None:
    """Runs an async command body in a fresh event loop and exits with its code."""

    async def runner() -> int:
        dependencies = create_dependencies()
        try:
            return await action(dependencies)
        finally:
            await _shutdown(dependencies)

    exit_code = asyncio.run(runner())
    if exit_code:
        raise typer.Exit(code=exit_code)


def _timestamp(value: Optional[float]) -> Optional[str]:
    return datetime.fromtimestamp(value).strftime("%Y-%m-%d %H:%M:%S") if value else None


app = typer.Typer(
    name="connsync",
    help="connsync: fetch, cache and inspect your remote connection records.",
    add_completion=False,
)

LimitOption = Annotated[int, typer.Option("--limit", "-n", min=0, help="Show at most N entries (0 = all).")]


@app.command()
def records(
    refresh: Annotated[bool, typer.Option("--refresh", "-r", help="Ignore the cache and fetch again.")] = False,
    limit: LimitOption = 0,
    wait_enrichment: Annotated[
        bool, typer.Option("--wait-enrichment", help="Wait for affiliation logos before displaying.")
    ] = False,
):
    """List all records, from the cache when it is fresh."""

    async def action(deps: Dict[str, Any]) -> int:
        handler: CommandHandler = deps['command_handler']
        if wait_enrichment:
            # Enrichment can outlive one maintenance interval; other commands use `maintain`.
            deps['monitor'].start()
        result = await handler.get_records(force_refresh=refresh)
        if result.ok and wait_enrichment:
            await deps['records_service'].wait_for_enrichment()
            result = await handler.get_records()
        if not result.ok:
            deps['ui'].display_classified_error(result.error)
            return 1
        deps['ui'].display_records(result.value, limit)
        return 0

    run_command(action)


@app.command(name="refresh")
def refresh_command():
    """Drop the cached records and fetch them again."""

    async def action(deps: Dict[str, Any]) -> int:
        result = await deps['command_handler'].refresh()
        if not result.ok:
            deps['ui'].display_classified_error(result.error)
            return 1
        deps['ui'].display_info(f"Fetched {len(result.value)} records.")
        return 0

    run_command(action)


@app.command(name="cache-stats")
def cache_stats_command():
    """Show cache statistics."""

    async def action(deps: Dict[str, Any]) -> int:
        stats = await deps['command_handler'].get_cache_stats()
        values = dataclasses.asdict(stats)
        values['oldest_timestamp'] = _timestamp(stats.oldest_timestamp)
        values['newest_timestamp'] = _timestamp(stats.newest_timestamp)
        values['max_size_bytes'] = deps['cache'].max_size_bytes
        deps['ui'].display_stats("Cache", values)
        return 0

    run_command(action)


@app.command(name="clear-cache")
def clear_cache_command():
    """Remove every cached entry."""

    async def action(deps: Dict[str, Any]) -> int:
        result = await deps['command_handler'].clear_cache()
        if not result.ok:
            deps['ui'].display_classified_error(result.error)
            return 1
        deps['ui'].display_info("Cache cleared successfully.")
        return 0

    run_command(action)


@app.command(name="queue-stats")
def queue_stats_command():
    """Show request queue statistics for this session."""

    async def action(deps: Dict[str, Any]) -> int:
        stats = deps['command_handler'].get_queue_stats()
        values = dataclasses.asdict(stats)
        values['failure_rate'] = f"{stats.failure_rate:.1f}%"
        deps['ui'].display_stats("Request queue", values)
        return 0

    run_command(action)


@app.command(name="errors")
def errors_command(limit: LimitOption = 20):
    """Show logged errors and the persisted critical errors."""

    async def action(deps: Dict[str, Any]) -> int:
        handler: CommandHandler = deps['command_handler']
        deps['ui'].display_error_log(handler.get_error_log(limit or None))
        deps['ui'].display_critical_errors(handler.get_critical_errors())
        return 0

    run_command(action)


@app.command(name="clear-errors")
def clear_errors_command():
    """Clear the error logs, including persisted critical errors."""

    async def action(deps: Dict[str, Any]) -> int:
        deps['command_handler'].clear_error_log()
        deps['ui'].display_info("Error log cleared.")
        return 0

    run_command(action)


@app.command()
def health():
    """Run a health check over the cache, the queue and the error log."""

    async def action(deps: Dict[str, Any]) -> int:
        report = await deps['command_handler'].get_health_status()
        deps['ui'].display_health(report)
        return 0

    run_command(action)


@app.command()
def maintain():
    """Remove expired cache entries and repair corrupted ones."""

    async def action(deps: Dict[str, Any]) -> int:
        report = await deps['command_handler'].run_maintenance()
        deps['ui'].display_stats("Cache maintenance", {
            "expired_removed": report.expired_removed,
            "invalid_found": report.validation.invalid,
            "repaired": report.validation.repaired,
            "total_items": report.stats.total_items,
            "total_size_bytes": report.stats.total_size_bytes,
        })
        return 0

    run_command(action)


def cli_entry_point():
    """Function called by the script entry point defined in pyproject.toml."""
    app()


if __name__ == "__main__":
    cli_entry_point()
