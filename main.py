#!/usr/bin/env python3
"""
SkillFeed - Source Ingestion Core
=================================

Main application entry point with CLI interface for management and testing.

Usage:
    python main.py --help                      # Show all commands
    python main.py check-config                # Validate configuration
    python main.py init-db                     # Initialize database
    python main.py add-source ID URL           # Register a source
    python main.py status                      # Show source health
    python main.py tick                        # Run one scheduler tick
    python main.py run                         # Run the scheduler service
    python main.py generate-skill ID           # Generate a skill now
    python main.py reactivate ID               # Re-enable a disabled source
"""

import sys
import asyncio
import logging
import signal
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from skillfeed.config.settings import get_settings
from skillfeed.database.connection import DatabaseConnection
from skillfeed.database.models import SourceStatus, SourceType
from skillfeed.database.schema import DatabaseSchema
from skillfeed.service import IngestionService
from skillfeed.utils.logging import configure_application_logging
from skillfeed.utils.exceptions import SkillFeedError, get_user_friendly_message

console = Console()
logger = logging.getLogger(__name__)

STATUS_STYLES = {
    SourceStatus.HEALTHY: "green",
    SourceStatus.DEGRADED: "yellow",
    SourceStatus.FAILING: "red",
    SourceStatus.DISABLED: "dim",
}


def _setup_logging(debug: bool) -> None:
    settings = get_settings()
    configure_application_logging(
        log_level="DEBUG" if debug else settings.get_effective_log_level(),
        log_file=settings.logging.file_path,
        enable_console=settings.logging.console_logging,
        structured_logging=settings.logging.structured_logging,
    )


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.pass_context
def cli(ctx, debug):
    """SkillFeed - LLM-assisted source ingestion."""
    ctx.ensure_object(dict)
    ctx.obj['debug'] = debug

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command()
def check_config():
    """Validate environment configuration."""
    console.print("[bold blue]🔧 Checking SkillFeed Configuration[/bold blue]")

    try:
        settings = get_settings()
    except SkillFeedError as e:
        console.print(f"[bold red]❌ Configuration error: {e}[/bold red]")
        sys.exit(1)

    table = Table(title="Configuration Status")
    table.add_column("Component", style="cyan")
    table.add_column("Status", style="green")
    table.add_column("Details")

    checks = [
        ("Database", _check_database_config),
        ("Logging", _check_logging_config),
        ("LLM", _check_llm_config),
        ("Scheduler", _check_scheduler_config),
        ("Health Policy", _check_health_config),
    ]

    all_passed = True
    for name, check_func in checks:
        status, details = check_func(settings)
        table.add_row(name, "✅ Valid" if status else "⚠️ Warning", details)
        if not status:
            all_passed = False

    console.print(table)

    if all_passed:
        console.print("[bold green]✅ All configuration checks passed![/bold green]")
    else:
        console.print("[yellow]⚠️ Configuration has warnings, see above[/yellow]")


@cli.command()
def init_db():
    """Initialize database with schema."""
    console.print("[bold blue]🗄️ Initializing SkillFeed Database[/bold blue]")

    try:
        settings = get_settings()
        Path(settings.database.path).parent.mkdir(parents=True, exist_ok=True)

        schema = DatabaseSchema(settings.database.path)
        schema.create_tables()

        if not schema.verify_schema():
            console.print("[bold red]❌ Database schema verification failed[/bold red]")
            sys.exit(1)

        console.print("[bold green]✅ Database initialized successfully![/bold green]")

        db = DatabaseConnection(settings.database.path, settings.database.pool_size)
        info = db.get_database_info()
        db.close_all_connections()

        info_table = Table(title="Database Information")
        info_table.add_column("Property", style="cyan")
        info_table.add_column("Value", style="green")
        info_table.add_row("Database Path", settings.database.path)
        info_table.add_row("Size", f"{info['database_size_mb']:.2f} MB")
        for table_name, count in info['table_counts'].items():
            info_table.add_row(f"{table_name} rows", str(count))
        console.print(info_table)

    except SkillFeedError as e:
        console.print(f"[bold red]❌ Database initialization error: {e}[/bold red]")
        sys.exit(1)


@cli.command()
@click.argument('source_id')
@click.argument('url')
@click.option('--name', help='Display name')
@click.option('--feed', 'is_feed', is_flag=True, help='URL is an RSS/Atom feed')
@click.option('--feed-url', help='Syndication feed discovered for a web source')
@click.option('--render', is_flag=True, help='Page needs a headless browser')
@click.option('--interval', type=int, help='Fetch interval in minutes')
def add_source(source_id, url, name, is_feed, feed_url, render, interval):
    """Register a new source."""

    async def run_add():
        service = IngestionService()
        try:
            source = service.add_source(
                source_id,
                url,
                name=name,
                source_type=SourceType.FEED if is_feed else SourceType.WEB,
                feed_url=feed_url,
                render=render,
                fetch_interval_minutes=interval,
            )
            console.print(f"[bold green]✅ Registered {source.id} ({source.type.value})[/bold green]")
        finally:
            await service.close()

    _run(run_add())


@cli.command()
def status():
    """Show health of every registered source."""

    async def run_status():
        service = IngestionService()
        try:
            snapshots = service.list_health()
            if not snapshots:
                console.print("[yellow]No sources registered[/yellow]")
                return

            table = Table(title="Source Health")
            table.add_column("Source", style="cyan")
            table.add_column("Status")
            table.add_column("Failures", justify="right")
            table.add_column("Last Attempt")
            table.add_column("Last Error")
            table.add_column("Backoff Until")
            table.add_column("Skill", justify="right")

            for snapshot in snapshots:
                source = service.store.load(snapshot.source_id)
                style = STATUS_STYLES[snapshot.status]
                table.add_row(
                    snapshot.source_id,
                    f"[{style}]{snapshot.status.value}[/{style}]",
                    str(snapshot.consecutive_failures),
                    snapshot.last_attempt.strftime("%Y-%m-%d %H:%M") if snapshot.last_attempt else "never",
                    snapshot.last_error.value if snapshot.last_error else "",
                    snapshot.backoff_until.strftime("%Y-%m-%d %H:%M") if snapshot.backoff_until else "",
                    f"v{source.active_skill_version}" if source and source.active_skill_version else "-",
                )
            console.print(table)
        finally:
            await service.close()

    _run(run_status())


@cli.command()
@click.pass_context
def tick(ctx):
    """Run one scheduler tick and wait for its jobs."""
    _setup_logging(ctx.obj.get('debug'))

    async def run_tick():
        service = IngestionService()
        try:
            results = await service.scheduler.run_once()
            if not results:
                console.print("[yellow]No sources due[/yellow]")
                return

            table = Table(title="Job Results")
            table.add_column("Source", style="cyan")
            table.add_column("Strategy")
            table.add_column("Outcome")
            table.add_column("New Articles", justify="right")
            table.add_column("Duration", justify="right")
            for result in results:
                outcome = "✅ success" if result.succeeded else f"❌ {result.error_kind.value}"
                table.add_row(
                    result.source_id,
                    result.strategy.value,
                    outcome,
                    str(len(result.produced_article_ids)),
                    f"{result.duration:.1f}s",
                )
            console.print(table)
        finally:
            await service.close()

    _run(run_tick())


@cli.command()
@click.pass_context
def run(ctx):
    """Run the scheduler until interrupted."""
    _setup_logging(ctx.obj.get('debug'))
    console.print("[bold blue]🚀 Starting SkillFeed scheduler[/bold blue]")

    async def run_service():
        service = IngestionService()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        try:
            await service.scheduler.start()
            await stop_event.wait()
            console.print("\n[yellow]⏳ Stopping, waiting for in-flight jobs...[/yellow]")
        finally:
            await service.close()
        console.print("[bold green]👋 Scheduler stopped[/bold green]")

    _run(run_service())


@cli.command()
@click.argument('source_id')
@click.option('--sample', 'samples', multiple=True, help='Sample article URL (repeatable)')
@click.pass_context
def generate_skill(ctx, source_id, samples):
    """Generate and publish a skill for a web source now."""
    _setup_logging(ctx.obj.get('debug'))
    console.print(f"[bold blue]🧠 Generating skill for {source_id}[/bold blue]")

    async def run_generate():
        service = IngestionService()
        try:
            skill = await service.generate_skill(source_id, list(samples) or None)
            validation = skill.validation
            console.print(f"[bold green]✅ Published skill v{skill.version}[/bold green]")

            table = Table(title=f"Skill v{skill.version} Rules")
            table.add_column("Field", style="cyan")
            table.add_column("Selector")
            table.add_column("Transform")
            for rule in skill.ruleset.rules:
                table.add_row(rule.field.value, rule.selector, rule.transform.value)
            console.print(table)
            if skill.ruleset.link_selector:
                console.print(f"Link selector: [green]{skill.ruleset.link_selector}[/green]")
            console.print(
                f"Validation: {validation.samples_passed}/{validation.samples_total} samples, "
                f"field coverage {validation.extracted_field_coverage:.0%}"
            )
        finally:
            await service.close()

    _run(run_generate())


@cli.command()
@click.argument('source_id')
def reactivate(source_id):
    """Re-enable a disabled source."""

    async def run_reactivate():
        service = IngestionService()
        try:
            source = service.reactivate(source_id)
            console.print(f"[bold green]✅ {source.id} is {source.status.value}[/bold green]")
        finally:
            await service.close()

    _run(run_reactivate())


def _run(coro) -> None:
    try:
        asyncio.run(coro)
    except SkillFeedError as e:
        console.print(f"[bold red]❌ {get_user_friendly_message(e)}: {e}[/bold red]")
        sys.exit(1)


def _check_database_config(settings) -> tuple:
    """Check database configuration."""
    db_path = Path(settings.database.path)
    if db_path.exists():
        return True, f"Path: {db_path}, Size: {db_path.stat().st_size / 1024:.1f}KB"
    return True, f"Path: {db_path} (will be created)"


def _check_logging_config(settings) -> tuple:
    """Check logging configuration."""
    return True, f"Level: {settings.logging.level.value}, File: {settings.logging.file_path or 'none'}"


def _check_llm_config(settings) -> tuple:
    """Check LLM configuration."""
    if not settings.has_llm_credentials():
        return False, "No API key, web sources without a skill will use the generic fallback"
    return True, f"Provider: {settings.llm.provider.value}, Model: {settings.llm.model}"


def _check_scheduler_config(settings) -> tuple:
    """Check scheduler configuration."""
    scheduler = settings.scheduler
    return True, (
        f"Tick: {scheduler.tick_interval_seconds}s, Jobs: {scheduler.max_concurrent_jobs}, "
        f"Timeout: {scheduler.job_timeout_seconds}s"
    )


def _check_health_config(settings) -> tuple:
    """Check health policy configuration."""
    health = settings.health
    return True, (
        f"Degraded/failing/disabled after {health.degraded_after}/"
        f"{health.failing_after}/{health.disabled_after} failures, "
        f"backoff cap {health.backoff_cap_seconds:.0f}s"
    )


if __name__ == "__main__":
    try:
        cli()
    except KeyboardInterrupt:
        console.print("\n[yellow]👋 SkillFeed interrupted by user[/yellow]")
        sys.exit(130)
