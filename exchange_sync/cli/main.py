"""
Command-line interface for exchange_sync.

Usage:
    # Show help
    exchange-sync --help

    # Create config.yaml and accounts.yaml
    exchange-sync init-config

    # Inspect configured accounts and their sync state
    exchange-sync accounts
    exchange-sync status

    # Run synchronization
    exchange-sync sync
    exchange-sync sync --account work --incremental

    # Background synchronization
    exchange-sync daemon start
"""

from __future__ import annotations

import asyncio
import json
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import click

from exchange_sync import __version__
from exchange_sync.api.errors import ExchangeSyncError
from exchange_sync.auth.tokens import (
    AccountTokenProvider,
    OAuth2TokenProvider,
    TokenStore,
)
from exchange_sync.config.accounts import (
    load_accounts,
    load_store_factory,
    read_password_envs,
    save_accounts,
)
from exchange_sync.config.generator import save_accounts_template, save_config_file
from exchange_sync.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigError,
    ConfigLoader,
    Settings,
)
from exchange_sync.storage.db import SyncDatabase
from exchange_sync.sync.account import Account, EntityType
from exchange_sync.sync.coordinator import AccountSyncResult, SyncCoordinator
from exchange_sync.utils import resolve_config_dir
from exchange_sync.utils.logging import cleanup_old_logs, get_logger, setup_logging
from exchange_sync.utils.timeutil import format_datetime


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_dir: Path, config_file: str | None) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file).expanduser()
    return config_dir / DEFAULT_CONFIG_FILE


def _error(message: str) -> None:
    click.echo(click.style(f"Error: {message}", fg="red"), err=True)


# =============================================================================
# Runtime wiring
# =============================================================================


@dataclass
class Runtime:
    """Everything a command needs to talk to the stores."""

    settings: Settings
    database: SyncDatabase
    coordinator: SyncCoordinator
    accounts: list[Account]

    def save_accounts(self) -> None:
        path = self.settings.accounts_path
        save_accounts(path, self.accounts, read_password_envs(path))

    def close(self) -> None:
        self.database.close()


def build_runtime(ctx: click.Context) -> Runtime:
    """
    Load accounts and wire the coordinator from the loaded configuration.

    Raises:
        ConfigError: If the accounts file or the store factory is invalid
    """
    settings: Settings = ctx.obj["settings"]
    accounts = load_accounts(settings.accounts_path)

    token_store = TokenStore(settings.config_dir)
    oauth2 = None
    if settings.oauth_client_id:
        oauth2 = OAuth2TokenProvider(
            client_id=settings.oauth_client_id,
            tenant=settings.oauth_tenant,
            refresh_margin=settings.token_refresh_margin,
            token_store=token_store,
        )
    token_provider = AccountTokenProvider(oauth2=oauth2)

    factory = load_store_factory(settings.store_factory)
    remote_store, local_store = factory()

    database = SyncDatabase(settings.database_path)
    database.initialize()

    coordinator = SyncCoordinator.build(
        remote_store,
        local_store,
        token_provider,
        database=database,
        max_retries=settings.max_retries,
        base_delay=settings.base_delay,
        page_delay=settings.page_delay,
        batch_sizes=settings.batch_sizes,
    )
    for account in accounts:
        token_store.load_into(account)
        coordinator.register_account(account)

    return Runtime(
        settings=settings,
        database=database,
        coordinator=coordinator,
        accounts=accounts,
    )


def _select_accounts(runtime: Runtime, account_id: Optional[str]) -> list[Account]:
    if account_id is None:
        return runtime.accounts
    selected = [a for a in runtime.accounts if a.id == account_id]
    if not selected:
        known = ", ".join(a.id for a in runtime.accounts) or "none configured"
        raise click.BadParameter(
            f"Unknown account '{account_id}' (known: {known})",
            param_hint="--account",
        )
    return selected


# =============================================================================
# CLI Group
# =============================================================================


@click.group()
@click.version_option(version=__version__, prog_name="exchange-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="EXCHANGE_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.exchange-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="EXCHANGE_SYNC_CONFIG_FILE",
    help="Configuration file path (default: <config-dir>/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: str | None,
    config_file: str | None,
) -> None:
    """
    Exchange / Office365 Sync.

    Mirrors mail, contacts and calendar events from Exchange accounts into
    local stores, and pushes local contact and calendar changes back.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(resolved_config_dir, config_file)
    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_and_validate(resolved_config_file)
    except ConfigError as e:
        # Commands still work with defaults
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    settings = Settings(config, resolved_config_dir)
    ctx.obj["config"] = config
    ctx.obj["settings"] = settings

    effective_verbose = verbose or settings.verbose
    ctx.obj["verbose"] = effective_verbose

    log_dir = settings.log_dir
    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)
    cleanup_old_logs(log_dir=log_dir, keep_count=settings.log_retention_count)


# =============================================================================
# Accounts / Status Commands
# =============================================================================


@cli.command("accounts")
@click.pass_context
def accounts_command(ctx: click.Context) -> None:
    """List configured accounts and which entity types they sync."""
    settings: Settings = ctx.obj["settings"]
    try:
        accounts = load_accounts(settings.accounts_path)
    except ConfigError as e:
        _error(str(e))
        sys.exit(1)

    if not accounts:
        click.echo(f"No accounts configured in {settings.accounts_path}")
        click.echo("Run 'exchange-sync init-config' to create an example file.")
        return

    for account in accounts:
        enabled = ", ".join(t.value for t in account.enabled_entity_types()) or "none"
        click.echo(click.style(f"{account.id}", bold=True) + f"  {account.email}")
        click.echo(f"  Name:     {account.display_name}")
        click.echo(f"  Auth:     {account.server.auth_method}")
        click.echo(f"  Syncs:    {enabled}")
        click.echo(f"  Interval: {account.sync_settings.sync_interval}s")


@cli.command("status")
@click.option("--account", "-a", "account_id", default=None, help="Account id.")
@click.option(
    "--check", is_flag=True, help="Also check each mailbox is reachable."
)
@click.pass_context
def status_command(
    ctx: click.Context, account_id: Optional[str], check: bool
) -> None:
    """
    Show last sync times, statistics and errors per account.
    """
    logger = get_logger(__name__)
    try:
        runtime = build_runtime(ctx)
    except (ConfigError, ExchangeSyncError) as e:
        _error(str(e))
        sys.exit(1)

    try:
        accounts = _select_accounts(runtime, account_id)
        click.echo("=== Exchange Sync Status ===\n")
        click.echo(f"Configuration directory: {ctx.obj['config_dir']}")
        click.echo(f"Sync database: {runtime.settings.database_path}")
        click.echo()

        if not accounts:
            click.echo("No accounts configured.")
            return

        for account in accounts:
            click.echo(click.style(f"{account.email} ({account.id})", bold=True))
            if check:
                if asyncio.run(runtime.coordinator.health_check(account.id)):
                    click.echo("  Connection: " + click.style("ok", fg="green"))
                else:
                    click.echo("  Connection: " + click.style("failed", fg="red"))
            states = runtime.database.get_account_states(account.id)
            for entity_type in EntityType:
                label = entity_type.value.capitalize()
                if not account.sync_settings.is_enabled(entity_type):
                    click.echo(f"  {label}: disabled")
                    continue
                row = states.get(entity_type.value)
                if row is None or row["last_sync_at"] is None:
                    status_text = "Never synced"
                else:
                    status_text = (
                        f"last sync {format_datetime(row['last_sync_at'])}, "
                        f"{row['total_synced']} synced, {row['errors']} errors"
                    )
                click.echo(f"  {label}: {status_text}")
                if row is not None and row["last_error"]:
                    click.echo(
                        click.style(f"    Last error: {row['last_error']}", fg="yellow")
                    )
            click.echo()
    except click.BadParameter:
        raise
    except Exception as e:
        logger.exception(f"Status check failed: {e}")
        _error(str(e))
        sys.exit(1)
    finally:
        runtime.close()


# =============================================================================
# Init Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force", is_flag=True, help="Overwrite existing configuration files."
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Create a documented config.yaml and an example accounts.yaml.
    """
    config_file: Path = ctx.obj["config_file"]
    settings: Settings = ctx.obj["settings"]

    click.echo(f"Creating configuration file: {config_file}")
    success, error = save_config_file(config_file, overwrite=force)
    if not success:
        _error(str(error))
        sys.exit(1)
    click.echo(click.style("Configuration file created successfully!", fg="green"))

    accounts_path = settings.accounts_path
    if force or not accounts_path.exists():
        success, error = save_accounts_template(accounts_path, overwrite=force)
        if not success:
            _error(str(error))
            sys.exit(1)
        click.echo(f"Created accounts file: {accounts_path}")

    click.echo("\nNext steps:")
    click.echo(f"1. Add your Exchange accounts to {accounts_path}")
    click.echo("2. Set oauth_client_id in the configuration for OAuth2 accounts")
    click.echo("3. Run 'exchange-sync sync'")


# =============================================================================
# Sync Command
# =============================================================================


def _print_result(result: AccountSyncResult, as_json: bool) -> None:
    if as_json:
        click.echo(json.dumps({result.account_id: result.as_dict()}, indent=2))
        return
    color = "green" if result.success else "red"
    click.echo(click.style(result.summary(), fg=color))
    click.echo()


@cli.command("sync")
@click.option(
    "--account", "-a", "account_id", default=None, help="Sync only this account id."
)
@click.option(
    "--incremental",
    "-i",
    is_flag=True,
    help="Only fetch changes since the last successful sync.",
)
@click.option(
    "--entity",
    "-e",
    "entities",
    multiple=True,
    type=click.Choice([t.value for t in EntityType]),
    help="Restrict to an entity type (repeatable).",
)
@click.option("--json", "as_json", is_flag=True, help="Print results as JSON.")
@click.pass_context
def sync_command(
    ctx: click.Context,
    account_id: Optional[str],
    incremental: bool,
    entities: tuple[str, ...],
    as_json: bool,
) -> None:
    """
    Synchronize configured accounts.

    Each account's enabled entity types sync concurrently. The command exits
    with status 1 if any entity sync failed outright.

    Examples:

        exchange-sync sync

        exchange-sync sync --account work --incremental

        exchange-sync sync -e contacts -e calendar
    """
    logger = get_logger(__name__)
    try:
        runtime = build_runtime(ctx)
    except (ConfigError, ExchangeSyncError) as e:
        _error(str(e))
        sys.exit(1)

    try:
        accounts = _select_accounts(runtime, account_id)
        if not accounts:
            click.echo("No accounts configured.")
            return

        entity_types = [EntityType(e) for e in entities] or None

        async def run_all() -> list[AccountSyncResult]:
            return list(
                await asyncio.gather(
                    *(
                        runtime.coordinator.sync_account(
                            account.id,
                            incremental=incremental,
                            entity_types=entity_types,
                        )
                        for account in accounts
                    )
                )
            )

        results = asyncio.run(run_all())
        runtime.save_accounts()

        for result in results:
            _print_result(result, as_json)

        if not all(result.success for result in results):
            sys.exit(1)

    except click.BadParameter:
        raise
    except ExchangeSyncError as e:
        logger.error(f"Sync failed: {e}")
        _error(str(e))
        sys.exit(1)
    finally:
        runtime.close()


# =============================================================================
# Reset Command
# =============================================================================


@cli.command("reset")
@click.option(
    "--account", "-a", "account_id", default=None, help="Reset only this account id."
)
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation.")
@click.pass_context
def reset_command(ctx: click.Context, account_id: Optional[str], yes: bool) -> None:
    """
    Forget last sync times and statistics so the next sync is a full sync.

    Local and remote items are left untouched.
    """
    try:
        runtime = build_runtime(ctx)
    except (ConfigError, ExchangeSyncError) as e:
        _error(str(e))
        sys.exit(1)

    try:
        accounts = _select_accounts(runtime, account_id)
        target = account_id or "all accounts"
        if not yes and not click.confirm(f"Reset sync state for {target}?"):
            click.echo("Aborted.")
            return

        if account_id is None:
            runtime.database.clear_all_state()
        for account in accounts:
            runtime.database.clear_account_state(account.id)
            for entity_type in EntityType:
                account.last_sync.set(entity_type, None)
        runtime.save_accounts()
        click.echo(click.style(f"Sync state reset for {target}.", fg="green"))
    finally:
        runtime.close()


# =============================================================================
# Daemon Commands
# =============================================================================


@cli.group("daemon")
@click.pass_context
def daemon_group(ctx: click.Context) -> None:
    """
    Manage background synchronization daemon.

    Each account syncs on its own sync_interval from accounts.yaml.

    Examples:

        # Start daemon (runs until SIGTERM/SIGINT)
        exchange-sync daemon start

        # Override every account's interval
        exchange-sync daemon start --interval 30m

        exchange-sync daemon status

        exchange-sync daemon stop
    """
    pass


@daemon_group.command("start")
@click.option(
    "--interval",
    "-i",
    default=None,
    help="Override every account's interval (e.g. '30s', '5m', '1h').",
)
@click.option(
    "--incremental",
    is_flag=True,
    help="Run incremental syncs after the first cycle's full sync.",
)
@click.option(
    "--no-initial-sync",
    is_flag=True,
    help="Skip the initial sync on daemon startup.",
)
@click.pass_context
def daemon_start_command(
    ctx: click.Context,
    interval: Optional[str],
    incremental: bool,
    no_initial_sync: bool,
) -> None:
    """
    Start the synchronization daemon in the foreground.

    The daemon will:
    - Sync each account on startup (unless --no-initial-sync)
    - Continue syncing each account at its own interval
    - Handle SIGTERM/SIGINT for graceful shutdown
    - Write a PID file for daemon management
    """
    from exchange_sync.daemon import (
        DaemonAlreadyRunningError,
        DaemonError,
        SyncScheduler,
        parse_interval,
    )

    logger = get_logger(__name__)

    interval_seconds = None
    if interval is not None:
        try:
            interval_seconds = parse_interval(interval)
        except ValueError as e:
            _error(str(e))
            sys.exit(1)

    try:
        runtime = build_runtime(ctx)
    except (ConfigError, ExchangeSyncError) as e:
        _error(str(e))
        sys.exit(1)

    if interval_seconds is not None:
        for account in runtime.accounts:
            account.sync_settings.sync_interval = interval_seconds

    def on_result(result: AccountSyncResult) -> None:
        runtime.save_accounts()

    scheduler = SyncScheduler(
        runtime.coordinator,
        pid_file=runtime.settings.pid_file,
        run_immediately=not no_initial_sync,
        incremental=incremental,
        on_result=on_result,
    )

    click.echo(f"Starting daemon for {len(runtime.accounts)} account(s)...")
    click.echo("Press Ctrl+C to stop")
    if ctx.obj["verbose"]:
        for account in runtime.accounts:
            click.echo(
                f"  {account.id}: every {account.sync_settings.sync_interval}s"
            )

    try:
        asyncio.run(scheduler.run())
        click.echo(click.style("\nDaemon stopped gracefully.", fg="green"))

    except DaemonAlreadyRunningError as e:
        _error(str(e))
        click.echo("Use 'exchange-sync daemon stop' to stop the running daemon.")
        sys.exit(1)

    except DaemonError as e:
        logger.error(f"Daemon error: {e}")
        _error(f"Daemon error: {e}")
        sys.exit(1)

    finally:
        runtime.close()


@daemon_group.command("stop")
@click.pass_context
def daemon_stop_command(ctx: click.Context) -> None:
    """
    Stop the running synchronization daemon with SIGTERM.
    """
    from exchange_sync.daemon import PIDFileError, SyncScheduler

    settings: Settings = ctx.obj["settings"]
    try:
        if SyncScheduler.stop_running_daemon(settings.pid_file):
            click.echo(click.style("Stop signal sent to daemon.", fg="green"))
        else:
            click.echo("No running daemon found.")
    except PIDFileError as e:
        _error(str(e))
        sys.exit(1)


@daemon_group.command("status")
@click.pass_context
def daemon_status_command(ctx: click.Context) -> None:
    """
    Show whether the synchronization daemon is running.
    """
    from exchange_sync.daemon import PIDFileError, SyncScheduler

    settings: Settings = ctx.obj["settings"]
    try:
        pid = SyncScheduler.get_running_pid(settings.pid_file)
    except PIDFileError as e:
        _error(str(e))
        sys.exit(1)

    if pid is None:
        click.echo("Daemon is not running.")
    else:
        click.echo(click.style(f"Daemon is running (PID: {pid})", fg="green"))
        click.echo(f"PID file: {settings.pid_file}")
