"""
Command-line interface for member_sync.

Provides CLI commands for syncing the member directory from a HubSpot list,
testing a list connection, looking up member companies and checking status.

Usage:
    # Show help
    member-sync --help

    # Check a list and store its field mapping
    member-sync test-connection --list-id 4959

    # Sync selected members
    member-sync sync 42 43 44

    # Re-sync every member already in the directory
    member-sync sync --all-local --workers 4
"""

import json
import sys
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional

import click

from member_sync import __version__
from member_sync.config.generator import save_config_file
from member_sync.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigError,
    ConfigLoader,
    Settings,
)
from member_sync.operations import (
    OperationResponse,
    fetch_companies,
    open_database,
    sync_members,
    test_connection,
)
from member_sync.storage.db import ProfileStoreError
from member_sync.utils import resolve_config_dir
from member_sync.utils.logging import (
    cleanup_old_logs,
    get_logger,
    setup_audit_logger,
    setup_logging,
)


def get_config_dir(config_dir: str | None) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_file: str | None, config_dir: Path) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file)
    return config_dir / DEFAULT_CONFIG_FILE


def echo_response(response: OperationResponse) -> None:
    """Print an operation's JSON body and exit non-zero when it failed."""
    click.echo(json.dumps(response.body, indent=2))
    if not response.success:
        click.echo(
            click.style(
                f"Error ({response.status_code}): {response.body.get('error')}",
                fg="red",
            ),
            err=True,
        )
        sys.exit(1)


def run_cancellable(
    operation: Callable[[threading.Event], OperationResponse],
) -> OperationResponse:
    """
    Run an operation in a worker thread so Ctrl-C can cancel it cleanly.

    The first interrupt sets the cancel event; the operation then stops at
    its next page or member boundary and returns its partial result.
    """
    cancel_event = threading.Event()
    outcome: dict[str, OperationResponse] = {}

    def target() -> None:
        outcome["response"] = operation(cancel_event)

    worker = threading.Thread(target=target, name="member-sync", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        click.echo(
            click.style("Cancelling after the current member...", fg="yellow"),
            err=True,
        )
        cancel_event.set()
        worker.join()

    if "response" not in outcome:
        raise click.ClickException("Operation ended without a result")
    return outcome["response"]


def read_ids_file(path: Path) -> list[str]:
    """Read member ids, one per line; blank lines and # comments are ignored."""
    ids = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.split("#", 1)[0].strip()
        if line:
            ids.append(line)
    return ids


@click.group()
@click.version_option(version=__version__, prog_name="member-sync")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="MEMBER_SYNC_CONFIG_DIR",
    help="Configuration directory path (default: ~/.member-sync).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="MEMBER_SYNC_CONFIG_FILE",
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
    HubSpot Membership Directory Sync.

    Keeps the local member directory in step with a HubSpot list: members
    on the list are updated, members who left it are deactivated.
    """
    ctx.ensure_object(dict)

    resolved_config_dir = get_config_dir(config_dir)
    resolved_config_file = get_config_file(config_file, resolved_config_dir)

    ctx.obj["config_dir"] = resolved_config_dir
    ctx.obj["config_file"] = resolved_config_file

    config: dict[str, Any] = {}
    try:
        loader = ConfigLoader(config_dir=resolved_config_dir)
        config = loader.load_from_file(resolved_config_file)
        if config:
            loader.validate(config)
    except ConfigError as e:
        # Show error but don't fail - init-config must still work
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config
    ctx.obj["settings"] = Settings.from_config(config, config_dir=resolved_config_dir)

    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    log_dir = ctx.obj["settings"].log_dir
    ctx.obj["log_dir"] = log_dir

    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)

    log_retention = config.get("log_retention_count", 10)
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)


# =============================================================================
# Sync Command
# =============================================================================


@cli.command("sync")
@click.argument("member_ids", nargs=-1)
@click.option(
    "--all-local",
    is_flag=True,
    help="Sync every member already stored in the local directory.",
)
@click.option(
    "--ids-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Read member ids from a file, one per line.",
)
@click.option(
    "--workers",
    "-w",
    type=click.IntRange(min=1),
    default=None,
    help="Members reconciled in parallel (default: max_workers from config).",
)
@click.option(
    "--fail-fast",
    is_flag=True,
    help="Abort on the first member that cannot be stored.",
)
@click.pass_context
def sync_command(
    ctx: click.Context,
    member_ids: tuple[str, ...],
    all_local: bool,
    ids_file: Optional[Path],
    workers: Optional[int],
    fail_fast: bool,
) -> None:
    """
    Sync members from the configured HubSpot list.

    Each member found on the list is updated in the directory; members no
    longer on the list are marked inactive. The whole list is read before
    any member is changed. Press Ctrl-C to stop after the current member.

    Examples:

        # Sync three members
        member-sync sync 42 43 44

        # Sync ids from a file with four workers
        member-sync sync --ids-file members.txt --workers 4

        # Re-check every stored member, stopping at the first error
        member-sync sync --all-local --fail-fast
    """
    logger = get_logger(__name__)
    settings: Settings = ctx.obj["settings"]

    if workers is not None:
        settings.max_workers = workers
    if fail_fast:
        settings.fail_fast = True

    ids = list(member_ids)
    if ids_file:
        ids.extend(read_ids_file(ids_file))

    database = None
    try:
        database = open_database(settings)
        if all_local:
            ids.extend(database.list_record_ids())
    except ProfileStoreError as e:
        logger.error(f"Could not open profile database: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    setup_audit_logger()
    click.echo(f"Syncing {len(ids)} member(s)...", err=True)

    response = run_cancellable(
        lambda cancel_event: sync_members(
            ids, settings, database=database, cancel_event=cancel_event
        )
    )

    if response.success:
        summary = response.body["summary"]
        click.echo(
            click.style(
                f"Sync completed: {summary['updated']} updated, "
                f"{summary['deactivated']} deactivated",
                fg="green",
            ),
            err=True,
        )
    echo_response(response)


# =============================================================================
# Test-Connection Command
# =============================================================================


@cli.command("test-connection")
@click.option(
    "--list-id",
    "-l",
    default=None,
    help="HubSpot list id (default: list_id from config).",
)
@click.pass_context
def test_connection_command(ctx: click.Context, list_id: Optional[str]) -> None:
    """
    Check a HubSpot list and discover its field mapping.

    Reads the list's filters, matches them against directory fields and
    stores the mapping with the list settings.

    Example:

        member-sync test-connection --list-id 4959
    """
    settings: Settings = ctx.obj["settings"]
    response = test_connection(list_id or settings.list_id, settings)

    if response.success:
        click.echo(
            click.style(
                f"Connected to list {response.body['listId']} "
                f"({response.body['listName'] or 'unnamed'})",
                fg="green",
            ),
            err=True,
        )
    echo_response(response)


# =============================================================================
# Companies Command
# =============================================================================


@cli.command("companies")
@click.pass_context
def companies_command(ctx: click.Context) -> None:
    """
    List companies associated with the companies list's contacts.

    Lookups that fail are skipped; only a failure to read the list itself
    fails the command.

    Example:

        member-sync companies
    """
    settings: Settings = ctx.obj["settings"]
    response = run_cancellable(
        lambda cancel_event: fetch_companies(settings, cancel_event=cancel_event)
    )
    echo_response(response)


# =============================================================================
# Status Command
# =============================================================================


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """
    Show configuration and directory status.

    Example:

        member-sync status
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    settings: Settings = ctx.obj["settings"]

    click.echo("=== Member Directory Sync Status ===\n")
    click.echo(f"Configuration directory: {config_dir}")

    token_status = (
        "Set" if settings.api_key else click.style("Not set", fg="red")
    )
    click.echo(f"HubSpot token ({settings.api_key_env}): {token_status}")
    list_status = settings.list_id or click.style("Not configured", fg="yellow")
    click.echo(f"Members list: {list_status}")
    if settings.companies_list_id:
        click.echo(f"Companies list: {settings.companies_list_id}")
    click.echo()

    db_path = Path(settings.database_path)
    if not db_path.exists():
        click.echo("Profile database: Not initialized (no syncs performed yet)")
        return

    try:
        database = open_database(settings)
        counts = database.count_profiles()
        click.echo(f"Profile database: {db_path}")
        click.echo(
            f"Profiles: {counts['total']} "
            f"({counts['active']} active, {counts['inactive']} inactive)"
        )

        if settings.list_id:
            list_settings = database.get_list_settings(settings.list_id)
            if list_settings:
                click.echo(f"List name: {list_settings.get('list_name') or 'Unknown'}")
                click.echo(f"Last sync: {list_settings.get('last_sync_at') or 'Never'}")
                mapping = list_settings.get("field_mappings") or {}
                if mapping:
                    click.echo("Field mapping:")
                    for label, prop in mapping.items():
                        click.echo(f"  {label} -> {prop}")
            else:
                click.echo("Last sync: Never")
    except ProfileStoreError as e:
        logger.error(f"Error reading status: {e}")
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


# =============================================================================
# Init-Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force",
    "-f",
    is_flag=True,
    help="Overwrite existing configuration file if it exists.",
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Creates a configuration file with all available options documented
    and commented out.

    Examples:

        # Create config file (fails if already exists)
        member-sync init-config

        # Overwrite existing config file
        member-sync init-config --force
    """
    logger = get_logger(__name__)
    config_file = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        click.echo("\nNext steps:")
        click.echo("1. Set list_id in the file")
        click.echo("2. Export HUBSPOT_API_KEY with your private app token")
        click.echo("3. Run 'member-sync test-connection'")
        logger.info(f"Created configuration file: {config_file}")
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        logger.error(f"Failed to create configuration file: {error}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
