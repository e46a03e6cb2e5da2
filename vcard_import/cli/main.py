"""
Command-line interface for vcard_import.

Provides CLI commands for managing vCard sources and importing them into the
local address book.

Usage:
    # Show help
    vcard-import --help

    # Configure sources
    vcard-import sources add "Team" https://example.com/team.vcf
    vcard-import sources add "Intranet" https://intra.example.com/all.vcf \\
        --auth-method PostForm --login-url https://intra.example.com/login \\
        --username alice --password secret
    vcard-import sources list

    # Check a source for changes without importing
    vcard-import check "Team"

    # Import all enabled sources
    vcard-import import
"""

import sys
import threading
from pathlib import Path
from typing import Any, Optional

import click

from vcard_import import __version__
from vcard_import.cli.formatters import (
    format_import_result,
    format_progress,
    show_differences,
    show_sources,
)
from vcard_import.config.generator import save_config_file
from vcard_import.config.loader import DEFAULT_CONFIG_FILE as CONFIG_FILE_NAME
from vcard_import.config.loader import ConfigError, ConfigLoader
from vcard_import.config.sources import SourceConfigError, SourceStore, VCardSource
from vcard_import.errors import VCardImportError
from vcard_import.net.connection import URLConnection
from vcard_import.net.http import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_REQUEST_TIMEOUT,
    VCARD_HTTP_HEADERS,
    AuthenticationMethod,
)
from vcard_import.net.stamp import Freshness, check_freshness
from vcard_import.storage.address_book import AddressBook
from vcard_import.sync.importer import ImportCallbacks, VCardImporter
from vcard_import.sync.progress import (
    ImportProgress,
    Phase,
    apply_ratio,
    describe_progress,
    download_ratio,
    resolve_ratio,
)
from vcard_import.utils import DEFAULT_CONFIG_DIR, resolve_config_dir
from vcard_import.utils.logging import (
    DEFAULT_LOG_RETENTION,
    LOG_DIR_NAME,
    cleanup_old_logs,
    get_logger,
    setup_logging,
)
from vcard_import.utils.paths import (
    DEFAULT_ADDRESS_BOOK_FILE,
    DEFAULT_SOURCES_FILE,
    resolve_data_file,
)
from vcard_import.utils.queue_execution import ImmediateQueue, main_queue

# Default configuration file
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / CONFIG_FILE_NAME

AUTH_METHOD_CHOICES = [method.value for method in AuthenticationMethod]


def get_config_dir(config_dir: Optional[str]) -> Path:
    """Get the configuration directory path."""
    return resolve_config_dir(config_dir)


def get_config_file(config_file: Optional[str], config_dir: Path) -> Path:
    """Get the configuration file path."""
    if config_file:
        return Path(config_file)
    return config_dir / CONFIG_FILE_NAME


def get_sources_path(ctx: click.Context) -> Path:
    return resolve_data_file(
        ctx.obj["config_dir"], ctx.obj["config"].get("sources_file"), DEFAULT_SOURCES_FILE
    )


def get_address_book_path(ctx: click.Context) -> Path:
    return resolve_data_file(
        ctx.obj["config_dir"],
        ctx.obj["config"].get("address_book_path"),
        DEFAULT_ADDRESS_BOOK_FILE,
    )


def make_connection(ctx: click.Context) -> URLConnection:
    config = ctx.obj["config"]
    return URLConnection(
        timeout=config.get("request_timeout", DEFAULT_REQUEST_TIMEOUT),
        chunk_size=config.get("download_chunk_size", DEFAULT_CHUNK_SIZE),
    )


def load_store(ctx: click.Context) -> SourceStore:
    """Load the source store, exiting with an error message on failure."""
    try:
        return SourceStore(get_sources_path(ctx)).load()
    except SourceConfigError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


def find_source(store: SourceStore, name: str) -> VCardSource:
    """Find a source by name or id, exiting with an error message if unknown."""
    source = store.find(name)
    if source is None:
        click.echo(click.style(f"Error: Unknown source: {name}", fg="red"), err=True)
        sys.exit(1)
    return source


def save_store(store: SourceStore) -> None:
    try:
        store.save()
    except SourceConfigError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="vcard-import")
@click.option(
    "--verbose", "-v", is_flag=True, help="Enable verbose output with detailed logging."
)
@click.option(
    "--config-dir",
    "-c",
    type=click.Path(exists=False, file_okay=False, dir_okay=True),
    envvar="VCARD_IMPORT_CONFIG_DIR",
    help="Configuration directory path (default: ~/.vcard-import).",
)
@click.option(
    "--config-file",
    "-f",
    type=click.Path(exists=False, file_okay=True, dir_okay=False),
    envvar="VCARD_IMPORT_CONFIG_FILE",
    help="Configuration file path (default: ~/.vcard-import/config.yaml).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    config_dir: Optional[str],
    config_file: Optional[str],
) -> None:
    """
    Import remote vCard files into a local address book.

    Each configured source is checked for changes, downloaded when changed
    and merged into the address book. Existing values are never overwritten
    or removed; only missing values and new entries are added.
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
        # Allow the CLI to work without a usable config file
        click.echo(
            click.style(f"Warning: Configuration error: {e}", fg="yellow"), err=True
        )
        config = {}

    ctx.obj["config"] = config

    # CLI flag takes precedence over config file
    effective_verbose = verbose or config.get("verbose", False)
    ctx.obj["verbose"] = effective_verbose

    if config.get("log_dir"):
        log_dir = Path(config["log_dir"]).expanduser()
    else:
        log_dir = resolved_config_dir / LOG_DIR_NAME

    setup_logging(verbose=effective_verbose, log_dir=log_dir, enable_file_logging=True)

    log_retention = config.get("log_retention_count", DEFAULT_LOG_RETENTION)
    if log_retention > 0:
        cleanup_old_logs(log_dir=log_dir, keep_count=log_retention)


# =============================================================================
# Init-Config Command
# =============================================================================


@cli.command("init-config")
@click.option(
    "--force", is_flag=True, help="Overwrite existing configuration file."
)
@click.pass_context
def init_config_command(ctx: click.Context, force: bool) -> None:
    """
    Generate a default configuration file.

    Examples:

        # Create config file (fails if already exists)
        vcard-import init-config

        # Overwrite existing config file
        vcard-import init-config --force
    """
    logger = get_logger(__name__)
    config_file = ctx.obj["config_file"]

    click.echo(f"Creating configuration file: {config_file}")

    success, error = save_config_file(config_file, overwrite=force)

    if success:
        click.echo(click.style("Configuration file created successfully!", fg="green"))
        click.echo(f"\nLocation: {config_file}")
        click.echo("\nNext steps:")
        click.echo("1. Edit the file to uncomment and configure desired options")
        click.echo("2. Add a source with 'vcard-import sources add NAME URL'")
    else:
        click.echo(click.style(f"Error: {error}", fg="red"), err=True)
        logger.error(f"Failed to create configuration file: {error}")
        sys.exit(1)


# =============================================================================
# Status Command
# =============================================================================


@cli.command("status")
@click.pass_context
def status_command(ctx: click.Context) -> None:
    """
    Show sources and address book status.

    Example:

        vcard-import status
    """
    logger = get_logger(__name__)
    config_dir = ctx.obj["config_dir"]
    store = load_store(ctx)

    click.echo("=== vCard Import Status ===\n")
    click.echo(f"Configuration directory: {config_dir}")
    click.echo(f"Sources file: {store.path}")
    click.echo(f"Sources: {store.count_enabled} enabled, {store.count_all} total")

    address_book_path = get_address_book_path(ctx)
    if address_book_path.exists():
        try:
            with AddressBook.open(address_book_path) as address_book:
                click.echo(f"Address book: {address_book.count_records()} records")
        except VCardImportError as e:
            logger.error(f"Cannot open address book: {e}")
            click.echo(click.style(f"Address book: {e}", fg="red"))
    else:
        click.echo("Address book: Not initialized (no imports performed yet)")

    if not store.is_empty:
        click.echo("\n=== Last Imports ===\n")
        for source in store:
            click.echo(f"{source.name}: {format_import_result(source.last_import_result)}")

    click.echo()
    if store.count_enabled:
        click.echo(click.style("Ready to import!", fg="green"))
        click.echo("Run 'vcard-import import' to import enabled sources.")
    else:
        click.echo(click.style("No enabled sources.", fg="yellow"))
        click.echo("Run 'vcard-import sources add NAME URL' to add one.")


# =============================================================================
# Import Command
# =============================================================================


@cli.command("import")
@click.option(
    "--source",
    "-s",
    "source_names",
    multiple=True,
    help="Import only this source (name or id). Can be given more than once.",
)
@click.option(
    "--show-changes", "-d", is_flag=True, help="Show added and changed records."
)
@click.pass_context
def import_command(
    ctx: click.Context, source_names: tuple[str, ...], show_changes: bool
) -> None:
    """
    Import vCard sources into the address book.

    Sources whose remote file is unchanged since their last import are
    skipped. The outcome of each source is recorded in the sources file.

    Examples:

        # Import all enabled sources
        vcard-import import

        # Import one source and list the changes
        vcard-import import --source Team --show-changes
    """
    logger = get_logger(__name__)
    verbose = ctx.obj["verbose"]
    store = load_store(ctx)

    if source_names:
        sources = [find_source(store, name) for name in source_names]
    else:
        sources = store.filter_enabled()

    if not sources:
        click.echo("No enabled sources to import.")
        return

    address_book_path = get_address_book_path(ctx)
    progress = ImportProgress([source.id for source in sources])
    phases: dict[str, Phase] = {}
    run_errors: list[BaseException] = []
    failed_sources: list[str] = []
    done = threading.Event()

    def show_progress(phase: Phase, ratio: float, source: VCardSource) -> None:
        overall = progress.in_progress(phase, ratio, source.id)
        # Echo once per phase, download chunks would flood the terminal
        if phases.get(source.id) is phase:
            return
        phases[source.id] = phase
        if verbose:
            click.echo(format_progress(overall, describe_progress(phase, source.name)))

    def on_source_complete(source, diff, stamp, error) -> None:
        main_queue().submit(show_progress, Phase.COMPLETE, 1.0, source)
        if error is not None:
            store.record_error(source, error)
            failed_sources.append(source.name)
            click.echo(click.style(f"{source.name}: Error: {error}", fg="red"))
        elif diff is None:
            store.record_unchanged(source)
            click.echo(f"{source.name}: Unchanged since last import")
        else:
            store.record_changed(source, diff.description, stamp)
            click.echo(click.style(f"{source.name}: {diff.description}", fg="green"))
            if show_changes:
                show_differences(diff)

    def on_complete(error) -> None:
        if error is not None:
            run_errors.append(error)
        done.set()

    callbacks = ImportCallbacks(
        on_source_download=lambda source, p: show_progress(
            Phase.DOWNLOAD, download_ratio(p), source
        ),
        on_source_complete=on_source_complete,
        on_complete=on_complete,
        on_source_resolve_records=lambda source, p: show_progress(
            Phase.RESOLVE_RECORDS, resolve_ratio(p), source
        ),
        on_source_apply_records=lambda source, p: show_progress(
            Phase.APPLY_RECORDS, apply_ratio(p), source
        ),
    )

    click.echo(f"Importing {len(sources)} sources...")
    connection = make_connection(ctx)
    # Results are recorded on the worker thread; the store is untouched here
    # until the run is over
    importer = VCardImporter(
        callbacks=callbacks,
        connection=connection,
        open_address_book=lambda: AddressBook.open(address_book_path),
        callback_queue=ImmediateQueue(),
        progress_queue=main_queue(),
    )
    try:
        importer.import_from(sources).result()
        done.wait()
        # Drain pending progress output
        main_queue().submit(lambda: None).result()
    finally:
        importer.shutdown()
        connection.close()

    if run_errors:
        logger.error(f"Import failed: {run_errors[0]}")
        click.echo(click.style(f"Import failed: {run_errors[0]}", fg="red"), err=True)
        sys.exit(1)

    save_store(store)

    if failed_sources:
        click.echo(
            click.style(
                f"\n{len(failed_sources)} of {len(sources)} sources failed: "
                f"{', '.join(failed_sources)}",
                fg="yellow",
            )
        )
        sys.exit(1)

    click.echo(click.style("\nImport complete!", fg="green"))


# =============================================================================
# Check Command
# =============================================================================


@cli.command("check")
@click.argument("name")
@click.pass_context
def check_command(ctx: click.Context, name: str) -> None:
    """
    Check whether a source changed since its last import.

    Only the headers of the remote file are requested; nothing is downloaded
    or imported.

    Example:

        vcard-import check Team
    """
    logger = get_logger(__name__)
    store = load_store(ctx)
    source = find_source(store, name)

    with make_connection(ctx) as connection:
        try:
            response = connection.head(
                source.connection, headers=VCARD_HTTP_HEADERS
            ).get()
        except VCardImportError as e:
            logger.error(f"Check of {source.name} failed: {e}")
            click.echo(click.style(f"{source.name}: Error: {e}", fg="red"), err=True)
            sys.exit(1)

    freshness, stamp = check_freshness(source.last_stamp, response.headers)
    if freshness is Freshness.UNCHANGED:
        click.echo(f"{source.name}: Unchanged since last import ({stamp})")
    elif stamp is None:
        click.echo(
            click.style(
                f"{source.name}: Server sends no cache validators, "
                "the file is imported every time",
                fg="yellow",
            )
        )
    else:
        click.echo(click.style(f"{source.name}: Changed ({stamp})", fg="green"))


# =============================================================================
# Sources Commands
# =============================================================================


@cli.group("sources")
@click.pass_context
def sources_group(ctx: click.Context) -> None:
    """
    Manage vCard sources.

    Examples:

        vcard-import sources list
        vcard-import sources add Team https://example.com/team.vcf
        vcard-import sources disable Team
        vcard-import sources remove Team --yes
    """
    pass


@sources_group.command("list")
@click.pass_context
def sources_list_command(ctx: click.Context) -> None:
    """List configured sources in import order."""
    store = load_store(ctx)
    if store.is_empty:
        click.echo("No sources configured.")
        click.echo("Run 'vcard-import sources add NAME URL' to add one.")
        return
    show_sources(list(store))


@sources_group.command("add")
@click.argument("name")
@click.argument("url")
@click.option(
    "--auth-method",
    type=click.Choice(AUTH_METHOD_CHOICES),
    default=AuthenticationMethod.BASIC_AUTH.value,
    show_default=True,
    help="How to authenticate when a username is given.",
)
@click.option("--username", "-u", default="", help="Username for the source.")
@click.option("--password", "-p", default="", help="Password for the source.")
@click.option("--login-url", default=None, help="Login form URL for PostForm.")
@click.option("--disabled", is_flag=True, help="Add the source disabled.")
@click.pass_context
def sources_add_command(
    ctx: click.Context,
    name: str,
    url: str,
    auth_method: str,
    username: str,
    password: str,
    login_url: Optional[str],
    disabled: bool,
) -> None:
    """
    Add a vCard source.

    Examples:

        vcard-import sources add Team https://example.com/team.vcf

        vcard-import sources add Intranet https://intra.example.com/all.vcf \\
            --auth-method PostForm --login-url https://intra.example.com/login \\
            --username alice --password secret
    """
    store = load_store(ctx)

    if store.find(name) is not None:
        click.echo(click.style(f"Error: Source already exists: {name}", fg="red"), err=True)
        sys.exit(1)

    try:
        source = VCardSource.create(
            name,
            url,
            auth_method=AuthenticationMethod(auth_method),
            username=username,
            password=password,
            login_url=login_url,
            is_enabled=not disabled,
        )
        store.add(source)
    except SourceConfigError as e:
        click.echo(click.style(f"Error: {e}", fg="red"), err=True)
        sys.exit(1)

    save_store(store)
    click.echo(click.style(f"Added source: {source.name}", fg="green"))


@sources_group.command("remove")
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation prompt.")
@click.pass_context
def sources_remove_command(ctx: click.Context, name: str, yes: bool) -> None:
    """Remove a vCard source. Imported records stay in the address book."""
    store = load_store(ctx)
    source = find_source(store, name)

    if not yes:
        click.confirm(f"Remove source {source.name}?", abort=True)

    index = store.index_of(source)
    if index is not None:
        store.remove(index)
    save_store(store)
    click.echo(f"Removed source: {source.name}")


@sources_group.command("enable")
@click.argument("name")
@click.pass_context
def sources_enable_command(ctx: click.Context, name: str) -> None:
    """Enable a vCard source."""
    _set_enabled(ctx, name, True)


@sources_group.command("disable")
@click.argument("name")
@click.pass_context
def sources_disable_command(ctx: click.Context, name: str) -> None:
    """Disable a vCard source so that imports skip it."""
    _set_enabled(ctx, name, False)


def _set_enabled(ctx: click.Context, name: str, is_enabled: bool) -> None:
    store = load_store(ctx)
    source = find_source(store, name)
    store.update(source.with_enabled(is_enabled))
    save_store(store)
    state = "Enabled" if is_enabled else "Disabled"
    click.echo(f"{state} source: {source.name}")
