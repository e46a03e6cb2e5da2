"""CLI output formatting functions.

This module contains functions for displaying vCard sources, import results
and progress on the command line.
"""

from typing import TYPE_CHECKING, Optional

import click

if TYPE_CHECKING:
    from vcard_import.config.sources import ImportResult, VCardSource
    from vcard_import.sync.differences import RecordDifferences


def format_import_result(result: Optional["ImportResult"]) -> str:
    """Format the latest import result of a source for display."""
    if result is None:
        return "Never imported"
    when = result.imported_at.strftime("%Y-%m-%d %H:%M")
    if result.is_success:
        return click.style(f"{when}: {result.message}", fg="green")
    return click.style(f"{when}: Error: {result.message}", fg="red")


def show_sources(sources: list["VCardSource"]) -> None:
    """
    Display the configured sources in order.

    Args:
        sources: Sources to display
    """
    for index, source in enumerate(sources, start=1):
        state = (
            click.style("enabled", fg="green")
            if source.is_enabled
            else click.style("disabled", fg="yellow")
        )
        click.echo(f"{index}. {source.name} [{state}]")
        click.echo(f"   URL: {source.connection.vcard_url}")
        if source.connection.has_credentials:
            click.echo(
                f"   Auth: {source.connection.auth_method.short_description} "
                f"as {source.connection.username}"
            )
        click.echo(f"   Last import: {format_import_result(source.last_import_result)}")


def show_differences(diff: "RecordDifferences", limit: int = 10) -> None:
    """
    Display the additions and changes of an import.

    Args:
        diff: Differences applied to the address book
        limit: Maximum entries shown per section
    """
    if diff.additions:
        click.echo("  Added:")
        for record in diff.additions[:limit]:
            click.echo(f"    + {record.name}")
        if diff.count_additions > limit:
            click.echo(f"    ... and {diff.count_additions - limit} more")

    if diff.changes:
        click.echo("  Changed:")
        for change_set in diff.changes[:limit]:
            click.echo(f"    ~ {change_set.describe()}")
        if diff.count_changes > limit:
            click.echo(f"    ... and {diff.count_changes - limit} more")


def format_progress(overall: float, text: str) -> str:
    return f"[{overall * 100:5.1f}%] {text}"
