"""Command-line tool for managing feature flags.

Usage:
    feature-flags list
    feature-flags set enablePayments=true enableExperimentalUI=false
    feature-flags cleanup --days 14

Every command exits with code 1 on any error and 0 on success.
"""

import dataclasses
from typing import Dict, Tuple

import click

from config import configure_logging, get_settings_obj
from logic.validation import parse_flag_assignment, validate_max_age_days
from services.feature_flag_service import FeatureFlagService

CLI_USER = "cli"


def _print_flags(flags: Dict[str, bool]) -> None:
    for key, value in flags.items():
        click.echo(f"{click.style(key, fg='blue')}: {click.style(str(value).lower(), fg='green')}")


def _fail(message: str, error: Exception) -> None:
    click.secho(f"{message} {error}", fg="red", err=True)
    raise SystemExit(1)


@click.group(name="feature-flags")
@click.version_option("1.0.0")
@click.option(
    "--flags-file",
    envvar="FEATURE_FLAGS_PATH",
    type=click.Path(dir_okay=False),
    help="Path to the flags JSON document.",
)
@click.option(
    "--change-log",
    envvar="FEATURE_FLAGS_CHANGE_LOG",
    type=click.Path(dir_okay=False),
    help="Path to the flag change log.",
)
@click.pass_context
def cli(ctx: click.Context, flags_file: str, change_log: str) -> None:
    """CLI tool for managing feature flags."""
    settings = get_settings_obj()
    configure_logging(settings.LOG_LEVEL)
    if flags_file:
        settings = dataclasses.replace(settings, FEATURE_FLAGS_PATH=flags_file)
    if change_log:
        settings = dataclasses.replace(settings, FEATURE_FLAGS_CHANGE_LOG=change_log)
    ctx.obj = FeatureFlagService.from_settings(settings)


@cli.command("list")
@click.pass_obj
def list_flags(service: FeatureFlagService) -> None:
    """List all feature flags and their current values."""
    try:
        flags = service.get_flags()
    except (OSError, ValueError) as e:
        _fail("Error fetching feature flags:", e)

    click.echo("\nCurrent Feature Flags:")
    click.echo("=====================")
    _print_flags(flags)


@cli.command("set")
@click.argument("assignments", nargs=-1, required=True)
@click.pass_obj
def set_flags(service: FeatureFlagService, assignments: Tuple[str, ...]) -> None:
    """Set one or more feature flags, given as KEY=VALUE."""
    try:
        updates = dict(parse_flag_assignment(a) for a in assignments)
        service.update_flags(updates, user=CLI_USER)
    except (OSError, ValueError) as e:
        _fail("Error updating feature flags:", e)

    click.secho("\nFeature flags updated successfully:", fg="green")
    _print_flags(updates)


@cli.command("cleanup")
@click.option("-d", "--days", default="7", show_default=True, help="Maximum age of backups in days.")
@click.pass_obj
def cleanup(service: FeatureFlagService, days: str) -> None:
    """Clean up old feature flag backups."""
    try:
        max_age_days = validate_max_age_days(days)
        removed = service.cleanup_old_backups(max_age_days)
    except (OSError, ValueError) as e:
        _fail("Error cleaning up backups:", e)

    click.secho(
        f"\nSuccessfully cleaned up {len(removed)} backup(s) older than {max_age_days} days",
        fg="green",
    )


def main() -> None:
    cli()


if __name__ == "__main__":
    main()
