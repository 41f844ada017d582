"""
Command line for Archivist.

    archivist backup        create a one-off backup now
    archivist clean         remove old backups
    archivist cron          start the scheduler
    archivist list [-q]     list all the backups
"""

import atexit
import threading

import click
from flask import current_app
from flask.cli import FlaskGroup, with_appcontext

from archivist import get_settings
from archivist.backup.catalog import load_catalog
from archivist.backup.executor import execute_backup
from archivist.backup.retention import enforce_retention_policy
from archivist.backup.storage import StorageError, create_storage


@click.command('backup')
@with_appcontext
def backup_command():
    """Create a backup now."""
    result = execute_backup(get_settings(), one_off=True)

    if not result.succeeded:
        raise click.ClickException(result.error_message or f"Backup ended in state {result.state.value}")

    if result.skipped:
        click.echo(f"No changes since the last backup ({result.fingerprint})")
    else:
        click.echo(f"Uploaded {result.archive_name}")


@click.command('clean')
@with_appcontext
def clean_command():
    """Remove old backups."""
    settings = get_settings()

    try:
        summary = enforce_retention_policy(settings, create_storage(settings))
    except StorageError as e:
        raise click.ClickException(str(e))

    click.echo(f"Purged {len(summary['purged'])} of {summary['catalog_size']} backups")
    for error in summary['errors']:
        click.echo(click.style(error, fg='red'), err=True)

    if summary['errors']:
        raise click.exceptions.Exit(1)


@click.command('list')
@click.option('-q', '--quiet', is_flag=True, help="don't print empty message")
@with_appcontext
def list_command(quiet):
    """List all the backups."""
    settings = get_settings()

    try:
        catalog = load_catalog(create_storage(settings), settings.timezone)
    except StorageError as e:
        raise click.ClickException(str(e))

    if not catalog:
        if not quiet:
            click.echo('No backups to list')
        return

    click.echo('\n'.join(archive.display_name for archive in catalog))


@click.command('cron')
@with_appcontext
def cron_command():
    """Start the cron service."""
    from archivist.scheduler import init_scheduler, start_scheduler, stop_scheduler

    settings = get_settings()
    click.echo(
        f"Starting cron job with the "
        f"{click.style(settings.retention.strategy, fg='red')} cleaning strategy"
    )

    init_scheduler(current_app._get_current_object())
    start_scheduler()
    atexit.register(stop_scheduler)

    try:
        _wait_forever()
    except KeyboardInterrupt:
        pass
    finally:
        stop_scheduler()


def _wait_forever():
    threading.Event().wait()


def register_commands(app):
    """Attach the archivist commands to app.cli."""
    app.cli.add_command(backup_command)
    app.cli.add_command(clean_command)
    app.cli.add_command(list_command)
    app.cli.add_command(cron_command)


def _create_app():
    from archivist import create_app
    return create_app()


@click.group(cls=FlaskGroup, create_app=_create_app)
def main():
    """Archive a directory to S3 and prune old archives."""
