"""Main CLI entry point - Root command group with global options."""

import click

from repo_backup import __version__


@click.group()
@click.option('--config', '-c', default=None, help='Configuration file path (default: backup_config.json if present)')
@click.option('--verbose', '-v', is_flag=True, help='Show debug logging')
@click.version_option(version=__version__, prog_name='repo-backup')
@click.pass_context
def cli(ctx, config, verbose):
    """Repository backup - archive CodeCommit branches to S3.

    Every branch update is cloned, zipped and stored as
    {repository}/{branch}/{commit}_{timestamp}.zip in the backup bucket.

    Examples:
        # Run inside the build job (inputs come from the environment)
        python -m main run

        # Check a trigger event and show the job inputs it produces
        python -m main trigger event.json --dry-run

        # Show the trigger rule's event pattern
        python -m main event-pattern

        # List backups of a repository
        python -m main list my-repo --reference main

        # Apply the retention period to the bucket
        python -m main retention apply
    """
    ctx.ensure_object(dict)
    ctx.obj['config_path'] = config
    ctx.obj['verbose'] = verbose
    ctx.obj['config'] = None


def register_all_commands():
    """Register all command modules with the main CLI."""
    from cli import (
        backup_commands,
        event_commands,
        retention_commands,
        config_commands,
    )

    backup_commands.register_commands(cli)
    event_commands.register_commands(cli)
    retention_commands.register_commands(cli)
    config_commands.register_commands(cli)


# Register all commands when module is imported
register_all_commands()
