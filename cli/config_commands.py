"""Configuration management commands."""

from pathlib import Path

import click

from config import DEFAULT_CONFIG_PATH, create_default_config
from cli.utils import echo_json, get_config


def register_commands(cli):
    """Register config commands with main CLI."""

    @cli.group('config')
    @click.pass_context
    def config_group(ctx):
        """Configuration management commands."""
        pass

    @config_group.command('init')
    @click.option('--force', is_flag=True, help='Overwrite an existing file')
    @click.pass_context
    def init_config(ctx, force):
        """Create a default configuration file.

        Examples:
            # Create default backup_config.json
            python -m main config init

            # Create config at custom location
            python -m main --config my_config.json config init
        """
        config_path = ctx.obj['config_path'] or DEFAULT_CONFIG_PATH

        if Path(config_path).exists() and not force:
            click.echo(f"Configuration file already exists: {config_path}")
            if not click.confirm("Overwrite existing configuration?"):
                return

        create_default_config(config_path)
        click.echo(f"✓ Created configuration file: {config_path}")
        click.echo("\nNext steps:")
        click.echo("  1. Set bucket.name to your backup bucket")
        click.echo("  2. List the branches to monitor (empty = all branches)")
        click.echo("  3. Set retention.retention_days (0 = keep forever)")
        click.echo("  4. Apply it with: python -m main retention apply")

    @config_group.command('show')
    @click.pass_context
    def show_config(ctx):
        """Show the effective configuration."""
        config = get_config(ctx)
        echo_json(config.model_dump())
