"""Shared utilities for CLI commands."""

import json
import logging
import sys
from pathlib import Path

import click

from config import Config, load_config, setup_logging

logger = logging.getLogger(__name__)


def get_config(ctx: click.Context) -> Config:
    """Load configuration once per invocation and set up logging.

    Args:
        ctx: Click context containing config path and verbose flag

    Returns:
        Loaded Config
    """
    if ctx.obj.get('config') is None:
        try:
            config = load_config(ctx.obj.get('config_path'))
        except Exception as e:
            handle_error(e, ctx.obj.get('verbose', False))
        setup_logging(config, ctx.obj.get('verbose', False))
        ctx.obj['config'] = config
    return ctx.obj['config']


def read_event_file(path: str) -> dict:
    """Read a trigger event from a JSON file ('-' for stdin)."""
    if path == '-':
        return json.load(sys.stdin)
    with open(Path(path), 'r') as f:
        return json.load(f)


def echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def handle_error(error: Exception, verbose: bool = False):
    """Handle and display errors consistently.

    Args:
        error: Exception to handle
        verbose: Whether to show full traceback
    """
    logger.error(f"{type(error).__name__}: {error}")
    click.echo(f"Error: {error}", err=True)
    if verbose:
        import traceback
        click.echo(traceback.format_exc(), err=True)
    sys.exit(1)
