"""Trigger rule commands."""

import click

from cli.utils import echo_json, get_config
from repo_backup.events import TriggerRule


def register_commands(cli):
    """Register trigger rule commands with main CLI."""

    @cli.command('event-pattern')
    @click.option('--branch', 'branches', multiple=True, help='Branch to monitor (repeatable, overrides config)')
    @click.option('--all-branches', is_flag=True, help='Monitor every branch')
    @click.pass_context
    def event_pattern(ctx, branches, all_branches):
        """Print the EventBridge pattern that triggers backups.

        Examples:
            python -m main event-pattern
            python -m main event-pattern --branch main --branch release
        """
        config = get_config(ctx)

        if all_branches:
            monitored = []
        elif branches:
            monitored = list(branches)
        else:
            monitored = config.trigger.branches_to_monitor

        rule = TriggerRule(monitored, config.trigger.event_bus_name)
        echo_json({
            'EventBusName': rule.event_bus_name,
            'EventPattern': rule.event_pattern(),
        })
