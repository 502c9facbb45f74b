#!/usr/bin/env python3
"""Repository backup CLI.

Examples:
    # Get help
    python -m main --help

    # Inside the build job
    python -m main run

    # Check a trigger event
    python -m main trigger event.json --dry-run
"""

from cli.main import cli

if __name__ == '__main__':
    cli()
