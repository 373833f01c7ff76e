"""
Entry point for running exchange_sync as a module.

Usage:
    python -m exchange_sync --help
    python -m exchange_sync status
    python -m exchange_sync sync --account work
"""

from exchange_sync.cli import cli

if __name__ == "__main__":
    cli()
