"""
Entry point for running member_sync as a module.

Usage:
    python -m member_sync --help
    python -m member_sync test-connection --list-id 4959
    python -m member_sync sync 42 43 44
"""

from member_sync.cli import cli

if __name__ == "__main__":
    cli()
