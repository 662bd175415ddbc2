"""CLI entry points (python -m cli.analyze)."""
