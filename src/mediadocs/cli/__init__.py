"""Command-line interface package for mediadocs."""

from mediadocs.cli.main import CLIApplication, create_app

__all__ = ["CLIApplication", "create_app"]
