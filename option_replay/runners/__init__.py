"""Command line and REST entry points."""
