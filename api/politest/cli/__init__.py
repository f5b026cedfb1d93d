"""Command-line interface for politest."""
