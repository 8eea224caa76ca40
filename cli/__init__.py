"""Command-line entry point that starts the exporter."""
