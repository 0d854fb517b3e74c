"""Local tool implementations used by the CLI."""
