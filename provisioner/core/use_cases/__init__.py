"""Use cases invoked by the CLI."""
