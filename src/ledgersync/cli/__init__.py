"""Command-line interface (``ledgersync``), built on Typer and Rich."""
