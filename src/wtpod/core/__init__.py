"""Core infrastructure: results and errors, config, console, processes."""
