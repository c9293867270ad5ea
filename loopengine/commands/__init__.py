"""CLI command implementations. Each takes (args, engine) and returns an exit code."""
