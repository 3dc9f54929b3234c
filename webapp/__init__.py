"""FastAPI app and the runtime shared with the CLI."""
