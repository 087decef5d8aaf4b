"""Provider adapters for the stream resolver."""
