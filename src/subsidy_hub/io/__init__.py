"""I/O layer: upstream connectors and table readers."""
