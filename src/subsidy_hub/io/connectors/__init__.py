"""Connectors to upstream data sources."""
