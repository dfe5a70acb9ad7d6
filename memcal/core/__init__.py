"""Shared infrastructure: configuration, logging, HTTP client, ids, health."""
